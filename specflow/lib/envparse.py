"""
Safe config.env parser.

Reads KEY=value lines without shell execution. Values that look like
shell substitution are rejected so a config file can never smuggle a
command into an agent invocation.
"""

import re
from pathlib import Path

FORBIDDEN_PATTERNS = [
    r'`',
    r'\$\(',
    r'\$\{',
    r';',
    r'&&',
    r'\|',
]

KEY_PATTERN = re.compile(r'^[A-Z][A-Z0-9_]*$')

TRUE_VALUES = ("1", "true", "yes", "on")


def parse_env(text: str) -> dict[str, str]:
    """
    Parse KEY=value text into a dict.

    Raises:
        ValueError: on a malformed line, bad key or forbidden value
    """
    result = {}

    for lineno, line in enumerate(text.splitlines(), 1):
        line = line.strip()
        if not line or line.startswith('#'):
            continue

        if '=' not in line:
            raise ValueError(f"Line {lineno}: Invalid syntax (no '=')")

        key, _, value = line.partition('=')
        key = key.strip()
        value = value.strip()

        if not KEY_PATTERN.match(key):
            raise ValueError(f"Line {lineno}: Invalid key '{key}'")

        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            value = value[1:-1]

        for pattern in FORBIDDEN_PATTERNS:
            if re.search(pattern, value):
                raise ValueError(f"Line {lineno}: Forbidden pattern in value for {key}")

        result[key] = value

    return result


def load_env(filepath: Path) -> dict[str, str]:
    """Parse an env file. Returns {} when the file does not exist."""
    path = Path(filepath)
    if not path.exists():
        return {}
    return parse_env(path.read_text(encoding="utf-8"))


def as_bool(value: str | None, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in TRUE_VALUES


def as_int(value: str | None, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Expected an integer, got '{value}'") from None
