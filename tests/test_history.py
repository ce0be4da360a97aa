"""Tests for specflow.lib.history module."""

from specflow.lib.history import format_conversation, format_requirements


class TestFormatConversation:
    """Tests for format_conversation()."""

    def test_empty(self):
        assert format_conversation(None) == ""
        assert format_conversation([]) == ""

    def test_formats_role_and_phase(self):
        text = format_conversation([
            {"role": "user", "content": "I need a shop", "phase": "analyst"},
            {"role": "assistant", "content": "Who buys from it?"},
        ])
        assert text.startswith("Conversation History:\n")
        assert "- user (analyst): I need a shop" in text
        assert "- assistant: Who buys from it?" in text

    def test_keeps_only_tail(self):
        conversation = [{"role": "user", "content": f"msg {i}"} for i in range(8)]
        text = format_conversation(conversation, tail=3)
        assert "msg 4" not in text
        assert "msg 5" in text
        assert "msg 7" in text

    def test_skips_non_dict_entries(self):
        assert format_conversation(["junk", 3]) == ""


class TestFormatRequirements:
    def test_empty(self):
        assert format_requirements({}) == ""

    def test_lists_pairs(self):
        text = format_requirements({"platform": "web", "users": 50})
        assert text == "Requirements:\n- platform: web\n- users: 50\n"
