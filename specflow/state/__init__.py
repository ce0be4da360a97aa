"""Durable project state: files, stories, integration logs and the store."""

from .store import ProjectStateStore

__all__ = ["ProjectStateStore"]
