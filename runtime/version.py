"""Version metadata for the chatrelay runtime. Import-safe, no side effects."""

from __future__ import annotations

PROJECT_NAME = "chatrelay"
VERSION = "0.1.0"

__all__ = ["PROJECT_NAME", "VERSION", "as_string"]


def as_string() -> str:
    return f"{PROJECT_NAME} {VERSION}"
