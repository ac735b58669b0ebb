"""
Pass note boundary.

Design intent:
- Present one mutable note per pass over an append-only store.
"""
from __future__ import annotations

from .store import NoteCompactionStore, NoteDecodeError, current_note, decode_note, pass_tag

__all__ = ["NoteCompactionStore", "NoteDecodeError", "current_note", "decode_note", "pass_tag"]
