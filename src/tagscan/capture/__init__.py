"""Captured item storage."""

from tagscan.capture.item_buffer import ItemBuffer

__all__ = ["ItemBuffer"]
