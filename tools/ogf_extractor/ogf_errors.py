"""Errors raised while decoding or encoding OGF data.

All of them are fatal for the enclosing load/save call. They derive from
ValueError so callers that already catch ValueError for malformed input
keep working.
"""
from typing import Optional


class OgfError(ValueError):
    """Base class for OGF codec failures."""

    def __init__(self, message: str, chunk_id: Optional[int] = None):
        super().__init__(message)
        self.chunk_id = chunk_id


class StructuralError(OgfError):
    """Missing/unexpected chunk, bad reference, or unread trailing bytes."""


class ConsistencyError(OgfError):
    """Decoded data contradicts itself (e.g. progressive mesh replay)."""


class UnimplementedFormat(OgfError):
    """Recognised sub-format that this codec does not support."""
