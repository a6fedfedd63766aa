"""
Monitor Error Taxonomy

Every failure the monitor can observe maps to one of these:
- InvalidAddress: malformed watchlist entry (fatal at configuration time,
  skipped per entry at runtime)
- DecodeError: malformed envelope at a named layer (skip the transaction)
- TransportError: fetch failure (retry next cycle at the same watermark)
- AmbiguousReconciliation: settlement heuristic could not pick a unique
  identifier (the match is surfaced unresolved)
"""

from typing import List, Optional


class MonitorError(Exception):
    """Base class for monitor errors."""
    pass


class InvalidAddress(MonitorError, ValueError):
    """Raised when a value cannot be normalized to a 20-byte EVM address."""

    def __init__(self, value, reason: str = "expected 20 bytes"):
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid EVM address {value!r}: {reason}")


class DecodeError(MonitorError):
    """Raised when an envelope layer is malformed or truncated."""

    def __init__(self, layer: str, reason: str):
        self.layer = layer
        self.reason = reason
        super().__init__(f"Failed to decode {layer}: {reason}")


class TransportError(MonitorError):
    """Raised when the transaction source or entity lookup fails."""

    def __init__(self, source: str, reason: str, status: Optional[int] = None):
        self.source = source
        self.reason = reason
        self.status = status
        detail = f" (status {status})" if status is not None else ""
        super().__init__(f"{source} error{detail}: {reason}")


class AmbiguousReconciliation(MonitorError):
    """Raised when several settlement credits could belong to a new alias."""

    def __init__(self, address, candidates: List):
        self.address = address
        self.candidates = list(candidates)
        listed = ", ".join(str(c) for c in self.candidates)
        super().__init__(
            f"Cannot bind 0x{address}: {len(self.candidates)} candidate accounts ({listed})"
        )
