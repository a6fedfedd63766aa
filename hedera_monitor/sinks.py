"""
Event Sinks

Consumers of MatchEvents. A sink is any callable taking one MatchEvent;
these are the stock ones.
"""

import json
import logging
import sys
from typing import Callable, Iterable, Optional, Set, TextIO

from .addresses import normalize
from .types import Address, MatchEvent, format_timestamp


class LoggingSink:
    """Writes a human-readable summary of each event to a logger."""

    def __init__(self, logger_name: str = "TransferMonitor", level: int = logging.INFO):
        self._logger = logging.getLogger(logger_name)
        self._level = level

    def __call__(self, event: MatchEvent):
        label = f" ({event.label})" if event.label else ""
        entity = str(event.ledger_id) if event.ledger_id else "unresolved"
        how = "EVM address" if event.sender_used_raw_alias else "account id"
        self._logger.log(
            self._level,
            f"TRANSFER DETECTED: {event.amount_hbar} -> {event.address.prefixed}{label} "
            f"[{entity}] via {how} | tx {event.transaction_id} "
            f"@ {format_timestamp(event.consensus_timestamp)} "
            f"({event.kind.value}, {event.detection_method.value})"
        )
        if event.memo:
            self._logger.log(self._level, f"  memo: {event.memo}")


class JsonLinesSink:
    """Writes each event as one JSON object per line."""

    def __init__(self, stream: Optional[TextIO] = None):
        self._stream = stream or sys.stdout

    def __call__(self, event: MatchEvent):
        self._stream.write(json.dumps(event.to_dict()) + "\n")
        self._stream.flush()


class CallbackSink:
    """
    Forwards events to a callback, optionally only for some addresses.

    Usage:
        scanner.add_sink(CallbackSink(on_transfer, addresses=["0x8f31..."]))
    """

    def __init__(
        self,
        callback: Callable[[MatchEvent], None],
        addresses: Optional[Iterable] = None
    ):
        self._callback = callback
        self._addresses: Optional[Set[Address]] = (
            {normalize(a) for a in addresses} if addresses is not None else None
        )
        self.delivered = 0

    def __call__(self, event: MatchEvent):
        if self._addresses is not None and event.address not in self._addresses:
            return
        self._callback(event)
        self.delivered += 1
