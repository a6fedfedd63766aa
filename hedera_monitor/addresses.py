"""
EVM Address Normalization and Watchlist

Every comparison in the monitor goes through normalize(): watchlist entries,
decoded aliases, decoded Ethereum recipients and mirror node lookups all end
up as canonical Address values (lowercase hex, no prefix).

Usage:
    watchlist = Watchlist()
    watchlist.add("0x8F31E9FA14266C5DA7F63BFC96811E08B7C09183", "Wallet A")

    snapshot = watchlist.snapshot()   # frozen set for one scan pass
"""

import logging
import re
from pathlib import Path
from threading import RLock
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

import yaml

from .errors import InvalidAddress
from .types import Address


ADDRESS_BYTES = 20

_PREFIXES = ("0x", "0X")

_HEX_ADDRESS = re.compile(r"[0-9a-fA-F]{%d}\Z" % (2 * ADDRESS_BYTES))


def normalize(raw: Union[str, bytes, bytearray, memoryview, Address]) -> Address:
    """
    Canonicalize an EVM address.

    Accepts hex text (with or without a 0x prefix, any case) or exactly
    20 raw bytes. Raises InvalidAddress otherwise.
    """
    if isinstance(raw, Address):
        return raw

    if isinstance(raw, (bytes, bytearray, memoryview)):
        data = bytes(raw)
        if len(data) != ADDRESS_BYTES:
            raise InvalidAddress(raw, f"expected {ADDRESS_BYTES} bytes, got {len(data)}")
        return Address(data.hex())

    if not isinstance(raw, str):
        raise InvalidAddress(raw, f"unsupported type {type(raw).__name__}")

    text = raw.strip()
    if text.startswith(_PREFIXES):
        text = text[2:]

    if not _HEX_ADDRESS.match(text):
        raise InvalidAddress(raw, f"expected {2 * ADDRESS_BYTES} hex digits")

    return Address(text.lower())


def try_normalize(raw) -> Optional[Address]:
    """normalize() that returns None instead of raising."""
    try:
        return normalize(raw)
    except InvalidAddress:
        return None


def parse_watch_entries(text: str) -> List[Tuple[str, Optional[str]]]:
    """
    Parse 'addr[:label],addr[:label]' into (address, label) pairs.

    Addresses are returned as given; normalization happens on add.
    """
    entries = []
    for chunk in (text or "").split(','):
        chunk = chunk.strip()
        if not chunk:
            continue
        address, _, label = chunk.partition(':')
        entries.append((address.strip(), label.strip() or None))
    return entries


class Watchlist:
    """
    Set of watched addresses with optional human labels.

    Mutations are allowed while a scanner runs; each scan pass works on
    snapshot() taken between cycles.
    """

    def __init__(self, entries: Optional[Iterable[Tuple[str, Optional[str]]]] = None):
        self._logger = logging.getLogger("Watchlist")
        self._lock = RLock()
        self._labels: Dict[Address, Optional[str]] = {}

        for address, label in entries or ():
            self.add(address, label)

    # =========================================================================
    # Mutation
    # =========================================================================

    def add(self, address, label: Optional[str] = None) -> Address:
        """Add an address (raises InvalidAddress). Returns the canonical form."""
        normalized = normalize(address)
        with self._lock:
            existing = self._labels.get(normalized)
            self._labels[normalized] = label or existing
        self._logger.info(
            f"Added address to watch list: {normalized.prefixed}"
            f"{f' ({label})' if label else ''}"
        )
        return normalized

    def add_many(
        self,
        entries: Iterable[Tuple[str, Optional[str]]],
        skip_invalid: bool = False
    ) -> List[Address]:
        """
        Add several entries.

        With skip_invalid, malformed entries are logged and skipped instead
        of raising (runtime refresh); configuration loading keeps it False.
        """
        added = []
        for address, label in entries:
            try:
                added.append(self.add(address, label))
            except InvalidAddress as e:
                if not skip_invalid:
                    raise
                self._logger.warning(f"Skipping watchlist entry: {e}")
        return added

    def remove(self, address) -> bool:
        normalized = normalize(address)
        with self._lock:
            if normalized not in self._labels:
                return False
            del self._labels[normalized]
            return True

    # =========================================================================
    # Queries
    # =========================================================================

    def label_for(self, address) -> Optional[str]:
        normalized = try_normalize(address)
        if normalized is None:
            return None
        with self._lock:
            return self._labels.get(normalized)

    def labels(self) -> Dict[Address, Optional[str]]:
        with self._lock:
            return dict(self._labels)

    def snapshot(self) -> FrozenSet[Address]:
        """Immutable view of the watched addresses for one scan pass."""
        with self._lock:
            return frozenset(self._labels)

    def __contains__(self, address) -> bool:
        normalized = try_normalize(address)
        if normalized is None:
            return False
        with self._lock:
            return normalized in self._labels

    def __len__(self) -> int:
        with self._lock:
            return len(self._labels)

    def __iter__(self):
        return iter(sorted(self.snapshot()))

    # =========================================================================
    # Loading
    # =========================================================================

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "Watchlist":
        """
        Load a watchlist file.

        Accepted layouts:
            addresses:
              8f31e9fa14266c5da7f63bfc96811e08b7c09183: Wallet A
        or a plain list of addresses / {address, label} mappings.
        """
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}

        if isinstance(data, dict) and 'addresses' in data:
            data = data['addresses'] or {}

        entries: List[Tuple[str, Optional[str]]] = []
        if isinstance(data, dict):
            entries = [(_yaml_key(addr, path), label) for addr, label in data.items()]
        elif isinstance(data, list):
            for item in data:
                if isinstance(item, dict):
                    entries.append((_yaml_key(item.get('address', ''), path), item.get('label')))
                else:
                    entries.append((_yaml_key(item, path), None))
        else:
            raise InvalidAddress(data, f"unsupported watchlist layout in {path}")

        return cls(entries)


def _yaml_key(value, path) -> str:
    # Unquoted 0x... keys load as integers under YAML 1.1
    if isinstance(value, int) and not isinstance(value, bool):
        raise InvalidAddress(value, f"quote addresses in {path} so YAML keeps them as text")
    return str(value)
