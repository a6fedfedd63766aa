"""
Hedera Monitor Data Types

Pure data structures shared by the decoder, reconciler, matcher and scanner.
Only factual observations: what the envelope said, what the ledger assigned.
"""

import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from .errors import InvalidAddress


# Tinybar per HBAR
TINYBAR_PER_HBAR = 100_000_000

# Weibar per tinybar (EVM values are 18 decimals, HBAR is 8)
WEIBAR_PER_TINYBAR = 10_000_000_000

# Settlement status code for a successful transaction in mirror node rows
RESULT_SUCCESS = 22

_CANONICAL_HEX = re.compile(r'^[0-9a-f]{40}$')


class TransactionKind(Enum):
    """Transaction kinds the monitor knows how to decode."""
    CRYPTO_TRANSFER = "CRYPTOTRANSFER"
    ETHEREUM_TRANSACTION = "ETHEREUMTRANSACTION"
    OTHER = "OTHER"

    @property
    def code(self) -> Optional[int]:
        """Mirror node numeric transaction type."""
        return _KIND_CODES.get(self)

    @classmethod
    def from_code(cls, code: int) -> "TransactionKind":
        for kind, kind_code in _KIND_CODES.items():
            if kind_code == code:
                return kind
        return cls.OTHER

    @classmethod
    def from_name(cls, name: Optional[str]) -> "TransactionKind":
        try:
            return cls((name or "").upper())
        except ValueError:
            return cls.OTHER


_KIND_CODES = {
    TransactionKind.CRYPTO_TRANSFER: 14,
    TransactionKind.ETHEREUM_TRANSACTION: 50,
}


class DetectionMethod(Enum):
    """How a match was found."""
    TRANSACTION_BYTES = "tx_body_parse"   # decoded envelope destination
    ETHEREUM_DATA = "ethereum_data"       # decoded embedded EVM transaction
    ENTITY_CACHE = "entity_cache"         # resolved transfer list + binding


@dataclass(frozen=True, order=True)
class Address:
    """
    20-byte EVM address in canonical form.

    Canonical form is lowercase hex without prefix. Build instances with
    addresses.normalize(); the constructor only accepts canonical text.
    """
    hex: str

    def __post_init__(self):
        if not isinstance(self.hex, str) or not _CANONICAL_HEX.match(self.hex):
            raise InvalidAddress(self.hex, "not in canonical form")

    @property
    def raw(self) -> bytes:
        return bytes.fromhex(self.hex)

    @property
    def prefixed(self) -> str:
        return f"0x{self.hex}"

    def __str__(self) -> str:
        return self.hex


@dataclass(frozen=True, order=True)
class LedgerIdentifier:
    """Ledger-assigned entity id (shard.realm.num)."""
    shard: int
    realm: int
    num: int

    # Mirror node encoded entity id layout
    _NUM_BITS = 38
    _REALM_BITS = 16

    @classmethod
    def parse(cls, text: str) -> "LedgerIdentifier":
        """Parse 'shard.realm.num'."""
        parts = str(text).strip().split('.')
        if len(parts) != 3:
            raise ValueError(f"Invalid entity id: {text!r}")
        try:
            shard, realm, num = (int(p) for p in parts)
        except ValueError:
            raise ValueError(f"Invalid entity id: {text!r}")
        if min(shard, realm, num) < 0:
            raise ValueError(f"Invalid entity id: {text!r}")
        return cls(shard, realm, num)

    @classmethod
    def from_encoded(cls, encoded: int) -> "LedgerIdentifier":
        """Decode a mirror node encoded entity id (shard:10 realm:16 num:38)."""
        encoded = int(encoded)
        num = encoded & ((1 << cls._NUM_BITS) - 1)
        realm = (encoded >> cls._NUM_BITS) & ((1 << cls._REALM_BITS) - 1)
        shard = encoded >> (cls._NUM_BITS + cls._REALM_BITS)
        return cls(shard, realm, num)

    def encode(self) -> int:
        """Mirror node encoded form (inverse of from_encoded)."""
        return (
            (self.shard << (self._NUM_BITS + self._REALM_BITS))
            | (self.realm << self._NUM_BITS)
            | self.num
        )

    @classmethod
    def from_long_zero(cls, raw: bytes) -> Optional["LedgerIdentifier"]:
        """
        Interpret a 20-byte EVM address as a long-zero entity address.

        Layout: shard (4 bytes) | realm (8 bytes) | num (8 bytes), where
        shard and realm are zero on public networks. Returns None for
        addresses that do not carry the zero prefix.
        """
        if len(raw) != 20 or any(raw[:12]):
            return None
        return cls(0, 0, int.from_bytes(raw[12:], "big"))

    def __str__(self) -> str:
        return f"{self.shard}.{self.realm}.{self.num}"


@dataclass(frozen=True)
class RawAlias:
    """Destination given as raw 20-byte EVM alias bytes."""
    address: Address


@dataclass(frozen=True)
class KeyAlias:
    """Destination given as a serialized public key alias (never matched)."""
    key_bytes: bytes


Destination = Union[RawAlias, LedgerIdentifier, KeyAlias]


@dataclass(frozen=True)
class TransferInstruction:
    """One credit line recovered from an envelope."""
    index: int
    destination: Destination
    amount: int  # tinybar, positive = credit
    ethereum_value: Optional[int] = None  # weibar, EVM transactions only

    @property
    def is_credit(self) -> bool:
        return self.amount > 0

    @property
    def used_raw_alias(self) -> bool:
        return isinstance(self.destination, RawAlias)


@dataclass(frozen=True)
class DecodedTransaction:
    """Result of envelope decoding. Never persisted."""
    transaction_id: str
    consensus_timestamp: int  # nanoseconds since epoch, 0 if unknown
    kind: TransactionKind
    transfers: Tuple[TransferInstruction, ...] = ()
    memo: Optional[str] = None
    transaction_hash: Optional[str] = None


@dataclass(frozen=True)
class ResolvedTransfer:
    """Credit/debit as resolved by the ledger (mirror node transfer list)."""
    account: LedgerIdentifier
    amount: int


@dataclass(frozen=True)
class MatchEvent:
    """A credit to a watched address. Emitted once per (transaction, transfer index)."""
    address: Address
    ledger_id: Optional[LedgerIdentifier]
    amount: int
    transaction_id: str
    consensus_timestamp: int
    sender_used_raw_alias: bool
    detection_method: DetectionMethod
    transfer_index: int
    kind: TransactionKind = TransactionKind.CRYPTO_TRANSFER
    label: Optional[str] = None
    memo: Optional[str] = None
    transaction_hash: Optional[str] = None
    ethereum_value: Optional[int] = None

    @property
    def key(self) -> Tuple[str, str, int]:
        """(transaction id, transfer list, index) - unique per emitted event."""
        source = "resolved" if self.detection_method == DetectionMethod.ENTITY_CACHE else "envelope"
        return (self.transaction_id, source, self.transfer_index)

    @property
    def amount_hbar(self) -> str:
        return format_hbar(self.amount)

    @property
    def resolved(self) -> bool:
        return self.ledger_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "evmAddress": self.address.hex,
            "label": self.label,
            "resolvedEntityId": str(self.ledger_id) if self.ledger_id else None,
            "amountTinybar": str(self.amount),
            "amountHbar": self.amount_hbar,
            "transactionId": self.transaction_id,
            "transactionHash": self.transaction_hash,
            "consensusTimestamp": format_timestamp(self.consensus_timestamp),
            "senderUsedEvmAddress": self.sender_used_raw_alias,
            "transactionType": self.kind.value,
            "detectionMethod": self.detection_method.value,
            "transferIndex": self.transfer_index,
            "memo": self.memo,
            "ethereumValueWei": (
                str(self.ethereum_value) if self.ethereum_value is not None else None
            ),
        }


# =============================================================================
# Helpers
# =============================================================================

def format_hbar(tinybar: int) -> str:
    """Format tinybar as an exact HBAR string (8 decimals)."""
    tinybar = int(tinybar)
    sign = "-" if tinybar < 0 else ""
    whole, frac = divmod(abs(tinybar), TINYBAR_PER_HBAR)
    return f"{sign}{whole}.{frac:08d} ℏ"


def parse_timestamp(value: Union[str, int]) -> int:
    """
    Parse a consensus timestamp to integer nanoseconds.

    Accepts 'seconds.nanos' (mirror REST form) or an integer nanosecond
    value (mirror database form).
    """
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if '.' in text:
        seconds, nanos = text.split('.', 1)
        if not seconds.isdigit() or not nanos.isdigit() or len(nanos) > 9:
            raise ValueError(f"Invalid consensus timestamp: {value!r}")
        return int(seconds) * 1_000_000_000 + int(nanos.ljust(9, '0'))
    if not text.isdigit():
        raise ValueError(f"Invalid consensus timestamp: {value!r}")
    return int(text)


def format_timestamp(nanos: int) -> str:
    """Format integer nanoseconds as 'seconds.nanos'."""
    seconds, rem = divmod(int(nanos), 1_000_000_000)
    return f"{seconds}.{rem:09d}"


def format_transaction_id(payer: "LedgerIdentifier", valid_start_ns: int, nonce: int = 0) -> str:
    """Mirror node transaction id: 0.0.1234-1764172415-508697021[/nonce]."""
    seconds, nanos = divmod(int(valid_start_ns), 1_000_000_000)
    tx_id = f"{payer}-{seconds}-{nanos:09d}"
    return f"{tx_id}/{nonce}" if nonce else tx_id


def normalize_transaction_id(text: str) -> str:
    """
    Convert an SDK transaction id to mirror node form.

    SDK form:    0.0.6493627@1764172415.508697021
    Mirror form: 0.0.6493627-1764172415-508697021
    Mirror form input is returned unchanged.
    """
    text = text.strip().replace(" ", "")
    if '@' not in text:
        return text
    account, _, valid_start = text.partition('@')
    seconds, _, nanos = valid_start.partition('.')
    return f"{account}-{seconds}-{nanos.ljust(9, '0')}" if nanos else f"{account}-{seconds}-000000000"


def timestamp_seconds_ago(seconds: float, now: Optional[float] = None) -> int:
    """Consensus timestamp (ns) for `seconds` before now."""
    now = time.time() if now is None else now
    return int((now - seconds) * 1_000_000_000)
