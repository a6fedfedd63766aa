"""
Ethereum Payload Decoder

Decodes the raw EVM transaction embedded in an EthereumTransaction body so
the monitor can see who it was sent to and how much value it carried.

Supported payloads:
- Legacy (RLP list, EIP-155 chain id in v)
- EIP-2930 (0x01 || rlp([...]))
- EIP-1559 (0x02 || rlp([...]))

Payloads that cannot be decoded make decode() return None; the envelope
decoder then reports an empty transfer list for the transaction.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from ..addresses import normalize
from ..types import Address

import rlp
from eth_account import Account
from eth_keys.exceptions import BadSignature
from eth_keys.exceptions import ValidationError as KeyValidationError
from eth_utils import ValidationError, big_endian_to_int
from rlp.exceptions import RLPException


LEGACY = 0
ACCESS_LIST = 1
DYNAMIC_FEE = 2

# Position of (to, value, data) and expected field count per payload type
_LAYOUTS = {
    LEGACY: (3, 4, 5, 9),
    ACCESS_LIST: (4, 5, 6, 11),
    DYNAMIC_FEE: (5, 6, 7, 12),
}


@dataclass(frozen=True)
class EthereumPayload:
    """Fields recovered from an embedded EVM transaction."""
    tx_type: int
    chain_id: Optional[int]
    nonce: int
    to: Optional[bytes]   # None for contract creation
    value: int            # weibar
    gas_limit: int
    data: bytes
    sender: Optional[Address] = None

    @property
    def to_address(self) -> Optional[Address]:
        return normalize(self.to) if self.to else None


class EthereumPayloadDecoder:
    """
    Foreign-format decoder for EthereumTransaction bodies.

    Usage:
        decoder = EthereumPayloadDecoder()
        payload = decoder.decode(ethereum_data)
        if payload and payload.to:
            ...
    """

    def __init__(self, recover_sender: bool = True):
        self._logger = logging.getLogger("EthereumPayloadDecoder")
        self._recover_sender = recover_sender
        self._stats = {
            "decoded": 0,
            "failed": 0,
        }

    def decode(self, raw: bytes) -> Optional[EthereumPayload]:
        """Decode an embedded EVM transaction. Returns None if not decodable."""
        if not raw:
            return None

        raw = bytes(raw)
        try:
            payload = self._decode_fields(raw)
        except (RLPException, ValueError, TypeError) as e:
            self._stats["failed"] += 1
            self._logger.debug(f"Ethereum payload not decodable: {e}")
            return None

        if payload is None:
            self._stats["failed"] += 1
            return None

        self._stats["decoded"] += 1
        return payload

    def _decode_fields(self, raw: bytes) -> Optional[EthereumPayload]:
        first = raw[0]
        if first >= 0xc0:
            tx_type = LEGACY
            fields = rlp.decode(raw)
        elif first in (ACCESS_LIST, DYNAMIC_FEE):
            tx_type = first
            fields = rlp.decode(raw[1:])
        else:
            self._logger.debug(f"Unsupported EVM transaction type 0x{first:02x}")
            return None

        to_pos, value_pos, data_pos, count = _LAYOUTS[tx_type]
        if not isinstance(fields, list) or len(fields) != count:
            raise ValueError(f"expected {count} fields for type {tx_type}")

        to = _scalar(fields[to_pos])
        if to and len(to) != 20:
            raise ValueError(f"recipient is {len(to)} bytes")

        if tx_type == LEGACY:
            nonce = big_endian_to_int(_scalar(fields[0]))
            gas_limit = big_endian_to_int(_scalar(fields[2]))
            v = big_endian_to_int(_scalar(fields[6]))
            chain_id = (v - 35) // 2 if v >= 35 else None
        else:
            chain_id = big_endian_to_int(_scalar(fields[0]))
            nonce = big_endian_to_int(_scalar(fields[1]))
            gas_limit = big_endian_to_int(_scalar(fields[to_pos - 1]))

        return EthereumPayload(
            tx_type=tx_type,
            chain_id=chain_id,
            nonce=nonce,
            to=to or None,
            value=big_endian_to_int(_scalar(fields[value_pos])),
            gas_limit=gas_limit,
            data=_scalar(fields[data_pos]),
            sender=self._recover(raw),
        )

    def _recover(self, raw: bytes) -> Optional[Address]:
        if not self._recover_sender:
            return None
        try:
            return normalize(Account.recover_transaction(raw))
        except (BadSignature, KeyValidationError, ValidationError, RLPException, ValueError, TypeError) as e:
            self._logger.debug(f"Sender recovery failed: {e}")
            return None

    def get_stats(self) -> Dict:
        return dict(self._stats)


def _scalar(item) -> bytes:
    if not isinstance(item, bytes):
        raise ValueError("expected a byte string field")
    return item
