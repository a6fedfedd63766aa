"""
Hedera Envelope Decoder

Peels a signed transaction envelope down to its transfer list and records
exactly how the sender addressed every credited account.

Layers:
    Transaction
      ├─ signed_transaction_bytes → SignedTransaction.body_bytes → TransactionBody
      └─ (legacy) body_bytes → TransactionBody, or embedded body message

The signed-wrapper path wins whenever its field is non-empty; otherwise the
legacy direct-body fields are used. The resolved view of the ledger cannot
answer "did the sender use the EVM alias?" - only these bytes can.

Usage:
    decoder = EnvelopeDecoder(foreign_decoder=EthereumPayloadDecoder())
    decoded = decoder.decode(envelope_bytes, consensus_timestamp=ts)
    for transfer in decoded.transfers:
        ...
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from google.protobuf.message import DecodeError as ProtobufDecodeError

from ..addresses import normalize
from ..errors import DecodeError
from ..types import (
    DecodedTransaction,
    KeyAlias,
    LedgerIdentifier,
    RawAlias,
    TransactionKind,
    TransferInstruction,
    WEIBAR_PER_TINYBAR,
    format_transaction_id,
)
from . import protos


class EnvelopeLayout(Enum):
    """Which path led from the outer wrapper to the body."""
    SIGNED = "signed_transaction_bytes"
    LEGACY_BODY_BYTES = "body_bytes"
    LEGACY_BODY = "body"


@dataclass(frozen=True)
class UnwrappedEnvelope:
    """Transaction body plus the layout it was found through."""
    layout: EnvelopeLayout
    body: object  # protos.TransactionBody


_KIND_BY_FIELD = {
    "crypto_transfer": TransactionKind.CRYPTO_TRANSFER,
    "ethereum_transaction": TransactionKind.ETHEREUM_TRANSACTION,
}


class EnvelopeDecoder:
    """
    Decodes raw transaction envelopes into DecodedTransaction values.

    Stateless apart from counters; decoding the same bytes twice yields
    equal results.
    """

    def __init__(self, foreign_decoder=None):
        """
        Args:
            foreign_decoder: Optional decoder for EthereumTransaction payloads.
                Any object with decode(bytes) -> payload | None where payload
                exposes `to` (20 bytes or None) and `value` (weibar).
        """
        self._logger = logging.getLogger("EnvelopeDecoder")
        self._foreign_decoder = foreign_decoder
        self._stats = {
            "decoded": 0,
            "transfers": 0,
            "errors": 0,
            "errors_by_layer": {},
            "by_kind": {},
        }

    # =========================================================================
    # Decoding
    # =========================================================================

    def decode(
        self,
        envelope: bytes,
        consensus_timestamp: int = 0,
        transaction_id: Optional[str] = None,
        transaction_hash: Optional[str] = None
    ) -> DecodedTransaction:
        """
        Decode an envelope.

        Args:
            envelope: Raw Transaction bytes as submitted to the network
            consensus_timestamp: Position marker from the feed (ns)
            transaction_id: Feed identifier; derived from the body if omitted
            transaction_hash: Optional hash carried through to events

        Raises:
            DecodeError: malformed or truncated bytes at any layer
        """
        try:
            unwrapped = self.unwrap(envelope)
        except DecodeError as e:
            self._record_error(e.layer)
            raise

        body = unwrapped.body
        kind = _KIND_BY_FIELD.get(body.WhichOneof("data"), TransactionKind.OTHER)

        if kind == TransactionKind.CRYPTO_TRANSFER:
            transfers = self._crypto_transfers(body)
        elif kind == TransactionKind.ETHEREUM_TRANSACTION:
            transfers = self._ethereum_transfers(body)
        else:
            transfers = ()

        if transaction_id is None:
            transaction_id = self._body_transaction_id(body)

        self._stats["decoded"] += 1
        self._stats["transfers"] += len(transfers)
        by_kind = self._stats["by_kind"]
        by_kind[kind.value] = by_kind.get(kind.value, 0) + 1

        return DecodedTransaction(
            transaction_id=transaction_id,
            consensus_timestamp=consensus_timestamp,
            kind=kind,
            transfers=transfers,
            memo=body.memo or None,
            transaction_hash=transaction_hash,
        )

    def unwrap(self, envelope: bytes) -> UnwrappedEnvelope:
        """Walk the wrapper layers down to the TransactionBody."""
        if not envelope:
            raise DecodeError("transaction", "empty envelope")

        transaction = _parse(protos.Transaction, envelope, "transaction")

        if transaction.signed_transaction_bytes:
            signed = _parse(
                protos.SignedTransaction,
                transaction.signed_transaction_bytes,
                "signed_transaction"
            )
            if not signed.body_bytes:
                raise DecodeError("signed_transaction", "missing body bytes")
            body = _parse(protos.TransactionBody, signed.body_bytes, "transaction_body")
            return UnwrappedEnvelope(EnvelopeLayout.SIGNED, body)

        if transaction.body_bytes:
            body = _parse(protos.TransactionBody, transaction.body_bytes, "transaction_body")
            return UnwrappedEnvelope(EnvelopeLayout.LEGACY_BODY_BYTES, body)

        if transaction.HasField("body"):
            return UnwrappedEnvelope(EnvelopeLayout.LEGACY_BODY, transaction.body)

        raise DecodeError("transaction", "no signed transaction or body present")

    # =========================================================================
    # Body kinds
    # =========================================================================

    def _crypto_transfers(self, body) -> Tuple[TransferInstruction, ...]:
        """Credit lines of a CryptoTransfer, in wire order."""
        transfers: List[TransferInstruction] = []

        for index, account_amount in enumerate(body.crypto_transfer.transfers.account_amounts):
            if account_amount.amount <= 0:
                continue  # debits and fee payers

            destination = _classify(account_amount.account_id)
            if destination is None:
                self._logger.debug(f"Credit #{index} has no account id")
                continue

            transfers.append(TransferInstruction(
                index=index,
                destination=destination,
                amount=account_amount.amount,
            ))

        return tuple(transfers)

    def _ethereum_transfers(self, body) -> Tuple[TransferInstruction, ...]:
        """Single credit carried by an embedded EVM transaction, if decodable."""
        if self._foreign_decoder is None:
            return ()

        payload = self._foreign_decoder.decode(body.ethereum_transaction.ethereum_data)
        if payload is None or not payload.to:
            return ()

        amount = payload.value // WEIBAR_PER_TINYBAR
        if amount <= 0:
            return ()

        destination = LedgerIdentifier.from_long_zero(payload.to)
        if destination is None:
            destination = RawAlias(normalize(payload.to))

        return (TransferInstruction(
            index=0,
            destination=destination,
            amount=amount,
            ethereum_value=payload.value,
        ),)

    def _body_transaction_id(self, body) -> str:
        tx_id = body.transaction_id
        account = tx_id.account_id
        payer = LedgerIdentifier(account.shard_num, account.realm_num, account.account_num)
        start = tx_id.transaction_valid_start
        return format_transaction_id(
            payer,
            start.seconds * 1_000_000_000 + start.nanos,
            tx_id.nonce
        )

    # =========================================================================
    # Stats
    # =========================================================================

    def _record_error(self, layer: str):
        self._stats["errors"] += 1
        by_layer = self._stats["errors_by_layer"]
        by_layer[layer] = by_layer.get(layer, 0) + 1

    def get_stats(self) -> Dict:
        return {
            "decoded": self._stats["decoded"],
            "transfers": self._stats["transfers"],
            "errors": self._stats["errors"],
            "errors_by_layer": dict(self._stats["errors_by_layer"]),
            "by_kind": dict(self._stats["by_kind"]),
            "foreign_decoder": self._foreign_decoder is not None,
        }


def _parse(message_class, data: bytes, layer: str):
    try:
        return message_class.FromString(bytes(data))
    except ProtobufDecodeError as e:
        raise DecodeError(layer, str(e) or "malformed bytes")


def _classify(account_id):
    """Tagged destination for an AccountID, by which oneof field is set."""
    which = account_id.WhichOneof("account")

    if which == "alias":
        alias = bytes(account_id.alias)
        if len(alias) == 20:
            return RawAlias(normalize(alias))
        return KeyAlias(alias)

    if which == "account_num":
        return LedgerIdentifier(account_id.shard_num, account_id.realm_num, account_id.account_num)

    return None
