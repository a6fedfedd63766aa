"""
Unit tests for the Hedera envelope decoder.

Tests:
- Signed and legacy layouts
- Destination classification (raw alias / account id / key alias)
- Credit-only, wire-order transfer lines
- Determinism and DecodeError layers
"""

import pytest

from hedera_monitor.addresses import normalize
from hedera_monitor.errors import DecodeError
from hedera_monitor.indexer import protos
from hedera_monitor.indexer.envelope import EnvelopeDecoder, EnvelopeLayout
from hedera_monitor.types import (
    KeyAlias,
    LedgerIdentifier,
    RawAlias,
    TransactionKind,
)


WATCHED = bytes.fromhex("8f31e9fa14266c5da7f63bfc96811e08b7c09183")


@pytest.fixture
def decoder():
    return EnvelopeDecoder()


@pytest.fixture
def mixed_body(factory):
    """[(addrA, +100), (idB, +50), (idC, -150)]"""
    return factory.crypto_transfer([
        (factory.account(alias=WATCHED), 100),
        (factory.account(num=1001), 50),
        (factory.account(num=1002), -150),
    ], memo="hello")


class TestCryptoTransfer:
    """Test CryptoTransfer decoding."""

    def test_mixed_transfer_list(self, decoder, factory, mixed_body):
        decoded = decoder.decode(factory.signed(mixed_body), consensus_timestamp=42)

        assert decoded.kind == TransactionKind.CRYPTO_TRANSFER
        assert len(decoded.transfers) == 2

        first, second = decoded.transfers
        assert first.destination == RawAlias(normalize(WATCHED))
        assert first.amount == 100
        assert first.index == 0
        assert first.used_raw_alias is True

        assert second.destination == LedgerIdentifier(0, 0, 1001)
        assert second.amount == 50
        assert second.index == 1
        assert second.used_raw_alias is False

    def test_header_fields(self, decoder, factory, mixed_body):
        decoded = decoder.decode(factory.signed(mixed_body), consensus_timestamp=42)
        assert decoded.memo == "hello"
        assert decoded.consensus_timestamp == 42
        assert decoded.transaction_id == "0.0.6493627-1764172415-508697021"

    def test_explicit_transaction_id_wins(self, decoder, factory, mixed_body):
        decoded = decoder.decode(factory.signed(mixed_body), transaction_id="feed-id")
        assert decoded.transaction_id == "feed-id"

    def test_zero_and_negative_never_destinations(self, decoder, factory):
        body = factory.crypto_transfer([
            (factory.account(alias=WATCHED), 0),
            (factory.account(num=5), -10),
        ])
        assert decoder.decode(factory.signed(body)).transfers == ()

    def test_key_alias(self, decoder, factory):
        key_alias = bytes.fromhex("3a21") + bytes(33)
        body = factory.crypto_transfer([(factory.account(alias=key_alias), 10)])
        (transfer,) = decoder.decode(factory.signed(body)).transfers
        assert transfer.destination == KeyAlias(key_alias)

    def test_shard_realm_kept(self, decoder, factory):
        body = factory.crypto_transfer([(factory.account(num=9, shard=1, realm=2), 10)])
        (transfer,) = decoder.decode(factory.signed(body)).transfers
        assert transfer.destination == LedgerIdentifier(1, 2, 9)

    def test_nonce_in_transaction_id(self, decoder, factory):
        body = factory.crypto_transfer([(factory.account(num=9), 10)], nonce=3)
        decoded = decoder.decode(factory.signed(body))
        assert decoded.transaction_id.endswith("/3")


class TestLayouts:
    """Test the three paths from Transaction to TransactionBody."""

    def test_signed(self, decoder, factory, mixed_body):
        assert decoder.unwrap(factory.signed(mixed_body)).layout == EnvelopeLayout.SIGNED

    def test_legacy_body_bytes(self, decoder, factory, mixed_body):
        envelope = factory.legacy_body_bytes(mixed_body)
        assert decoder.unwrap(envelope).layout == EnvelopeLayout.LEGACY_BODY_BYTES
        assert len(decoder.decode(envelope).transfers) == 2

    def test_legacy_body(self, decoder, factory, mixed_body):
        envelope = factory.legacy_body(mixed_body)
        assert decoder.unwrap(envelope).layout == EnvelopeLayout.LEGACY_BODY
        assert len(decoder.decode(envelope).transfers) == 2

    def test_signed_wins_over_legacy(self, decoder, factory, mixed_body):
        other = factory.crypto_transfer([(factory.account(num=77), 1)])
        signed = protos.SignedTransaction(body_bytes=mixed_body.SerializeToString())
        envelope = protos.Transaction(
            signed_transaction_bytes=signed.SerializeToString(),
            body_bytes=other.SerializeToString(),
        ).SerializeToString()

        decoded = decoder.decode(envelope)
        assert decoded.transfers[-1].destination == LedgerIdentifier(0, 0, 1001)

    def test_all_layouts_agree(self, decoder, factory, mixed_body):
        results = [
            decoder.decode(build(mixed_body), consensus_timestamp=1).transfers
            for build in (factory.signed, factory.legacy_body_bytes, factory.legacy_body)
        ]
        assert results[0] == results[1] == results[2]


class TestOtherKinds:
    """Test non-transfer bodies."""

    def test_unknown_kind_empty(self, decoder, factory):
        decoded = decoder.decode(factory.signed(factory.body(memo="noop")))
        assert decoded.kind == TransactionKind.OTHER
        assert decoded.transfers == ()

    def test_ethereum_without_foreign_decoder(self, decoder, factory):
        decoded = decoder.decode(factory.signed(factory.ethereum(b"\x02\xf8")))
        assert decoded.kind == TransactionKind.ETHEREUM_TRANSACTION
        assert decoded.transfers == ()


class TestDeterminism:
    """Decoding is a pure function of the bytes."""

    def test_repeat_decode_equal(self, decoder, factory, mixed_body):
        envelope = factory.signed(mixed_body)
        assert decoder.decode(envelope, 7) == decoder.decode(envelope, 7)

    def test_fresh_decoder_equal(self, factory, mixed_body):
        envelope = factory.signed(mixed_body)
        assert EnvelopeDecoder().decode(envelope, 7) == EnvelopeDecoder().decode(envelope, 7)


class TestDecodeErrors:
    """Test malformed input at each layer."""

    def test_empty(self, decoder):
        with pytest.raises(DecodeError) as exc:
            decoder.decode(b"")
        assert exc.value.layer == "transaction"

    def test_garbage_outer(self, decoder):
        with pytest.raises(DecodeError) as exc:
            decoder.decode(b"\xff\xff\xff\xff")
        assert exc.value.layer == "transaction"

    def test_truncated_outer(self, decoder, factory, mixed_body):
        envelope = factory.signed(mixed_body)
        with pytest.raises(DecodeError) as exc:
            decoder.decode(envelope[:-3])
        assert exc.value.layer == "transaction"

    def test_truncated_signed_layer(self, decoder, factory, mixed_body):
        signed = protos.SignedTransaction(body_bytes=mixed_body.SerializeToString()).SerializeToString()
        envelope = protos.Transaction(signed_transaction_bytes=signed[:-3]).SerializeToString()
        with pytest.raises(DecodeError) as exc:
            decoder.decode(envelope)
        assert exc.value.layer == "signed_transaction"

    def test_truncated_body(self, decoder, mixed_body):
        body_bytes = mixed_body.SerializeToString()[:-3]
        signed = protos.SignedTransaction(body_bytes=body_bytes).SerializeToString()
        envelope = protos.Transaction(signed_transaction_bytes=signed).SerializeToString()
        with pytest.raises(DecodeError) as exc:
            decoder.decode(envelope)
        assert exc.value.layer == "transaction_body"

    def test_no_body(self, decoder):
        envelope = protos.Transaction().SerializeToString() + b"\x12\x00"  # unknown field 2
        with pytest.raises(DecodeError):
            decoder.decode(envelope)

    def test_errors_counted(self, decoder):
        with pytest.raises(DecodeError):
            decoder.decode(b"\xff")
        stats = decoder.get_stats()
        assert stats["errors"] == 1
        assert stats["errors_by_layer"] == {"transaction": 1}
