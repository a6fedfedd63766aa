"""
Unit tests for the embedded Ethereum payload decoder.

Payloads are signed with eth_account, the same way a wallet would submit
them through the JSON-RPC relay.
"""

from unittest.mock import patch

import pytest
from eth_account import Account
from eth_keys.exceptions import BadSignature
from eth_utils import to_checksum_address

from hedera_monitor.addresses import normalize
from hedera_monitor.indexer.envelope import EnvelopeDecoder
from hedera_monitor.indexer.ethereum import (
    ACCESS_LIST,
    DYNAMIC_FEE,
    LEGACY,
    EthereumPayloadDecoder,
)
from hedera_monitor.types import LedgerIdentifier, RawAlias, TransactionKind


WATCHED = "8f31e9fa14266c5da7f63bfc96811e08b7c09183"
CHAIN_ID = 296  # testnet
PRIVATE_KEY = "0x" + "4c" * 32

ONE_CENT_HBAR_WEI = 10 ** 16  # 0.01 HBAR = 1_000_000 tinybar


def sign(tx_type: int, to=WATCHED, value=ONE_CENT_HBAR_WEI, data=b"") -> bytes:
    tx = {
        "nonce": 7,
        "gas": 21000,
        "value": value,
        "data": data,
        "chainId": CHAIN_ID,
    }
    if to is not None:
        tx["to"] = to_checksum_address("0x" + to)
    if tx_type == LEGACY:
        tx["gasPrice"] = 710_000_000_000
    elif tx_type == ACCESS_LIST:
        tx["type"] = 1
        tx["gasPrice"] = 710_000_000_000
        tx["accessList"] = []
    else:
        tx["type"] = 2
        tx["maxFeePerGas"] = 710_000_000_000
        tx["maxPriorityFeePerGas"] = 1
    return bytes(Account.sign_transaction(tx, PRIVATE_KEY).raw_transaction)


@pytest.fixture
def payload_decoder():
    return EthereumPayloadDecoder()


class TestPayloadTypes:
    """Test each supported payload encoding."""

    @pytest.mark.parametrize("tx_type", [LEGACY, ACCESS_LIST, DYNAMIC_FEE])
    def test_fields(self, payload_decoder, tx_type):
        payload = payload_decoder.decode(sign(tx_type))

        assert payload is not None
        assert payload.tx_type == tx_type
        assert payload.to == bytes.fromhex(WATCHED)
        assert payload.to_address == normalize(WATCHED)
        assert payload.value == ONE_CENT_HBAR_WEI
        assert payload.nonce == 7
        assert payload.gas_limit == 21000
        assert payload.chain_id == CHAIN_ID

    def test_sender_recovered(self, payload_decoder):
        payload = payload_decoder.decode(sign(DYNAMIC_FEE))
        expected = normalize(Account.from_key(PRIVATE_KEY).address)
        assert payload.sender == expected

    def test_sender_recovery_optional(self):
        payload = EthereumPayloadDecoder(recover_sender=False).decode(sign(DYNAMIC_FEE))
        assert payload.sender is None

    def test_bad_signature_leaves_sender_empty(self, payload_decoder):
        with patch(
            "hedera_monitor.indexer.ethereum.Account.recover_transaction",
            side_effect=BadSignature("invalid signature"),
        ):
            payload = payload_decoder.decode(sign(DYNAMIC_FEE))

        assert payload is not None
        assert payload.sender is None
        assert payload.to_address == normalize(WATCHED)
        assert payload_decoder.get_stats()["decoded"] == 1

    def test_unexpected_recovery_error_propagates(self, payload_decoder):
        with patch(
            "hedera_monitor.indexer.ethereum.Account.recover_transaction",
            side_effect=RuntimeError("boom"),
        ):
            with pytest.raises(RuntimeError):
                payload_decoder.decode(sign(DYNAMIC_FEE))

    def test_contract_creation_has_no_recipient(self, payload_decoder):
        payload = payload_decoder.decode(sign(DYNAMIC_FEE, to=None, value=0, data=b"\x60\x00"))
        assert payload.to is None
        assert payload.to_address is None


class TestUndecodable:
    """Undecodable payloads return None instead of raising."""

    @pytest.mark.parametrize("raw", [
        b"",
        b"\x03\xc0",
        b"\x02\xff\xff",
        b"\x02\xc0",
    ])
    def test_returns_none(self, payload_decoder, raw):
        assert payload_decoder.decode(raw) is None

    def test_failures_counted(self, payload_decoder):
        payload_decoder.decode(b"\x02\xff\xff")
        assert payload_decoder.get_stats()["failed"] == 1


class TestEnvelopeIntegration:
    """EthereumTransaction bodies through the envelope decoder."""

    @pytest.fixture
    def decoder(self):
        return EnvelopeDecoder(foreign_decoder=EthereumPayloadDecoder())

    def test_raw_alias_credit(self, decoder, factory):
        envelope = factory.signed(factory.ethereum(sign(DYNAMIC_FEE)))
        decoded = decoder.decode(envelope)

        assert decoded.kind == TransactionKind.ETHEREUM_TRANSACTION
        (transfer,) = decoded.transfers
        assert transfer.destination == RawAlias(normalize(WATCHED))
        assert transfer.amount == 1_000_000
        assert transfer.ethereum_value == ONE_CENT_HBAR_WEI

    def test_long_zero_recipient_is_account_id(self, decoder, factory):
        long_zero = "00" * 12 + (1234).to_bytes(8, "big").hex()
        envelope = factory.signed(factory.ethereum(sign(LEGACY, to=long_zero)))
        (transfer,) = decoder.decode(envelope).transfers
        assert transfer.destination == LedgerIdentifier(0, 0, 1234)

    def test_dust_value_ignored(self, decoder, factory):
        envelope = factory.signed(factory.ethereum(sign(DYNAMIC_FEE, value=10 ** 9)))
        assert decoder.decode(envelope).transfers == ()

    def test_undecodable_payload_not_an_error(self, decoder, factory):
        envelope = factory.signed(factory.ethereum(b"\x02\xff\xff"))
        decoded = decoder.decode(envelope)
        assert decoded.kind == TransactionKind.ETHEREUM_TRANSACTION
        assert decoded.transfers == ()
