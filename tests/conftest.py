"""
Shared fixtures: envelope builders and an in-memory transaction source.

Envelopes are built with the same protobuf message classes the decoder
reads, so tests exercise real wire bytes.
"""

from typing import Dict, List, Optional, Sequence

import pytest

from hedera_monitor.errors import TransportError
from hedera_monitor.indexer import protos
from hedera_monitor.mirror.types import EntityLookup, RawTransaction, TransactionSource
from hedera_monitor.types import (
    Address,
    LedgerIdentifier,
    ResolvedTransfer,
    TransactionKind,
)


WATCHED_HEX = "8f31e9fa14266c5da7f63bfc96811e08b7c09183"
OTHER_HEX = "00000000000000000000000000000000deadbeef"

PAYER = 6493627
VALID_START = (1764172415, 508697021)


class EnvelopeFactory:
    """Builds Transaction envelopes in each supported layout."""

    def account(self, num: Optional[int] = None, alias: Optional[bytes] = None, shard: int = 0, realm: int = 0):
        account = protos.AccountID(shard_num=shard, realm_num=realm)
        if alias is not None:
            account.alias = alias
        elif num is not None:
            account.account_num = num
        return account

    def body(self, memo: str = "", payer: int = PAYER, valid_start=VALID_START, nonce: int = 0):
        body = protos.TransactionBody(memo=memo)
        body.transaction_id.account_id.account_num = payer
        body.transaction_id.transaction_valid_start.seconds = valid_start[0]
        body.transaction_id.transaction_valid_start.nanos = valid_start[1]
        body.transaction_id.nonce = nonce
        return body

    def crypto_transfer(self, transfers, memo: str = "", **kwargs):
        """transfers: [(AccountID, amount), ...] in wire order."""
        body = self.body(memo=memo, **kwargs)
        account_amounts = body.crypto_transfer.transfers.account_amounts
        for account, amount in transfers:
            entry = account_amounts.add(amount=amount)
            entry.account_id.CopyFrom(account)
        return body

    def ethereum(self, ethereum_data: bytes, **kwargs):
        body = self.body(**kwargs)
        body.ethereum_transaction.ethereum_data = ethereum_data
        return body

    def signed(self, body) -> bytes:
        signed = protos.SignedTransaction(body_bytes=body.SerializeToString())
        return protos.Transaction(signed_transaction_bytes=signed.SerializeToString()).SerializeToString()

    def legacy_body_bytes(self, body) -> bytes:
        return protos.Transaction(body_bytes=body.SerializeToString()).SerializeToString()

    def legacy_body(self, body) -> bytes:
        transaction = protos.Transaction()
        transaction.body.CopyFrom(body)
        return transaction.SerializeToString()


class FakeSource(TransactionSource, EntityLookup):
    """In-memory feed honoring the after/kind/limit contract."""

    name = "fake"

    def __init__(self, transactions: Optional[List[RawTransaction]] = None):
        self.transactions: List[RawTransaction] = list(transactions or [])
        self.accounts: Dict[Address, LedgerIdentifier] = {}
        self.fail_fetches = 0
        self.fetch_calls: List[int] = []
        self.lookup_calls: List[Address] = []
        self.started = False
        self.stopped = False

    async def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True

    async def fetch_transactions(
        self,
        after: int,
        kinds: Sequence[TransactionKind],
        limit: int
    ) -> List[RawTransaction]:
        self.fetch_calls.append(after)
        if self.fail_fetches:
            self.fail_fetches -= 1
            raise TransportError(self.name, "connection reset")
        page = sorted(
            (t for t in self.transactions if t.consensus_timestamp > after and t.kind in kinds),
            key=lambda t: t.consensus_timestamp,
        )
        return page[:limit]

    async def lookup_account(self, address: Address) -> Optional[LedgerIdentifier]:
        self.lookup_calls.append(address)
        return self.accounts.get(address)


def raw_transaction(
    transaction_id: str,
    consensus_timestamp: int,
    envelope: Optional[bytes],
    resolved=(),
    kind: TransactionKind = TransactionKind.CRYPTO_TRANSFER,
    result: str = "SUCCESS",
    memo: Optional[str] = None
) -> RawTransaction:
    return RawTransaction(
        transaction_id=transaction_id,
        consensus_timestamp=consensus_timestamp,
        envelope=envelope,
        result=result,
        kind=kind,
        resolved_transfers=tuple(
            ResolvedTransfer(LedgerIdentifier.parse(account), amount)
            for account, amount in resolved
        ),
        memo=memo,
    )


@pytest.fixture
def factory():
    return EnvelopeFactory()


@pytest.fixture
def watched():
    return Address(WATCHED_HEX)


@pytest.fixture
def other():
    return Address(OTHER_HEX)


@pytest.fixture
def make_raw():
    return raw_transaction


@pytest.fixture
def source():
    return FakeSource()
