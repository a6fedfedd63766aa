"""
Mirror Node Database Source

Reads transactions straight from a mirror node PostgreSQL database.
Envelope bytes live in transaction.transaction_bytes; resolved credits in
crypto_transfer; account aliases in entity.evm_address / entity.alias.

All psycopg2 calls are blocking and run in the default executor, so the
scanner only suspends while a fetch is in flight.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import psycopg2
from psycopg2 import extras

from ..errors import TransportError
from ..types import (
    RESULT_SUCCESS,
    Address,
    LedgerIdentifier,
    ResolvedTransfer,
    TransactionKind,
    format_transaction_id,
)
from .types import SUCCESS, EntityLookup, RawTransaction, TransactionSource


TRANSACTIONS_SQL = """
    SELECT consensus_timestamp, type, result, transaction_bytes, transaction_hash,
           payer_account_id, valid_start_ns, nonce, memo
    FROM transaction
    WHERE consensus_timestamp > %s
      AND type = ANY(%s)
      AND result = %s
    ORDER BY consensus_timestamp ASC
    LIMIT %s
"""

CREDITS_SQL = """
    SELECT consensus_timestamp, entity_id, amount
    FROM crypto_transfer
    WHERE consensus_timestamp = ANY(%s)
    ORDER BY consensus_timestamp ASC, entity_id ASC
"""

ENTITY_SQL = """
    SELECT id
    FROM entity
    WHERE (evm_address = %s OR alias = %s)
      AND deleted IS NOT TRUE
    ORDER BY created_timestamp ASC NULLS LAST
    LIMIT 1
"""


@dataclass
class MirrorDatabaseConfig:
    """Connection parameters for the mirror node database."""
    host: str = "localhost"
    port: int = 5432
    database: str = "mirror_node"
    user: str = "mirror_node"
    password: str = ""
    connect_timeout: int = 10


class MirrorDatabaseSource(TransactionSource, EntityLookup):
    """
    Mirror node PostgreSQL transport.

    Usage:
        source = MirrorDatabaseSource(MirrorDatabaseConfig(host="db"))
        await source.start()
        page = await source.fetch_transactions(after, kinds, limit=200)
    """

    name = "db"

    def __init__(self, config: Optional[MirrorDatabaseConfig] = None):
        self.config = config or MirrorDatabaseConfig()
        self._logger = logging.getLogger("MirrorDatabaseSource")
        self._conn = None
        self._stats = {
            "queries": 0,
            "rows": 0,
            "errors": 0,
            "reconnects": 0,
        }

    async def start(self):
        await self._run(self._connect)
        self._logger.info(
            f"Connected to mirror database {self.config.database}@{self.config.host}:{self.config.port}"
        )

    async def stop(self):
        if self._conn is not None:
            await asyncio.get_running_loop().run_in_executor(None, self._conn.close)
            self._conn = None

    # =========================================================================
    # TransactionSource / EntityLookup
    # =========================================================================

    async def fetch_transactions(
        self,
        after: int,
        kinds: Sequence[TransactionKind],
        limit: int
    ) -> List[RawTransaction]:
        codes = [k.code for k in kinds if k.code is not None]
        return await self._run(self._fetch_sync, int(after), codes, int(limit))

    async def lookup_account(self, address: Address) -> Optional[LedgerIdentifier]:
        return await self._run(self._lookup_sync, address)

    # =========================================================================
    # Blocking implementation
    # =========================================================================

    async def _run(self, func, *args):
        try:
            return await asyncio.get_running_loop().run_in_executor(None, func, *args)
        except psycopg2.Error as e:
            self._stats["errors"] += 1
            self._drop_connection()
            raise TransportError(self.name, str(e).strip() or e.__class__.__name__)

    def _connect(self):
        if self._conn is not None and not self._conn.closed:
            return
        if self._conn is not None:
            self._stats["reconnects"] += 1
        self._conn = psycopg2.connect(
            host=self.config.host,
            port=self.config.port,
            database=self.config.database,
            user=self.config.user,
            password=self.config.password,
            connect_timeout=self.config.connect_timeout,
        )
        self._conn.set_session(readonly=True, autocommit=True)

    def _drop_connection(self):
        if self._conn is None:
            return
        try:
            self._conn.close()
        except psycopg2.Error as e:
            self._logger.debug(f"Error closing connection: {e}")
        self._conn = None

    def _fetch_sync(self, after: int, codes: List[int], limit: int) -> List[RawTransaction]:
        self._connect()
        with self._conn.cursor(cursor_factory=extras.RealDictCursor) as cursor:
            cursor.execute(TRANSACTIONS_SQL, (after, codes, RESULT_SUCCESS, limit))
            rows = cursor.fetchall()
            self._stats["queries"] += 1
            self._stats["rows"] += len(rows)
            if not rows:
                return []

            timestamps = [row["consensus_timestamp"] for row in rows]
            cursor.execute(CREDITS_SQL, (timestamps,))
            credits: Dict[int, List[ResolvedTransfer]] = {}
            for credit in cursor.fetchall():
                credits.setdefault(credit["consensus_timestamp"], []).append(ResolvedTransfer(
                    account=LedgerIdentifier.from_encoded(credit["entity_id"]),
                    amount=int(credit["amount"]),
                ))
            self._stats["queries"] += 1

        return [self._to_raw(row, credits.get(row["consensus_timestamp"], [])) for row in rows]

    def _lookup_sync(self, address: Address) -> Optional[LedgerIdentifier]:
        self._connect()
        raw = psycopg2.Binary(address.raw)
        with self._conn.cursor() as cursor:
            cursor.execute(ENTITY_SQL, (raw, raw))
            row = cursor.fetchone()
            self._stats["queries"] += 1
        if row is None:
            return None
        return LedgerIdentifier.from_encoded(row[0])

    def _to_raw(self, row: Dict, credits: List[ResolvedTransfer]) -> RawTransaction:
        payer = LedgerIdentifier.from_encoded(row["payer_account_id"])
        transaction_id = format_transaction_id(payer, row["valid_start_ns"], row.get("nonce") or 0)
        memo = _bytes(row.get("memo"))
        tx_hash = _bytes(row.get("transaction_hash"))
        return RawTransaction(
            transaction_id=transaction_id,
            consensus_timestamp=int(row["consensus_timestamp"]),
            envelope=_bytes(row.get("transaction_bytes")),
            result=SUCCESS if row["result"] == RESULT_SUCCESS else str(row["result"]),
            kind=TransactionKind.from_code(row["type"]),
            transaction_hash=f"0x{tx_hash.hex()}" if tx_hash else None,
            resolved_transfers=tuple(credits),
            memo=memo.decode("utf-8", errors="replace") if memo else None,
        )

    def get_stats(self) -> Dict:
        return dict(self._stats, connected=self._conn is not None)


def _bytes(value) -> Optional[bytes]:
    """bytea columns arrive as memoryview."""
    if value is None:
        return None
    data = bytes(value)
    return data or None
