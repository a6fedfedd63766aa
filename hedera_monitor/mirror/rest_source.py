"""
Mirror Node REST Source

Pages transactions out of the public mirror node REST API and fetches the
original envelope bytes for each one.

Endpoints:
    GET /api/v1/transactions?timestamp=gt:S.N&order=asc&limit=L&transactiontype=T&result=success
    GET /api/v1/transactions/{transaction_id}   (envelope bytes)
    GET /api/v1/accounts/0.0.{evm_address}       (entity lookup, 404 = not created)
"""

import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from ..errors import TransportError
from ..types import (
    Address,
    LedgerIdentifier,
    ResolvedTransfer,
    TransactionKind,
    format_timestamp,
    parse_timestamp,
)
from .types import EntityLookup, RawTransaction, TransactionSource


@dataclass
class MirrorRestConfig:
    """Configuration for the REST source."""
    base_url: str = "https://testnet.mirrornode.hedera.com"
    request_timeout: float = 30.0

    # Envelope bytes are only available from the per-transaction endpoint
    fetch_details: bool = True
    max_concurrent_details: int = 10


class MirrorRestSource(TransactionSource, EntityLookup):
    """
    Mirror node REST transport.

    Usage:
        source = MirrorRestSource(MirrorRestConfig(base_url=url))
        await source.start()
        page = await source.fetch_transactions(after, kinds, limit=100)
        account = await source.lookup_account(address)
        await source.stop()
    """

    name = "rest"

    def __init__(self, config: Optional[MirrorRestConfig] = None):
        self.config = config or MirrorRestConfig()
        self._logger = logging.getLogger("MirrorRestSource")
        self._session: Optional[aiohttp.ClientSession] = None
        self._owns_session = True
        self._stats = {
            "list_requests": 0,
            "detail_requests": 0,
            "account_requests": 0,
            "errors": 0,
        }

    @property
    def base_url(self) -> str:
        return self.config.base_url.rstrip('/')

    async def start(self, session: Optional[aiohttp.ClientSession] = None):
        """Open the HTTP session (or adopt an existing one)."""
        if session is not None:
            self._session = session
            self._owns_session = False
        elif self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout)
            )
        self._logger.info(f"Mirror REST source ready: {self.base_url}")

    async def stop(self):
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    # =========================================================================
    # TransactionSource
    # =========================================================================

    async def fetch_transactions(
        self,
        after: int,
        kinds: Sequence[TransactionKind],
        limit: int
    ) -> List[RawTransaction]:
        """
        One page per kind, merged ascending.

        When a kind's page came back full, entries of other kinds past that
        page's last timestamp are held back so the merged page never skips
        ahead of a kind that still has unseen entries.
        """
        merged: List[Dict[str, Any]] = []
        horizon: Optional[int] = None

        for kind in kinds:
            entries = await self._list_transactions(after, kind, limit)
            merged.extend(entries)
            if entries and len(entries) >= limit:
                last = parse_timestamp(entries[-1]["consensus_timestamp"])
                horizon = last if horizon is None else min(horizon, last)

        if horizon is not None:
            merged = [e for e in merged if parse_timestamp(e["consensus_timestamp"]) <= horizon]
        merged.sort(key=lambda e: parse_timestamp(e["consensus_timestamp"]))
        merged = merged[:limit]

        if self.config.fetch_details:
            envelopes = await self._fetch_envelopes(merged)
        else:
            envelopes = [envelope_from_entry(e) for e in merged]

        return [raw_from_entry(entry, envelope) for entry, envelope in zip(merged, envelopes)]

    async def fetch_transaction(self, transaction_id: str) -> Optional[RawTransaction]:
        """Single transaction by mirror-form id, with envelope bytes."""
        entry = await self._transaction_details(transaction_id)
        if entry is None:
            return None
        return raw_from_entry(entry, envelope_from_entry(entry))

    # =========================================================================
    # EntityLookup
    # =========================================================================

    async def lookup_account(self, address: Address) -> Optional[LedgerIdentifier]:
        self._stats["account_requests"] += 1
        data = await self._get(f"/api/v1/accounts/0.0.{address.hex}", allow_missing=True)
        if not data or not data.get("account"):
            return None
        return LedgerIdentifier.parse(data["account"])

    # =========================================================================
    # Requests
    # =========================================================================

    async def _list_transactions(
        self,
        after: int,
        kind: TransactionKind,
        limit: int
    ) -> List[Dict[str, Any]]:
        params = {
            "timestamp": f"gt:{format_timestamp(after)}",
            "order": "asc",
            "limit": str(limit),
            "transactiontype": kind.value,
            "result": "success",
        }
        self._stats["list_requests"] += 1
        data = await self._get("/api/v1/transactions", params=params)
        return list((data or {}).get("transactions") or [])

    async def _transaction_details(
        self,
        transaction_id: str,
        nonce: Optional[int] = None
    ) -> Optional[Dict[str, Any]]:
        transaction_id, _, suffix = transaction_id.partition('/')
        if suffix and nonce is None:
            nonce = int(suffix)
        params = {"nonce": str(nonce)} if nonce is not None else None

        self._stats["detail_requests"] += 1
        data = await self._get(
            f"/api/v1/transactions/{transaction_id}",
            params=params,
            allow_missing=True
        )
        # Parent and child records share an id and are told apart by nonce
        wanted = nonce or 0
        for candidate in (data or {}).get("transactions") or []:
            if int(candidate.get("nonce") or 0) == wanted:
                return candidate
        return None

    async def _fetch_envelopes(self, entries: List[Dict[str, Any]]) -> List[Optional[bytes]]:
        """Envelope bytes for each entry, fetching details where the list omitted them."""
        semaphore = asyncio.Semaphore(self.config.max_concurrent_details)

        async def envelope_for(entry: Dict[str, Any]) -> Optional[bytes]:
            envelope = envelope_from_entry(entry)
            if envelope is not None:
                return envelope
            async with semaphore:
                details = await self._transaction_details(
                    entry["transaction_id"],
                    nonce=entry.get("nonce")
                )
            if details is None:
                return None
            return envelope_from_entry(details)

        return list(await asyncio.gather(*(envelope_for(e) for e in entries)))

    async def _get(
        self,
        path: str,
        params: Optional[Dict[str, str]] = None,
        allow_missing: bool = False
    ) -> Optional[Dict[str, Any]]:
        if self._session is None:
            raise TransportError(self.name, "source not started")

        url = f"{self.base_url}{path}"
        try:
            async with self._session.get(url, params=params) as response:
                if response.status == 404 and allow_missing:
                    return None
                if response.status != 200:
                    self._stats["errors"] += 1
                    raise TransportError(self.name, f"GET {path} failed", status=response.status)
                return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._stats["errors"] += 1
            raise TransportError(self.name, f"GET {path}: {e}")

    def get_stats(self) -> Dict:
        return dict(self._stats)


def _b64(value: Optional[str]) -> Optional[bytes]:
    if not value:
        return None
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return None


def envelope_from_entry(entry: Dict[str, Any]) -> Optional[bytes]:
    return _b64(entry.get("bytes")) or _b64(entry.get("transaction_body"))


def _hash_hex(value: Optional[str]) -> Optional[str]:
    raw = _b64(value)
    return f"0x{raw.hex()}" if raw else None


def _memo(value: Optional[str]) -> Optional[str]:
    raw = _b64(value)
    if not raw:
        return None
    return raw.decode("utf-8", errors="replace")


def transfers_from_entry(transfers) -> tuple:
    resolved = []
    for transfer in transfers or []:
        try:
            resolved.append(ResolvedTransfer(
                account=LedgerIdentifier.parse(transfer["account"]),
                amount=int(transfer["amount"]),
            ))
        except (KeyError, TypeError, ValueError):
            continue
    return tuple(resolved)


def raw_from_entry(entry: Dict[str, Any], envelope: Optional[bytes]) -> RawTransaction:
    """Convert one mirror REST transaction object."""
    transaction_id = entry["transaction_id"]
    if entry.get("nonce"):
        transaction_id = f"{transaction_id}/{entry['nonce']}"
    return RawTransaction(
        transaction_id=transaction_id,
        consensus_timestamp=parse_timestamp(entry["consensus_timestamp"]),
        envelope=envelope,
        result=entry.get("result", "SUCCESS"),
        kind=TransactionKind.from_name(entry.get("name")),
        transaction_hash=_hash_hex(entry.get("transaction_hash")),
        resolved_transfers=transfers_from_entry(entry.get("transfers")),
        memo=_memo(entry.get("memo_base64")),
    )
