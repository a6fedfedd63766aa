"""
Transaction Inspector

Fetches a single transaction from the mirror node and shows what the sender
actually put on the wire next to what the ledger resolved it to. Useful for
checking how a particular transfer addressed its recipient.

Usage:
    python -m hedera_monitor.debug_tx 0.0.6493627@1764172415.508697021
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import requests

from .errors import DecodeError, TransportError
from .indexer.envelope import EnvelopeDecoder, EnvelopeLayout
from .indexer.ethereum import EthereumPayloadDecoder
from .mirror.rest_source import envelope_from_entry, raw_from_entry
from .mirror.types import RawTransaction
from .types import (
    DecodedTransaction,
    KeyAlias,
    LedgerIdentifier,
    RawAlias,
    format_hbar,
    format_timestamp,
    normalize_transaction_id,
)

logger = logging.getLogger(__name__)


@dataclass
class InspectionReport:
    """Both views of one transaction."""
    requested_id: str
    transaction_id: str
    raw: Optional[RawTransaction] = None
    layout: Optional[EnvelopeLayout] = None
    decoded: Optional[DecodedTransaction] = None
    decode_error: Optional[str] = None
    fields: List[str] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.raw is not None


class TransactionInspector:
    """Synchronous mirror node client for one-off inspection."""

    def __init__(self, base_url: str = "https://testnet.mirrornode.hedera.com", timeout: float = 10.0):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self._decoder = EnvelopeDecoder(
            foreign_decoder=EthereumPayloadDecoder()
        )

    def fetch(self, transaction_id: str) -> Optional[Dict]:
        """
        Raw mirror JSON for a transaction id (SDK or mirror form).

        A trailing "/N" selects the child record with nonce N.
        """
        base_id, _, suffix = transaction_id.strip().partition('/')
        nonce = int(suffix) if suffix else None
        formatted = normalize_transaction_id(base_id)
        url = f"{self.base_url}/api/v1/transactions/{formatted}"
        params = {"nonce": str(nonce)} if nonce is not None else None
        logger.debug(f"Fetching: {url} {params or ''}")

        try:
            resp = requests.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError("rest", f"GET {url}: {e}")

        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise TransportError("rest", f"GET {url} failed", status=resp.status_code)

        wanted = nonce or 0
        for entry in resp.json().get("transactions") or []:
            if int(entry.get("nonce") or 0) == wanted:
                return entry
        return None

    def inspect(self, transaction_id: str) -> InspectionReport:
        base_id, slash, suffix = transaction_id.strip().partition('/')
        formatted = f"{normalize_transaction_id(base_id)}{slash}{suffix}"
        report = InspectionReport(requested_id=transaction_id, transaction_id=formatted)

        entry = self.fetch(transaction_id)
        if entry is None:
            return report

        report.fields = sorted(entry.keys())
        envelope = envelope_from_entry(entry)
        report.raw = raw_from_entry(entry, envelope)

        if envelope is None:
            report.decode_error = "no envelope bytes in response"
            return report

        try:
            report.layout = self._decoder.unwrap(envelope).layout
            report.decoded = self._decoder.decode(
                envelope,
                consensus_timestamp=report.raw.consensus_timestamp,
                transaction_id=report.raw.transaction_id,
                transaction_hash=report.raw.transaction_hash,
            )
        except DecodeError as e:
            report.decode_error = str(e)

        return report


def describe_destination(destination) -> str:
    if isinstance(destination, RawAlias):
        return f"EVM alias {destination.address.prefixed}"
    if isinstance(destination, LedgerIdentifier):
        return f"account id {destination}"
    if isinstance(destination, KeyAlias):
        return f"key alias {destination.key_bytes.hex()}"
    return repr(destination)


def format_report(report: InspectionReport) -> str:
    rule = "=" * 60
    lines = [
        rule,
        "TRANSACTION",
        rule,
        f"Requested ID: {report.requested_id}",
        f"Mirror ID:    {report.transaction_id}",
    ]

    if not report.found:
        lines.append("No transaction found")
        return "\n".join(lines)

    raw = report.raw
    lines.extend([
        f"Type:         {raw.kind.value}",
        f"Result:       {raw.result}",
        f"Consensus:    {format_timestamp(raw.consensus_timestamp)}",
        f"Hash:         {raw.transaction_hash}",
        f"Fields:       {', '.join(report.fields)}",
        "",
        rule,
        "TRANSFERS (resolved by mirror node)",
        rule,
    ])
    for transfer in raw.resolved_transfers:
        lines.append(f"  {transfer.account}: {transfer.amount} tinybar ({format_hbar(transfer.amount)})")

    lines.extend(["", rule, "TRANSFERS (as submitted)", rule])
    if report.decode_error:
        lines.append(f"  decode failed: {report.decode_error}")
    elif report.decoded is not None:
        lines.append(f"  layout: {report.layout.value if report.layout else 'unknown'}")
        if report.decoded.memo:
            lines.append(f"  memo:   {report.decoded.memo}")
        if not report.decoded.transfers:
            lines.append("  (no credits recovered)")
        for transfer in report.decoded.transfers:
            lines.append(
                f"  #{transfer.index} {describe_destination(transfer.destination)}: "
                f"+{transfer.amount} tinybar ({format_hbar(transfer.amount)})"
            )
            if transfer.ethereum_value is not None:
                lines.append(f"      ethereum value: {transfer.ethereum_value} weibar")

    return "\n".join(lines)


def main():
    """Entry point."""
    import argparse

    parser = argparse.ArgumentParser(description='Inspect a Hedera transaction envelope')
    parser.add_argument('transaction_id', help='0.0.x@seconds.nanos or 0.0.x-seconds-nanos')
    parser.add_argument('--mirror-url', default='https://testnet.mirrornode.hedera.com')
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    inspector = TransactionInspector(args.mirror_url)
    print(format_report(inspector.inspect(args.transaction_id)))


if __name__ == '__main__':
    main()
