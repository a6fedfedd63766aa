"""
Monitor Configuration

All configurable parameters for the monitor, loaded from the environment
(and a .env file if present).
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from .addresses import Watchlist, parse_watch_entries
from .indexer.reconciler import DEFAULT_SYSTEM_ACCOUNTS
from .indexer.scanner import ScannerConfig
from .mirror.db_source import MirrorDatabaseConfig
from .mirror.rest_source import MirrorRestConfig
from .types import parse_timestamp, timestamp_seconds_ago


DEFAULT_WATCHED = "8f31e9fa14266c5da7f63bfc96811e08b7c09183:Wallet A"

SOURCES = ("rest", "db")


@dataclass
class MonitorConfig:
    """Configuration for MonitorService."""

    # ========== Transaction Source ==========
    # "rest" (public mirror node API) or "db" (mirror node PostgreSQL)
    source: str = "rest"
    mirror_node_url: str = "https://testnet.mirrornode.hedera.com"
    request_timeout: float = 30.0

    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "mirror_node"
    db_user: str = "mirror_node"
    db_password: str = ""

    # ========== Scanning ==========
    polling_interval: float = 3.0  # seconds
    batch_limit: int = 100

    # Start position: explicit timestamp, else checkpoint, else now - lookback
    start_timestamp: Optional[int] = None
    lookback_seconds: int = 60

    max_seen: int = 10_000
    seen_trim_target: int = 5_000

    # Seconds between entity lookups for watched addresses with no account
    resolve_interval: float = 30.0

    log_cycle_interval: int = 20

    # ========== Watchlist ==========
    # 'addr[:label],addr[:label]'
    watched: str = DEFAULT_WATCHED
    watchlist_file: Optional[str] = None

    # ========== Reconciliation ==========
    # Accounts never taken as the id of a freshly created alias
    system_accounts: List[str] = field(default_factory=lambda: list(DEFAULT_SYSTEM_ACCOUNTS))

    # ========== Checkpoint ==========
    checkpoint_path: Optional[str] = None

    def __post_init__(self):
        if self.source not in SOURCES:
            raise ValueError(f"Unknown source {self.source!r}, expected one of {SOURCES}")
        if self.batch_limit <= 0:
            raise ValueError("batch_limit must be positive")
        if self.seen_trim_target > self.max_seen:
            raise ValueError("seen_trim_target must not exceed max_seen")

    @classmethod
    def from_env(cls, env_file: Optional[str] = None, **overrides) -> "MonitorConfig":
        """Build from environment variables; keyword overrides win."""
        load_dotenv(env_file)

        start = os.getenv('START_CONSENSUS_TIMESTAMP')
        max_seen = int(os.getenv('MAX_SEEN_TRANSACTIONS', '10000'))
        system_accounts = os.getenv('SYSTEM_ACCOUNTS')

        values = dict(
            source=os.getenv('MONITOR_SOURCE', 'rest').lower(),
            mirror_node_url=os.getenv('MIRROR_NODE_URL', 'https://testnet.mirrornode.hedera.com'),
            db_host=os.getenv('DB_HOST', 'localhost'),
            db_port=int(os.getenv('DB_PORT', '5432')),
            db_name=os.getenv('DB_NAME', 'mirror_node'),
            db_user=os.getenv('DB_USER', 'mirror_node'),
            db_password=os.getenv('DB_PASSWORD', ''),
            polling_interval=int(os.getenv('POLLING_INTERVAL_MS', '3000')) / 1000.0,
            batch_limit=int(os.getenv('BATCH_LIMIT', '100')),
            start_timestamp=parse_timestamp(start) if start else None,
            lookback_seconds=int(os.getenv('LOOKBACK_SECONDS', '60')),
            max_seen=max_seen,
            seen_trim_target=max_seen // 2,
            resolve_interval=float(os.getenv('RESOLVE_INTERVAL_SECONDS', '30')),
            watched=os.getenv('WATCHED_EVM_ADDRESSES', DEFAULT_WATCHED),
            watchlist_file=os.getenv('WATCHLIST_FILE') or None,
            checkpoint_path=os.getenv('CHECKPOINT_PATH') or None,
        )
        if system_accounts is not None:
            values["system_accounts"] = [a.strip() for a in system_accounts.split(',') if a.strip()]

        values.update(overrides)
        return cls(**values)

    # =========================================================================
    # Builders
    # =========================================================================

    def build_watchlist(self) -> Watchlist:
        """Watchlist from the YAML file (if set) plus inline entries. Raises InvalidAddress."""
        if self.watchlist_file:
            watchlist = Watchlist.from_yaml(self.watchlist_file)
        else:
            watchlist = Watchlist()
        watchlist.add_many(parse_watch_entries(self.watched))
        return watchlist

    def initial_watermark(self, now: Optional[float] = None) -> int:
        if self.start_timestamp is not None:
            return self.start_timestamp
        return timestamp_seconds_ago(self.lookback_seconds, now=now)

    def scanner_config(self) -> ScannerConfig:
        return ScannerConfig(
            polling_interval=self.polling_interval,
            batch_limit=self.batch_limit,
            max_seen=self.max_seen,
            seen_trim_target=self.seen_trim_target,
            resolve_interval=self.resolve_interval,
            log_cycle_interval=self.log_cycle_interval,
        )

    def rest_config(self) -> MirrorRestConfig:
        return MirrorRestConfig(
            base_url=self.mirror_node_url,
            request_timeout=self.request_timeout,
        )

    def db_config(self) -> MirrorDatabaseConfig:
        return MirrorDatabaseConfig(
            host=self.db_host,
            port=self.db_port,
            database=self.db_name,
            user=self.db_user,
            password=self.db_password,
        )
