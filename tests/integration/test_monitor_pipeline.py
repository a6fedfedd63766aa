"""
Integration tests for MonitorService.

Runs the full wiring (config -> source -> decoder -> reconciler -> scanner
-> sinks) against an in-memory feed.
"""

import asyncio
import json

import pytest

from hedera_monitor.config import MonitorConfig
from hedera_monitor.monitor import MonitorService, build_source, main
from hedera_monitor.mirror.db_source import MirrorDatabaseSource
from hedera_monitor.mirror.rest_source import MirrorRestSource
from hedera_monitor.types import DetectionMethod, LedgerIdentifier


WATCHED_BYTES = bytes.fromhex("8f31e9fa14266c5da7f63bfc96811e08b7c09183")
EXISTING_HEX = "00000000000000000000000000000000deadbeef"


@pytest.fixture
def config(tmp_path):
    return MonitorConfig(
        watched=f"0x8f31e9fa14266c5da7f63bfc96811e08b7c09183:Fresh,{EXISTING_HEX}:Existing",
        start_timestamp=0,
        polling_interval=0.01,
        log_cycle_interval=0,
        checkpoint_path=str(tmp_path / "checkpoint.json"),
    )


class TestMonitorService:

    @pytest.mark.asyncio
    async def test_end_to_end(self, config, source, factory, make_raw, watched, other):
        source.accounts[other] = LedgerIdentifier(0, 0, 4242)

        created = []
        service = MonitorService(
            config,
            source=source,
            on_account_created=lambda address, ledger_id: created.append((address, ledger_id)),
        )
        events = []
        service.add_sink(events.append)

        # Raw alias transfer that auto-creates 0.0.7001 for the fresh address
        create = factory.crypto_transfer([
            (factory.account(num=2), -1_000_000),
            (factory.account(alias=WATCHED_BYTES), 1_000_000),
        ], memo="welcome")
        # Native transfer by id to the pre-existing account
        native = factory.crypto_transfer([
            (factory.account(num=2), -25),
            (factory.account(num=4242), 25),
        ], valid_start=(1764172415, 2))
        source.transactions = [
            make_raw("0.0.2-1764172415-000000001", 100, factory.signed(create), resolved=[
                ("0.0.2", -1_000_000), ("0.0.7001", 1_000_000),
            ]),
            make_raw("0.0.2-1764172415-000000002", 200, factory.signed(native)),
        ]

        await service.start()
        await asyncio.sleep(0.05)
        await service.stop()

        assert source.started and source.stopped

        # Pre-existing account bound at bootstrap without a creation callback
        assert service.reconciler.lookup(other) == LedgerIdentifier(0, 0, 4242)
        assert created == [(watched, LedgerIdentifier(0, 0, 7001))]

        assert len(events) == 2
        fresh, existing = events
        assert fresh.address == watched
        assert fresh.sender_used_raw_alias is True
        assert fresh.ledger_id == LedgerIdentifier(0, 0, 7001)
        assert fresh.label == "Fresh"
        assert fresh.memo == "welcome"
        assert existing.address == other
        assert existing.sender_used_raw_alias is False
        assert existing.detection_method == DetectionMethod.TRANSACTION_BYTES

        stats = service.get_stats()
        assert stats["scanner"]["matches"] == 2
        assert stats["reconciler"]["bindings"] == 2

        with open(config.checkpoint_path) as f:
            assert json.load(f)["watermark"] == "0.000000200"

    @pytest.mark.asyncio
    async def test_failing_creation_callback_keeps_batch(self, config, source, factory, make_raw, watched, other):
        source.accounts[other] = LedgerIdentifier(0, 0, 4242)

        def broken(address, ledger_id):
            raise RuntimeError("notification channel down")

        service = MonitorService(config, source=source, on_account_created=broken)
        events = []
        service.add_sink(events.append)

        create = factory.crypto_transfer([
            (factory.account(num=2), -1_000_000),
            (factory.account(alias=WATCHED_BYTES), 1_000_000),
        ])
        later = factory.crypto_transfer([
            (factory.account(num=2), -25),
            (factory.account(num=4242), 25),
        ], valid_start=(1764172415, 2))
        source.transactions = [
            make_raw("0.0.2-1764172415-000000001", 100, factory.signed(create), resolved=[
                ("0.0.2", -1_000_000), ("0.0.7001", 1_000_000),
            ]),
            make_raw("0.0.2-1764172415-000000002", 200, factory.signed(later)),
        ]

        await service.start()
        await asyncio.sleep(0.05)
        await service.stop()

        assert service.reconciler.lookup(watched) == LedgerIdentifier(0, 0, 7001)
        assert [e.address for e in events] == [watched, other]
        assert service.scanner.cursor.watermark == 200
        assert service.reconciler.get_stats()["listener_errors"] == 0

    @pytest.mark.asyncio
    async def test_resumes_from_checkpoint(self, config, source, factory, make_raw):
        body = factory.crypto_transfer([(factory.account(alias=WATCHED_BYTES), 10)])
        source.transactions = [make_raw("tx1", 100, factory.signed(body))]

        first = MonitorService(config, source=source)
        await first.scanner.poll_once()
        assert first.scanner.cursor.watermark == 100

        resumed = MonitorService(
            MonitorConfig(
                watched=config.watched,
                checkpoint_path=config.checkpoint_path,
                log_cycle_interval=0,
            ),
            source=source,
        )
        assert resumed.scanner.cursor.watermark == 100
        assert await resumed.scanner.poll_once() == []

    @pytest.mark.asyncio
    async def test_watchlist_changes_apply_next_cycle(self, config, source, factory, make_raw):
        service = MonitorService(config, source=source)
        added = service.add_address("0x" + "11" * 20, "Late")

        body = factory.crypto_transfer([(factory.account(alias=added.raw), 10)])
        source.transactions = [make_raw("tx1", 100, factory.signed(body))]

        (event,) = await service.scanner.poll_once()
        assert event.address == added
        assert event.label == "Late"

        assert service.remove_address(added) is True
        assert service.remove_address(added) is False

    @pytest.mark.asyncio
    async def test_request_stop(self, config, source):
        service = MonitorService(config, source=source)
        task = asyncio.ensure_future(service.run_forever())
        await asyncio.sleep(0.05)
        service.request_stop()
        await asyncio.wait_for(task, timeout=2)

        assert source.stopped
        assert not service.scanner.running


class TestWiring:

    def test_build_source(self):
        assert isinstance(build_source(MonitorConfig(source="rest")), MirrorRestSource)
        assert isinstance(build_source(MonitorConfig(source="db")), MirrorDatabaseSource)

    def test_cli_without_command_prints_help(self, capsys):
        assert main([]) == 2
        assert "scan" in capsys.readouterr().out
