"""Tests for the vigil CLI.

Exercises argument parsing, dispatch and exit codes with the composition
root replaced by mocks.
"""

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from fakes import build_context
from vigil.domain.value_objects.outcome import Outcome
from vigil.infrastructure.config import VigilConfig
from vigil.infrastructure.repositories.sqlite_store import ReservationNotFound
from vigil.presentation.cli.cli import _log_level, async_main, build_parser

CLI = "vigil.presentation.cli.cli"


def _make_container(context=None):
    container = MagicMock()
    container.config = VigilConfig()
    container.start = AsyncMock()
    container.close = AsyncMock()
    container.store.get_reservation_context.return_value = context or build_context()
    executor = MagicMock()
    executor.close = AsyncMock()
    container.create_executor.return_value = executor
    return container


def _make_worker(outcome=Outcome.CONNECTED):
    worker = MagicMock()
    worker.process = AsyncMock(return_value=outcome)
    worker.close = AsyncMock()
    worker.nat_host = None
    worker.provisioner.apply = AsyncMock(return_value=True)
    worker.public_address.update_public_ip_address = AsyncMock(return_value=True)
    worker.public_address.set_fixed_ip = AsyncMock(return_value=True)
    return worker


async def _run(argv, container, worker=None):
    with patch(f"{CLI}.load_config", return_value=VigilConfig()), \
         patch(f"{CLI}.configure_logging"), \
         patch(f"{CLI}.create_container", return_value=container), \
         patch(f"{CLI}.create_worker", return_value=worker or _make_worker()):
        return await async_main(argv)


class TestParser:
    def test_process_takes_many_ids(self):
        args = build_parser().parse_args(["process", "1", "2"])
        assert args.reservation_ids == [1, 2]

    def test_apply_connect_methods_overwrite(self):
        args = build_parser().parse_args(["apply-connect-methods", "7", "--overwrite"])
        assert args.reservation_id == 7
        assert args.overwrite

    def test_help_exits_zero(self, capsys):
        with pytest.raises(SystemExit) as exc:
            build_parser().parse_args(["--help"])
        assert exc.value.code == 0
        assert "reservation lifecycle controller" in capsys.readouterr().out

    def test_log_level(self):
        parser = build_parser()
        assert _log_level(parser.parse_args(["--debug", "process", "1"]), "WARNING") == logging.DEBUG
        assert _log_level(parser.parse_args(["-v", "process", "1"]), "WARNING") == logging.INFO
        assert _log_level(parser.parse_args(["process", "1"]), "ERROR") == logging.ERROR
        assert _log_level(parser.parse_args(["process", "1"]), "bogus") == logging.WARNING


class TestAsyncMain:
    @pytest.mark.asyncio
    async def test_no_command_prints_help(self, capsys):
        assert await async_main([]) == 0
        assert "usage" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_process(self, capsys):
        container = _make_container()
        worker = _make_worker()
        assert await _run(["process", "1"], container, worker) == 0
        assert "[+] Reservation 1: connected" in capsys.readouterr().out
        worker.close.assert_awaited_once()
        container.start.assert_awaited_once()
        container.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_process_abandoned(self, capsys):
        assert await _run(["process", "1"], _make_container(), _make_worker(None)) == 0
        assert "abandoned without an outcome" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_process_missing_reservation(self, capsys):
        container = _make_container()
        container.store.get_reservation_context.side_effect = ReservationNotFound(
            "Reservation 9 not found"
        )
        assert await _run(["process", "9"], container) == 1
        assert "[-] Reservation 9: Reservation 9 not found" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_apply_connect_methods(self, capsys):
        worker = _make_worker()
        assert await _run(["apply-connect-methods", "1"], _make_container(), worker) == 0
        assert worker.provisioner.apply.await_args.kwargs["overwrite"] is False
        assert "[+] Connect methods applied." in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_apply_connect_methods_failure(self):
        worker = _make_worker()
        worker.provisioner.apply = AsyncMock(return_value=False)
        assert await _run(["apply-connect-methods", "1"], _make_container(), worker) == 1
        worker.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_public_address(self, capsys):
        worker = _make_worker()
        assert await _run(["update-public-address", "1"], _make_container(), worker) == 0
        worker.public_address.set_fixed_ip.assert_awaited_once()
        assert "[+] Public address of vm1: 152.1.2.3" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_missing_reservation_for_single_command(self, capsys):
        container = _make_container()
        container.store.get_reservation_context.side_effect = ReservationNotFound(
            "Reservation 9 not found"
        )
        assert await _run(["update-public-address", "9"], container) == 1
        assert "[-] Reservation 9 not found" in capsys.readouterr().out
        container.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_wait_for_response(self, capsys):
        container = _make_container()
        poller = MagicMock()
        poller.wait_for_response = AsyncMock(return_value=True)
        container.create_poller.return_value = poller
        assert await _run(["wait-for-response", "vm1", "--timeout", "30"], container) == 0
        kwargs = poller.wait_for_response.await_args.kwargs
        assert kwargs["response_timeout_seconds"] == 30
        assert kwargs["initial_delay_seconds"] == 120
        container.create_executor.return_value.close.assert_awaited_once()
        assert "[+] vm1 is responding." in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_wait_for_reboot_failure(self, capsys):
        container = _make_container()
        poller = MagicMock()
        poller.wait_for_reboot = AsyncMock(return_value=False)
        container.create_poller.return_value = poller
        assert await _run(["wait-for-reboot", "vm1", "--attempt-limit", "1"], container) == 1
        assert poller.wait_for_reboot.await_args.kwargs["attempt_limit"] == 1
        assert "[-] vm1 did not reboot." in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_unexpected_error(self, capsys):
        container = _make_container()
        poller = MagicMock()
        poller.wait_for_reboot = AsyncMock(side_effect=RuntimeError("boom"))
        container.create_poller.return_value = poller
        assert await _run(["wait-for-reboot", "vm1"], container) == 1
        assert "[-] wait-for-reboot failed: boom" in capsys.readouterr().out
