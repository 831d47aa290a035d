"""Integration tests for the reserved phase.

Runs ReservationController against a real SQLite store, with the node side
replaced by in-memory bindings.
"""

import pytest

from fakes import SSH, FakeClock, FakeNotifier, ReservableBinding
from vigil.application.use_cases.apply_connect_methods import ConnectMethodProvisioner
from vigil.application.use_cases.check_connection import ConnectionChecker
from vigil.application.use_cases.process_reserved import ReservationController
from vigil.application.use_cases.resolve_timings import TimingResolver
from vigil.domain.entities.computer import ComputerNode, ComputerType
from vigil.domain.entities.reservation import (
    Affiliation,
    Image,
    ManagementNode,
    Request,
    Reservation,
    User,
)
from vigil.domain.events.reservation_events import ReservationResolvedEvent
from vigil.domain.ports.os_capabilities import PortConnection
from vigil.domain.value_objects.outcome import Outcome
from vigil.infrastructure.event_bus import EventBus
from vigil.infrastructure.repositories.sqlite_store import SQLiteStore

REMOTE_IP = "192.168.1.77"


@pytest.fixture
def store(tmp_path):
    s = SQLiteStore(str(tmp_path / "vigil.db"))
    s.connect()
    s.add_management_node(
        1, ManagementNode(hostname="mn1.example.edu", ip_addresses=("10.0.0.1",))
    )
    s.add_request(Request(id=10, state="reserved"))
    s.add_computer(ComputerNode(
        id=20,
        hostname="vm1.lab.example.edu",
        type=ComputerType.VIRTUAL_MACHINE,
        public_ip="152.1.2.3",
        private_ip="10.0.0.5",
    ))
    s.add_reservation(
        Reservation(id=1, request_id=10, computer_id=20),
        1,
        Image(name="centos7-base", pretty_name="CentOS 7"),
        User(
            login="alice",
            email="alice@example.edu",
            affiliation=Affiliation(
                name="Example", site_name="Example Lab", help_address="help@example.edu"
            ),
        ),
        [SSH],
    )
    yield s
    s.close()


class Harness:
    def __init__(self, store, binding, sleep=None):
        self.clock = FakeClock()
        self.notifier = FakeNotifier()
        self.resolved = []
        event_bus = EventBus()
        event_bus.subscribe(ReservationResolvedEvent, self._on_resolved)
        provisioner = ConnectMethodProvisioner(binding, "10.0.0.5")
        checker = ConnectionChecker(
            store, binding, provisioner, sleep=self.clock.sleep, clock=self.clock
        )
        self.controller = ReservationController(
            store,
            binding,
            provisioner,
            checker,
            notifier=self.notifier,
            timings=TimingResolver(store),
            event_bus=event_bus,
            sleep=sleep or self.clock.sleep,
        )

    async def _on_resolved(self, event):
        self.resolved.append(event)


class TestReservationFlow:
    @pytest.mark.asyncio
    async def test_acknowledged_and_connected(self, store):
        store.set_remote_ip(1, REMOTE_IP)
        binding = ReservableBinding(services=("sshd",))
        binding.connections = [PortConnection("tcp", 22, REMOTE_IP)]
        harness = Harness(store, binding)

        outcome = await harness.controller.process(store.get_reservation_context(1))

        assert outcome is Outcome.CONNECTED
        assert store.get_request_state(10) == ("inuse", "reserved")
        assert store.get_computer_state(20) == "inuse"
        context = store.get_reservation_context(1)
        assert context.reservation.lastcheck is not None
        assert len(context.reservation.password) == 8
        assert binding.granted == 1
        assert any(r.port == 22 for r in binding.rules)
        assert harness.notifier.emails == []
        assert [e.outcome for e in harness.resolved] == ["connected"]
        log = store.get_log(context.request.log_id)
        assert log["loaded"] is not None
        assert log["ending"] is None

    @pytest.mark.asyncio
    async def test_not_acknowledged(self, store):
        store.set_variable("acknowledgetimeout", "10")
        binding = ReservableBinding(services=("sshd",))
        harness = Harness(store, binding)

        outcome = await harness.controller.process(store.get_reservation_context(1))

        assert outcome is Outcome.NOACK
        assert harness.clock.sleeps == [5]
        assert store.get_request_state(10) == ("timeout", "reserved")
        assert store.get_computer_state(20) == "timeout"
        assert store.get_log(store.get_reservation_context(1).request.log_id)["ending"] == "noack"
        assert binding.granted == 0
        [(address, subject, _, reply_to)] = harness.notifier.emails
        assert address == "alice@example.edu"
        assert reply_to == "help@example.edu"

    @pytest.mark.asyncio
    async def test_affiliation_timing_overrides_global(self, store):
        store.set_variable("acknowledgetimeout", "600")
        store.set_variable("acknowledgetimeout|Example", "15")
        harness = Harness(store, ReservableBinding())

        assert await harness.controller.process(store.get_reservation_context(1)) is Outcome.NOACK
        assert harness.clock.sleeps == [5, 5]

    @pytest.mark.asyncio
    async def test_deleted_while_awaiting_acknowledgement(self, store):
        async def delete_on_sleep(seconds):
            store.delete_request(10)

        binding = ReservableBinding()
        harness = Harness(store, binding, sleep=delete_on_sleep)

        assert await harness.controller.process(store.get_reservation_context(1)) is None
        assert store.get_request_state(10) == ("deleted", "reserved")
        assert store.get_computer_state(20) == "reserved"
        assert harness.resolved == []
        assert harness.notifier.emails == []

    @pytest.mark.asyncio
    async def test_acknowledged_without_login(self, store):
        store.set_remote_ip(1, REMOTE_IP)
        store.set_variable("connecttimeout", "60")
        binding = ReservableBinding(services=("sshd",))
        harness = Harness(store, binding)

        outcome = await harness.controller.process(store.get_reservation_context(1))

        assert outcome is Outcome.NOLOGIN
        assert store.get_request_state(10) == ("timeout", "reserved")
        assert store.get_log(store.get_reservation_context(1).request.log_id)["ending"] == "nologin"
        assert len(harness.notifier.emails) == 1
        loadstates = [entry["loadstate"] for entry in store.get_load_log(1)]
        assert "info" in loadstates
