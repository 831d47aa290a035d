"""Tests for SQLiteStore."""

from datetime import UTC, datetime, timedelta

import pytest

from fakes import SSH
from vigil.domain.entities.computer import ComputerNode, ComputerType
from vigil.domain.entities.reservation import (
    Affiliation,
    Image,
    ManagementNode,
    Request,
    Reservation,
    ServerRequest,
    User,
)
from vigil.domain.ports.reservation_store_port import ReservationStorePort
from vigil.infrastructure.repositories.sqlite_store import ReservationNotFound, SQLiteStore

USER = User(
    login="alice",
    email="alice@example.edu",
    affiliation=Affiliation(name="Example", site_name="Example Lab"),
)
IMAGE = Image(name="centos7-base", pretty_name="CentOS 7")


@pytest.fixture
def store(tmp_path):
    s = SQLiteStore(str(tmp_path / "vigil.db"))
    s.connect()
    yield s
    s.close()


def seed(store, request=None, reservations=((1, 20, "vm1.lab.example.edu", "152.1.2.3"),)):
    store.add_management_node(
        1, ManagementNode(hostname="mn1.example.edu", ip_addresses=("10.0.0.1",))
    )
    log_id = store.add_request(request or Request(id=10, state="reserved"))
    for reservation_id, computer_id, hostname, public_ip in reservations:
        store.add_computer(ComputerNode(
            id=computer_id,
            hostname=hostname,
            type=ComputerType.VIRTUAL_MACHINE,
            public_ip=public_ip,
            private_ip="10.0.0.5",
        ))
        store.add_reservation(
            Reservation(id=reservation_id, request_id=10, computer_id=computer_id),
            1, IMAGE, USER, [SSH],
        )
    return log_id


class TestSQLiteStore:
    def test_satisfies_port(self, store):
        assert isinstance(store, ReservationStorePort)

    def test_reservation_context(self, store):
        seed(store)
        context = store.get_reservation_context(1)
        assert context.reservation.request_id == 10
        assert context.reservation.remote_ip == ""
        assert context.request.state == "reserved"
        assert context.computer.node_name == "vm1"
        assert context.image == IMAGE
        assert context.user == USER
        assert context.management_node.ip_addresses == ("10.0.0.1",)
        assert context.connect_methods == (SSH,)
        assert not context.request.is_cluster

    def test_cluster_members_in_reservation_order(self, store):
        seed(store, reservations=(
            (2, 21, "vm2.lab.example.edu", "152.1.2.4"),
            (1, 20, "vm1.lab.example.edu", "152.1.2.3"),
        ))
        members = store.get_reservation_context(2).request.members
        assert [m.reservation_id for m in members] == [1, 2]
        assert members[1].public_ip == "152.1.2.4"

    def test_request_details_round_trip(self, store):
        end = datetime.now(UTC) + timedelta(hours=2)
        seed(store, Request(
            id=10, state="reserved", log_id=100, for_imaging=True, end=end,
            server_request=ServerRequest(id=5, fixed_ip="152.1.2.50"),
        ))
        request = store.get_reservation_context(1).request
        assert request.log_id == 100
        assert request.for_imaging
        assert request.end == end
        assert request.server_request == ServerRequest(id=5, fixed_ip="152.1.2.50")

    def test_missing_reservation(self, store):
        with pytest.raises(ReservationNotFound):
            store.get_reservation_context(99)

    def test_acknowledgement(self, store):
        seed(store)
        assert store.get_remote_ip(1) == ""
        assert store.set_remote_ip(1, "192.168.1.77")
        assert store.get_remote_ip(1) == "192.168.1.77"
        assert store.get_remote_ip(99) is None

    def test_deletion(self, store):
        seed(store)
        assert not store.is_request_deleted(10)
        assert store.delete_request(10)
        assert store.is_request_deleted(10)
        assert store.get_request_state(10) == ("deleted", "reserved")
        assert store.is_request_deleted(99)

    def test_state_writes(self, store):
        seed(store)
        assert store.update_request_state(10, "inuse", "reserved")
        assert store.update_computer_state(20, "inuse")
        assert store.update_reservation_lastcheck(1)
        assert store.get_request_state(10) == ("inuse", "reserved")
        assert store.get_computer_state(20) == "inuse"
        assert store.get_reservation_context(1).reservation.lastcheck is not None

    def test_writes_to_missing_rows_fail(self, store):
        assert not store.update_request_state(99, "inuse", "reserved")
        assert not store.update_computer_state(99, "inuse")
        assert not store.set_reservation_password(99, "secret12")

    def test_password(self, store):
        seed(store)
        assert store.set_reservation_password(1, "secret12")
        assert store.get_reservation_context(1).reservation.password == "secret12"

    def test_log(self, store):
        log_id = seed(store)
        assert store.update_log_loaded(log_id)
        assert store.update_log_ending(log_id, "noack")
        log = store.get_log(log_id)
        assert log["request_id"] == 10
        assert log["loaded"] is not None
        assert log["ending"] == "noack"
        assert log["final_end"] is not None

    def test_explicit_log_id(self, store):
        assert seed(store, Request(id=10, state="reserved", log_id=100)) == 100
        assert store.update_log_loaded(100)

    def test_load_log(self, store):
        seed(store)
        assert store.insert_load_log(1, 20, "machinebooted", "vm1 is responding")
        assert store.insert_load_log(1, 20, "info", "access granted")
        assert [e["loadstate"] for e in store.get_load_log(1)] == ["machinebooted", "info"]

    def test_variables(self, store):
        assert store.get_variable("connecttimeout") is None
        assert store.set_variable("connecttimeout", "600")
        assert store.set_variable("connecttimeout", "1200")
        assert store.get_variable("connecttimeout") == "1200"

    def test_public_ip(self, store):
        seed(store, reservations=(
            (1, 20, "vm1.lab.example.edu", "152.1.2.3"),
            (2, 21, "vm2.lab.example.edu", "152.1.2.4"),
        ))
        assert store.is_public_ip_assigned("152.1.2.4", exclude_computer_id=20)
        assert not store.is_public_ip_assigned("152.1.2.3", exclude_computer_id=20)
        assert store.update_computer_public_ip(20, "152.1.2.50")
        assert store.get_reservation_context(1).computer.public_ip == "152.1.2.50"
