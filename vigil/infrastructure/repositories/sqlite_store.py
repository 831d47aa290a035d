"""
SQLite Reservation Store

Architectural Intent:
- Persistent storage backend using SQLite (stdlib, zero external deps)
- Implements ReservationStorePort: context loading, acknowledgement and
  deletion polling, state writes, load log and variables
- Uses WAL mode so the front end can acknowledge while workers poll

Design Decisions:
- Single database file at configurable path (default: vigil.db)
- Auto-creates tables on first use
- Thread-safe via sqlite3's check_same_thread=False
- Timestamps stored as ISO 8601 strings
- Image, user and connect methods are stored as JSON profiles on the
  reservation row; they are read-only for the reserved phase
- Port writes never raise: sqlite errors are logged and reported as False
"""

from __future__ import annotations
import json
import logging
import sqlite3
from dataclasses import asdict
from datetime import datetime, UTC
from typing import Iterable, Optional

from vigil.domain.entities.computer import ComputerNode
from vigil.domain.entities.connect_method import ConnectMethod
from vigil.domain.entities.reservation import (
    Affiliation,
    ClusterMember,
    Image,
    ManagementNode,
    Request,
    Reservation,
    ReservationContext,
    ServerRequest,
    User,
)

logger = logging.getLogger(__name__)


class ReservationNotFound(LookupError):
    pass


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


class SQLiteStore:
    """Reservation store using SQLite."""

    def __init__(self, db_path: str = "vigil.db"):
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

    def connect(self) -> None:
        """Open database connection and create tables."""
        self._conn = sqlite3.connect(
            self._db_path,
            check_same_thread=False,
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.row_factory = sqlite3.Row
        self._create_tables()
        logger.info("SQLite store connected: %s", self._db_path)

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _create_tables(self) -> None:
        """Create tables if they don't exist."""
        assert self._conn is not None
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS computers (
                id INTEGER PRIMARY KEY,
                hostname TEXT NOT NULL,
                type TEXT NOT NULL,
                public_ip TEXT,
                private_ip TEXT,
                state TEXT NOT NULL DEFAULT 'reserved',
                nat_host TEXT
            );

            CREATE TABLE IF NOT EXISTS management_nodes (
                id INTEGER PRIMARY KEY,
                hostname TEXT NOT NULL,
                ip_addresses TEXT DEFAULT '[]',
                public_ip_configuration TEXT DEFAULT 'dhcp',
                public_netmask TEXT DEFAULT '',
                public_gateway TEXT DEFAULT '',
                public_dns_servers TEXT DEFAULT '[]'
            );

            CREATE TABLE IF NOT EXISTS requests (
                id INTEGER PRIMARY KEY,
                state TEXT NOT NULL,
                laststate TEXT NOT NULL DEFAULT 'reserved',
                log_id INTEGER,
                for_imaging INTEGER NOT NULL DEFAULT 0,
                end_at TEXT,
                server_request_id INTEGER,
                fixed_ip TEXT
            );

            CREATE TABLE IF NOT EXISTS reservations (
                id INTEGER PRIMARY KEY,
                request_id INTEGER NOT NULL REFERENCES requests(id),
                computer_id INTEGER NOT NULL REFERENCES computers(id),
                management_node_id INTEGER NOT NULL REFERENCES management_nodes(id),
                remote_ip TEXT DEFAULT '',
                password TEXT,
                lastcheck TEXT,
                image TEXT NOT NULL DEFAULT '{}',
                user TEXT NOT NULL DEFAULT '{}',
                connect_methods TEXT NOT NULL DEFAULT '[]'
            );

            CREATE TABLE IF NOT EXISTS log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                request_id INTEGER,
                loaded TEXT,
                ending TEXT,
                final_end TEXT
            );

            CREATE TABLE IF NOT EXISTS loadlog (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                reservation_id INTEGER NOT NULL,
                computer_id INTEGER NOT NULL,
                loadstate TEXT NOT NULL,
                message TEXT DEFAULT '',
                logged_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS variables (
                name TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_reservation_request ON reservations(request_id);
            CREATE INDEX IF NOT EXISTS idx_loadlog_reservation ON loadlog(reservation_id);
        """)

    def _write(self, description: str, sql: str, params: tuple) -> bool:
        assert self._conn is not None
        try:
            cursor = self._conn.execute(sql, params)
            self._conn.commit()
        except sqlite3.Error as e:
            logger.warning("Failed to %s: %s", description, e)
            return False
        if cursor.rowcount == 0:
            logger.warning("Failed to %s: no matching row", description)
            return False
        return True

    # -- Seeding -------------------------------------------------------------

    def add_computer(self, computer: ComputerNode) -> int:
        assert self._conn is not None
        self._conn.execute(
            """INSERT INTO computers (id, hostname, type, public_ip, private_ip, state, nat_host)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (computer.id, computer.hostname, computer.type.value, computer.public_ip,
             computer.private_ip, computer.state, computer.nat_host),
        )
        self._conn.commit()
        return computer.id

    def add_management_node(self, node_id: int, node: ManagementNode) -> int:
        assert self._conn is not None
        self._conn.execute(
            """INSERT INTO management_nodes
               (id, hostname, ip_addresses, public_ip_configuration, public_netmask,
                public_gateway, public_dns_servers)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (node_id, node.hostname, json.dumps(list(node.ip_addresses)),
             node.public_ip_configuration, node.public_netmask, node.public_gateway,
             json.dumps(list(node.public_dns_servers))),
        )
        self._conn.commit()
        return node_id

    def add_request(self, request: Request) -> int:
        """Insert a request and its log row. Returns the log ID."""
        assert self._conn is not None
        cursor = self._conn.execute(
            "INSERT INTO log (id, request_id) VALUES (?, ?)", (request.log_id, request.id)
        )
        log_id = cursor.lastrowid
        server_request = request.server_request
        self._conn.execute(
            """INSERT INTO requests
               (id, state, laststate, log_id, for_imaging, end_at, server_request_id, fixed_ip)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (request.id, request.state, request.laststate, log_id, int(request.for_imaging),
             request.end.isoformat() if request.end else None,
             server_request.id if server_request else None,
             server_request.fixed_ip if server_request else None),
        )
        self._conn.commit()
        return log_id

    def add_reservation(
        self,
        reservation: Reservation,
        management_node_id: int,
        image: Image,
        user: User,
        connect_methods: Iterable[ConnectMethod] = (),
    ) -> int:
        assert self._conn is not None
        self._conn.execute(
            """INSERT INTO reservations
               (id, request_id, computer_id, management_node_id, remote_ip, password,
                lastcheck, image, user, connect_methods)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (reservation.id, reservation.request_id, reservation.computer_id,
             management_node_id, reservation.remote_ip, reservation.password,
             reservation.lastcheck.isoformat() if reservation.lastcheck else None,
             json.dumps(asdict(image)), json.dumps(asdict(user)),
             json.dumps([m.to_dict() for m in connect_methods])),
        )
        self._conn.commit()
        return reservation.id

    def set_remote_ip(self, reservation_id: int, remote_ip: str) -> bool:
        """Records the user's acknowledgement (the front end's write)."""
        return self._write(
            f"set remote IP of reservation {reservation_id}",
            "UPDATE reservations SET remote_ip = ? WHERE id = ?",
            (remote_ip, reservation_id),
        )

    def delete_request(self, request_id: int) -> bool:
        return self._write(
            f"delete request {request_id}",
            "UPDATE requests SET laststate = state, state = 'deleted' WHERE id = ?",
            (request_id,),
        )

    # -- Reads ---------------------------------------------------------------

    def get_reservation_context(self, reservation_id: int) -> ReservationContext:
        assert self._conn is not None
        row = self._conn.execute(
            "SELECT * FROM reservations WHERE id = ?", (reservation_id,)
        ).fetchone()
        if row is None:
            raise ReservationNotFound(f"Reservation {reservation_id} not found")

        request_row = self._conn.execute(
            "SELECT * FROM requests WHERE id = ?", (row["request_id"],)
        ).fetchone()
        computer_row = self._conn.execute(
            "SELECT * FROM computers WHERE id = ?", (row["computer_id"],)
        ).fetchone()
        node_row = self._conn.execute(
            "SELECT * FROM management_nodes WHERE id = ?", (row["management_node_id"],)
        ).fetchone()
        if request_row is None or computer_row is None or node_row is None:
            raise ReservationNotFound(
                f"Reservation {reservation_id} references a missing request, "
                "computer or management node"
            )

        member_rows = self._conn.execute(
            """SELECT r.id AS reservation_id, c.id AS computer_id, c.hostname, c.public_ip
               FROM reservations r JOIN computers c ON c.id = r.computer_id
               WHERE r.request_id = ? ORDER BY r.id""",
            (row["request_id"],),
        ).fetchall()

        server_request = None
        if request_row["server_request_id"] is not None:
            server_request = ServerRequest(
                id=request_row["server_request_id"], fixed_ip=request_row["fixed_ip"]
            )

        user_data = json.loads(row["user"])
        affiliation = Affiliation(**user_data.pop("affiliation", {}) or {})

        return ReservationContext(
            reservation=Reservation(
                id=row["id"],
                request_id=row["request_id"],
                computer_id=row["computer_id"],
                remote_ip=row["remote_ip"] or "",
                password=row["password"],
                lastcheck=_parse_time(row["lastcheck"]),
            ),
            request=Request(
                id=request_row["id"],
                state=request_row["state"],
                laststate=request_row["laststate"],
                log_id=request_row["log_id"],
                for_imaging=bool(request_row["for_imaging"]),
                end=_parse_time(request_row["end_at"]),
                members=tuple(
                    ClusterMember(
                        reservation_id=m["reservation_id"],
                        computer_id=m["computer_id"],
                        hostname=m["hostname"],
                        public_ip=m["public_ip"],
                    )
                    for m in member_rows
                ),
                server_request=server_request,
            ),
            computer=ComputerNode(
                id=computer_row["id"],
                hostname=computer_row["hostname"],
                type=computer_row["type"],
                public_ip=computer_row["public_ip"],
                private_ip=computer_row["private_ip"],
                state=computer_row["state"],
                nat_host=computer_row["nat_host"],
            ),
            image=Image(**json.loads(row["image"])),
            user=User(affiliation=affiliation, **user_data),
            management_node=ManagementNode(
                hostname=node_row["hostname"],
                ip_addresses=tuple(json.loads(node_row["ip_addresses"] or "[]")),
                public_ip_configuration=node_row["public_ip_configuration"],
                public_netmask=node_row["public_netmask"],
                public_gateway=node_row["public_gateway"],
                public_dns_servers=tuple(json.loads(node_row["public_dns_servers"] or "[]")),
            ),
            connect_methods=tuple(
                ConnectMethod.from_dict(m) for m in json.loads(row["connect_methods"])
            ),
        )

    def get_remote_ip(self, reservation_id: int) -> Optional[str]:
        assert self._conn is not None
        try:
            row = self._conn.execute(
                "SELECT remote_ip FROM reservations WHERE id = ?", (reservation_id,)
            ).fetchone()
        except sqlite3.Error as e:
            logger.warning("Failed to read remote IP of reservation %s: %s", reservation_id, e)
            return None
        if row is None:
            logger.warning("Reservation %s not found", reservation_id)
            return None
        return row["remote_ip"] or ""

    def is_request_deleted(self, request_id: int) -> bool:
        """True when the request is deleted or no longer exists."""
        assert self._conn is not None
        row = self._conn.execute(
            "SELECT state, laststate FROM requests WHERE id = ?", (request_id,)
        ).fetchone()
        if row is None:
            return True
        return "deleted" in (row["state"], row["laststate"])

    def get_request_state(self, request_id: int) -> Optional[tuple[str, str]]:
        assert self._conn is not None
        row = self._conn.execute(
            "SELECT state, laststate FROM requests WHERE id = ?", (request_id,)
        ).fetchone()
        return (row["state"], row["laststate"]) if row else None

    def get_computer_state(self, computer_id: int) -> Optional[str]:
        assert self._conn is not None
        row = self._conn.execute(
            "SELECT state FROM computers WHERE id = ?", (computer_id,)
        ).fetchone()
        return row["state"] if row else None

    def get_log(self, log_id: int) -> Optional[dict]:
        assert self._conn is not None
        row = self._conn.execute("SELECT * FROM log WHERE id = ?", (log_id,)).fetchone()
        return dict(row) if row else None

    def get_load_log(self, reservation_id: int) -> list[dict]:
        assert self._conn is not None
        rows = self._conn.execute(
            "SELECT * FROM loadlog WHERE reservation_id = ? ORDER BY id", (reservation_id,)
        ).fetchall()
        return [dict(r) for r in rows]

    def get_variable(self, name: str) -> Optional[str]:
        assert self._conn is not None
        row = self._conn.execute(
            "SELECT value FROM variables WHERE name = ?", (name,)
        ).fetchone()
        return row["value"] if row else None

    def is_public_ip_assigned(self, public_ip: str, exclude_computer_id: int) -> bool:
        assert self._conn is not None
        row = self._conn.execute(
            "SELECT COUNT(*) FROM computers WHERE public_ip = ? AND id != ?",
            (public_ip, exclude_computer_id),
        ).fetchone()
        return row[0] > 0

    # -- Writes --------------------------------------------------------------

    def update_request_state(self, request_id: int, state: str, laststate: str) -> bool:
        return self._write(
            f"set request {request_id} to {state}/{laststate}",
            "UPDATE requests SET state = ?, laststate = ? WHERE id = ?",
            (state, laststate, request_id),
        )

    def update_computer_state(self, computer_id: int, state: str) -> bool:
        return self._write(
            f"set computer {computer_id} to {state}",
            "UPDATE computers SET state = ? WHERE id = ?",
            (state, computer_id),
        )

    def update_reservation_lastcheck(self, reservation_id: int) -> bool:
        return self._write(
            f"update lastcheck of reservation {reservation_id}",
            "UPDATE reservations SET lastcheck = ? WHERE id = ?",
            (_now(), reservation_id),
        )

    def set_reservation_password(self, reservation_id: int, password: str) -> bool:
        return self._write(
            f"set password of reservation {reservation_id}",
            "UPDATE reservations SET password = ? WHERE id = ?",
            (password, reservation_id),
        )

    def update_log_loaded(self, log_id: int) -> bool:
        return self._write(
            f"set loaded time of log {log_id}",
            "UPDATE log SET loaded = ? WHERE id = ?",
            (_now(), log_id),
        )

    def update_log_ending(self, log_id: int, ending: str) -> bool:
        return self._write(
            f"set ending of log {log_id} to {ending}",
            "UPDATE log SET ending = ?, final_end = ? WHERE id = ?",
            (ending, _now(), log_id),
        )

    def insert_load_log(
        self, reservation_id: int, computer_id: int, loadstate: str, message: str
    ) -> bool:
        return self._write(
            f"insert {loadstate} load log for reservation {reservation_id}",
            """INSERT INTO loadlog (reservation_id, computer_id, loadstate, message, logged_at)
               VALUES (?, ?, ?, ?, ?)""",
            (reservation_id, computer_id, loadstate, message, _now()),
        )

    def set_variable(self, name: str, value: str) -> bool:
        return self._write(
            f"set variable {name}",
            """INSERT INTO variables (name, value, updated_at) VALUES (?, ?, ?)
               ON CONFLICT(name) DO UPDATE SET value = excluded.value,
                                               updated_at = excluded.updated_at""",
            (name, value, _now()),
        )

    def update_computer_public_ip(self, computer_id: int, public_ip: str) -> bool:
        return self._write(
            f"set public IP of computer {computer_id}",
            "UPDATE computers SET public_ip = ? WHERE id = ?",
            (public_ip, computer_id),
        )
