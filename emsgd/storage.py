"""Persistence: the store interface and its SQLite adapter."""

import json
import sqlite3
import threading
from typing import Iterable, Optional, Protocol

from .errors import DuplicateMessage
from .models import Group, Identity, Message, SystemEvent


class Store(Protocol):
    """What the protocol core needs from persistence."""

    def get_identity(self, address: str) -> Optional[Identity]: ...

    def put_identity(self, identity: Identity) -> None: ...

    def get_group(self, group_id: str) -> Optional[Group]: ...

    def put_group(self, group: Group) -> None: ...

    def append_message(self, message: Message, recipients: Optional[Iterable[str]] = None) -> None: ...

    def query_messages_for_recipient(self, address: str, limit: int = 100) -> list[Message]: ...

    def append_event(self, event: SystemEvent) -> SystemEvent: ...

    def list_events(self, group_id: str) -> list[SystemEvent]: ...


class SqliteStore:
    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self):
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS identities (
                address TEXT PRIMARY KEY,
                pubkey TEXT NOT NULL,
                first_name TEXT DEFAULT '',
                middle_name TEXT DEFAULT '',
                last_name TEXT DEFAULT '',
                display_picture TEXT DEFAULT ''
            );

            CREATE TABLE IF NOT EXISTS groups (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT DEFAULT '',
                display_picture TEXT DEFAULT '',
                members_json TEXT NOT NULL,
                admins_json TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS messages (
                msg_id TEXT PRIMARY KEY,
                from_addr TEXT NOT NULL,
                group_id TEXT DEFAULT '',
                sent_at TEXT NOT NULL,
                message_json TEXT NOT NULL,
                created_at TEXT DEFAULT (datetime('now'))
            );

            CREATE TABLE IF NOT EXISTS message_recipients (
                msg_id TEXT NOT NULL,
                address TEXT NOT NULL,
                PRIMARY KEY (msg_id, address)
            );

            CREATE TABLE IF NOT EXISTS system_events (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                kind TEXT NOT NULL,
                group_id TEXT NOT NULL,
                subject TEXT DEFAULT '',
                timestamp REAL NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_recipients_address ON message_recipients(address);
            CREATE INDEX IF NOT EXISTS idx_events_group ON system_events(group_id);
        """)

    def close(self):
        with self._lock:
            self._conn.close()

    # --- Identities ---

    def get_identity(self, address: str) -> Optional[Identity]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM identities WHERE address = ?", (address,)
            ).fetchone()
        return Identity(**dict(row)) if row else None

    def put_identity(self, identity: Identity):
        with self._lock:
            self._conn.execute(
                """INSERT OR REPLACE INTO identities
                   (address, pubkey, first_name, middle_name, last_name, display_picture)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    identity.address,
                    identity.pubkey,
                    identity.first_name,
                    identity.middle_name,
                    identity.last_name,
                    identity.display_picture,
                ),
            )
            self._conn.commit()

    # --- Groups ---

    def get_group(self, group_id: str) -> Optional[Group]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM groups WHERE id = ?", (group_id,)
            ).fetchone()
        if not row:
            return None
        return Group(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            display_picture=row["display_picture"],
            members=json.loads(row["members_json"]),
            admins=json.loads(row["admins_json"]),
        )

    def put_group(self, group: Group):
        with self._lock:
            self._conn.execute(
                """INSERT OR REPLACE INTO groups
                   (id, name, description, display_picture, members_json, admins_json)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    group.id,
                    group.name,
                    group.description,
                    group.display_picture,
                    json.dumps(group.members),
                    json.dumps(group.admins),
                ),
            )
            self._conn.commit()

    # --- Messages ---

    def append_message(self, message: Message, recipients: Optional[Iterable[str]] = None):
        """Store a message and index it under each recipient (defaults to to + cc)."""
        if recipients is None:
            recipients = [*message.to, *message.cc]
        with self._lock:
            try:
                self._conn.execute(
                    """INSERT INTO messages
                       (msg_id, from_addr, group_id, sent_at, message_json)
                       VALUES (?, ?, ?, ?, ?)""",
                    (
                        message.msg_id,
                        message.from_addr,
                        message.group_id,
                        message.sent_at,
                        message.model_dump_json(by_alias=True),
                    ),
                )
            except sqlite3.IntegrityError:
                self._conn.rollback()
                raise DuplicateMessage(f"message already stored: {message.msg_id}")
            self._conn.executemany(
                "INSERT OR IGNORE INTO message_recipients (msg_id, address) VALUES (?, ?)",
                [(message.msg_id, address) for address in set(recipients)],
            )
            self._conn.commit()

    def query_messages_for_recipient(self, address: str, limit: int = 100) -> list[Message]:
        with self._lock:
            rows = self._conn.execute(
                """SELECT m.message_json FROM messages m
                   JOIN message_recipients r ON r.msg_id = m.msg_id
                   WHERE r.address = ?
                   ORDER BY m.sent_at DESC LIMIT ?""",
                (address, limit),
            ).fetchall()
        return [Message.model_validate_json(r["message_json"]) for r in rows]

    # --- System events ---

    def append_event(self, event: SystemEvent) -> SystemEvent:
        with self._lock:
            cur = self._conn.execute(
                "INSERT INTO system_events (kind, group_id, subject, timestamp) VALUES (?, ?, ?, ?)",
                (event.kind, event.group_id, event.subject, event.timestamp),
            )
            self._conn.commit()
        return event.model_copy(update={"seq": cur.lastrowid})

    def list_events(self, group_id: str) -> list[SystemEvent]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM system_events WHERE group_id = ? ORDER BY seq",
                (group_id,),
            ).fetchall()
        return [SystemEvent(**dict(r)) for r in rows]
