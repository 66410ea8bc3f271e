"""DuckDB-backed durable store for users, chats and messages.

Database Schema:
    users:         id, name, email (unique), created_at
    chats:         id, member_a, member_b, last_message_id, created_at, updated_at
                   (member_a < member_b, unique pair)
    messages:      id, chat_id, sender_id, text, attachments (JSON text),
                   created_at, edited_at, is_deleted, deleted_at
    message_seen:  message_id, user_id (primary key pair)

Thread Safety:
    A single DuckDB connection is shared by every store and guarded by a
    re-entrant lock. Each public call holds the lock only for its own short
    statement sequence, so no caller ever awaits while holding it.

Usage:
    db = ChatDatabase(":memory:")
    chats = DuckDBChatStore(db)
    messages = DuckDBMessageStore(db)
"""
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

import duckdb

from .models import Attachment, Chat, Message, User, new_id

logger = logging.getLogger(__name__)

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id          VARCHAR PRIMARY KEY,
        name        VARCHAR NOT NULL,
        email       VARCHAR NOT NULL UNIQUE,
        created_at  TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chats (
        id               VARCHAR PRIMARY KEY,
        member_a         VARCHAR NOT NULL,
        member_b         VARCHAR NOT NULL,
        last_message_id  VARCHAR,
        created_at       TIMESTAMP NOT NULL,
        updated_at       TIMESTAMP NOT NULL,
        UNIQUE (member_a, member_b)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id          VARCHAR PRIMARY KEY,
        chat_id     VARCHAR NOT NULL,
        sender_id   VARCHAR NOT NULL,
        text        VARCHAR NOT NULL DEFAULT '',
        attachments VARCHAR NOT NULL DEFAULT '[]',
        created_at  TIMESTAMP NOT NULL,
        edited_at   TIMESTAMP,
        is_deleted  BOOLEAN NOT NULL DEFAULT FALSE,
        deleted_at  TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS message_seen (
        message_id  VARCHAR NOT NULL,
        user_id     VARCHAR NOT NULL,
        PRIMARY KEY (message_id, user_id)
    )
    """,
]


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _to_db(value: Optional[datetime]) -> Optional[datetime]:
    """TIMESTAMP columns hold naive UTC; aware values are converted first."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _pair(user_a: str, user_b: str) -> Tuple[str, str]:
    return (user_a, user_b) if user_a <= user_b else (user_b, user_a)


# =============================================================================
# Collaborator contracts
# =============================================================================


class ChatStore(Protocol):
    def find_by_members(self, user_a: str, user_b: str) -> Optional[Chat]:
        ...

    def create(self, user_a: str, user_b: str) -> Chat:
        ...

    def get(self, chat_id: str) -> Optional[Chat]:
        ...

    def is_member(self, chat_id: str, user_id: str) -> bool:
        ...

    def list_for_user(self, user_id: str) -> List[Chat]:
        ...


class MessageStore(Protocol):
    def create_message(
        self,
        chat_id: str,
        sender_id: str,
        text: str,
        attachments: Iterable[Attachment],
        created_at: datetime,
    ) -> Message:
        ...

    def get_message(self, message_id: str) -> Optional[Message]:
        ...

    def update_message(
        self, message_id: str, only_active: bool = False, **fields
    ) -> Optional[Message]:
        ...

    def list_messages(self, chat_id: str) -> List[Message]:
        ...

    def get_chat(self, chat_id: str) -> Optional[Chat]:
        ...

    def touch_chat(
        self, chat_id: str, at: datetime, last_message_id: Optional[str] = None
    ) -> None:
        ...

    def mark_seen(self, chat_id: str, user_id: str) -> int:
        ...

    def delete_message(self, message_id: str) -> Optional[Message]:
        ...


class UserStore(Protocol):
    def create(self, name: str, email: str) -> User:
        ...

    def get(self, user_id: str) -> Optional[User]:
        ...

    def get_many(self, user_ids: Iterable[str]) -> Dict[str, User]:
        ...

    def search_by_email(
        self, fragment: str, exclude_id: Optional[str] = None, limit: int = 10
    ) -> List[User]:
        ...


# =============================================================================
# DuckDB implementation
# =============================================================================


class ChatDatabase:
    """Owns the DuckDB connection and schema shared by the stores."""

    def __init__(self, db_path: str = "connectly.duckdb") -> None:
        self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self.lock = threading.RLock()

    @property
    def connection(self) -> duckdb.DuckDBPyConnection:
        """Get the DuckDB connection, creating it and the schema if needed."""
        with self.lock:
            if self._connection is None:
                self._connection = duckdb.connect(self._db_path)
                for statement in _SCHEMA:
                    self._connection.execute(statement)
                logger.info("[ChatDatabase] Initialized with db=%s", self._db_path)
            return self._connection

    def close(self) -> None:
        with self.lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None


_CHAT_COLUMNS = "id, member_a, member_b, last_message_id, created_at, updated_at"
_MESSAGE_COLUMNS = (
    "id, chat_id, sender_id, text, attachments, created_at, "
    "edited_at, is_deleted, deleted_at"
)


def _row_to_chat(row) -> Chat:
    return Chat(
        id=row[0],
        members=[row[1], row[2]],
        lastMessageId=row[3],
        createdAt=row[4],
        updatedAt=row[5],
    )


def _row_to_user(row) -> User:
    return User(id=row[0], name=row[1], email=row[2])


class DuckDBChatStore:
    """Chats keyed by their unordered member pair."""

    def __init__(self, db: ChatDatabase) -> None:
        self._db = db

    def _fetch(self, sql: str, params: list) -> Optional[Chat]:
        row = self._db.connection.execute(sql, params).fetchone()
        return _row_to_chat(row) if row else None

    def find_by_members(self, user_a: str, user_b: str) -> Optional[Chat]:
        with self._db.lock:
            return self._fetch(
                f"SELECT {_CHAT_COLUMNS} FROM chats WHERE member_a = ? AND member_b = ?",
                list(_pair(user_a, user_b)),
            )

    def create(self, user_a: str, user_b: str) -> Chat:
        member_a, member_b = _pair(user_a, user_b)
        now = utcnow()
        chat_id = new_id()
        with self._db.lock:
            try:
                self._db.connection.execute(
                    """
                    INSERT INTO chats (id, member_a, member_b, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [chat_id, member_a, member_b, _to_db(now), _to_db(now)],
                )
            except duckdb.ConstraintException:
                # Lost a race against another create for the same pair
                existing = self.find_by_members(member_a, member_b)
                if existing is None:
                    raise
                return existing
            return self.get(chat_id)

    def get(self, chat_id: str) -> Optional[Chat]:
        with self._db.lock:
            return self._fetch(
                f"SELECT {_CHAT_COLUMNS} FROM chats WHERE id = ?", [chat_id]
            )

    def is_member(self, chat_id: str, user_id: str) -> bool:
        with self._db.lock:
            row = self._db.connection.execute(
                "SELECT 1 FROM chats WHERE id = ? AND (member_a = ? OR member_b = ?)",
                [chat_id, user_id, user_id],
            ).fetchone()
        return row is not None

    def list_for_user(self, user_id: str) -> List[Chat]:
        with self._db.lock:
            rows = self._db.connection.execute(
                f"""
                SELECT {_CHAT_COLUMNS} FROM chats
                WHERE member_a = ? OR member_b = ?
                ORDER BY updated_at DESC, id ASC
                """,
                [user_id, user_id],
            ).fetchall()
        return [_row_to_chat(r) for r in rows]


class DuckDBMessageStore:
    """Messages, their seen receipts, and the owning chat's activity pointer."""

    _UPDATABLE = {
        "text", "attachments", "edited_at", "is_deleted", "deleted_at",
    }

    def __init__(self, db: ChatDatabase) -> None:
        self._db = db
        self._chats = DuckDBChatStore(db)

    # -----------------------------------------------------------------------
    # Messages
    # -----------------------------------------------------------------------

    def create_message(
        self,
        chat_id: str,
        sender_id: str,
        text: str,
        attachments: Iterable[Attachment],
        created_at: datetime,
    ) -> Message:
        message_id = new_id()
        attachments_json = json.dumps([a.model_dump() for a in attachments])
        with self._db.lock:
            self._db.connection.execute(
                """
                INSERT INTO messages
                  (id, chat_id, sender_id, text, attachments, created_at, is_deleted)
                VALUES (?, ?, ?, ?, ?, ?, FALSE)
                """,
                [message_id, chat_id, sender_id, text, attachments_json, _to_db(created_at)],
            )
            return self.get_message(message_id)

    def get_message(self, message_id: str) -> Optional[Message]:
        with self._db.lock:
            row = self._db.connection.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?", [message_id]
            ).fetchone()
            if row is None:
                return None
            return self._row_to_message(row, self._seen_by([message_id]))

    def update_message(
        self, message_id: str, only_active: bool = False, **fields
    ) -> Optional[Message]:
        """Update whitelisted columns of a message.

        Args:
            message_id: Message to update.
            only_active: Refuse to touch a message that is already deleted.
            **fields: Column values (text, attachments, edited_at, is_deleted,
                deleted_at).

        Returns:
            The updated message, or None when no row matched.
        """
        fields = {k: v for k, v in fields.items() if k in self._UPDATABLE}
        if "attachments" in fields:
            fields["attachments"] = json.dumps(
                [a.model_dump() for a in fields["attachments"]]
            )
        for column in ("edited_at", "deleted_at"):
            if column in fields:
                fields[column] = _to_db(fields[column])
        if not fields:
            return self.get_message(message_id)

        set_clause = ", ".join(f"{k} = ?" for k in fields)
        where = "id = ? AND is_deleted = FALSE" if only_active else "id = ?"
        with self._db.lock:
            updated = self._db.connection.execute(
                f"UPDATE messages SET {set_clause} WHERE {where} RETURNING id",
                list(fields.values()) + [message_id],
            ).fetchall()
            if not updated:
                return None
            return self.get_message(message_id)

    def list_messages(self, chat_id: str) -> List[Message]:
        with self._db.lock:
            rows = self._db.connection.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS} FROM messages
                WHERE chat_id = ?
                ORDER BY created_at ASC, id ASC
                """,
                [chat_id],
            ).fetchall()
            seen = self._seen_by([r[0] for r in rows])
        return [self._row_to_message(r, seen) for r in rows]

    def delete_message(self, message_id: str) -> Optional[Message]:
        """Physically remove a message and its receipts; return what was removed."""
        with self._db.lock:
            message = self.get_message(message_id)
            if message is None:
                return None
            conn = self._db.connection
            conn.execute("DELETE FROM message_seen WHERE message_id = ?", [message_id])
            conn.execute("DELETE FROM messages WHERE id = ?", [message_id])
            chat = self._chats.get(message.chatId)
            if chat is not None and chat.lastMessageId == message_id:
                row = conn.execute(
                    """
                    SELECT id FROM messages WHERE chat_id = ?
                    ORDER BY created_at DESC, id DESC LIMIT 1
                    """,
                    [message.chatId],
                ).fetchone()
                conn.execute(
                    "UPDATE chats SET last_message_id = ? WHERE id = ?",
                    [row[0] if row else None, message.chatId],
                )
            return message

    # -----------------------------------------------------------------------
    # Seen receipts
    # -----------------------------------------------------------------------

    def mark_seen(self, chat_id: str, user_id: str) -> int:
        """Add ``user_id`` to every other-authored message it has not seen yet.

        Returns:
            Number of receipts added (0 when everything was already seen).
        """
        with self._db.lock:
            conn = self._db.connection
            pending = conn.execute(
                """
                SELECT m.id FROM messages m
                WHERE m.chat_id = ? AND m.sender_id <> ?
                  AND NOT EXISTS (
                    SELECT 1 FROM message_seen s
                    WHERE s.message_id = m.id AND s.user_id = ?
                  )
                """,
                [chat_id, user_id, user_id],
            ).fetchall()
            for (message_id,) in pending:
                conn.execute(
                    "INSERT INTO message_seen (message_id, user_id) VALUES (?, ?)",
                    [message_id, user_id],
                )
        return len(pending)

    # -----------------------------------------------------------------------
    # Chat activity
    # -----------------------------------------------------------------------

    def get_chat(self, chat_id: str) -> Optional[Chat]:
        return self._chats.get(chat_id)

    def touch_chat(
        self, chat_id: str, at: datetime, last_message_id: Optional[str] = None
    ) -> None:
        with self._db.lock:
            if last_message_id is None:
                self._db.connection.execute(
                    "UPDATE chats SET updated_at = greatest(updated_at, ?) WHERE id = ?",
                    [_to_db(at), chat_id],
                )
            else:
                self._db.connection.execute(
                    """
                    UPDATE chats
                    SET updated_at = greatest(updated_at, ?), last_message_id = ?
                    WHERE id = ?
                    """,
                    [_to_db(at), last_message_id, chat_id],
                )

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    def _seen_by(self, message_ids: List[str]) -> Dict[str, List[str]]:
        if not message_ids:
            return {}
        placeholders = ", ".join("?" for _ in message_ids)
        rows = self._db.connection.execute(
            f"""
            SELECT message_id, user_id FROM message_seen
            WHERE message_id IN ({placeholders})
            ORDER BY user_id
            """,
            message_ids,
        ).fetchall()
        seen: Dict[str, List[str]] = {}
        for message_id, user_id in rows:
            seen.setdefault(message_id, []).append(user_id)
        return seen

    @staticmethod
    def _row_to_message(row, seen: Dict[str, List[str]]) -> Message:
        return Message(
            id=row[0],
            chatId=row[1],
            senderId=row[2],
            text=row[3],
            attachments=[Attachment(**a) for a in json.loads(row[4] or "[]")],
            createdAt=row[5],
            editedAt=row[6],
            isDeleted=bool(row[7]),
            deletedAt=row[8],
            seenBy=seen.get(row[0], []),
        )


class DuckDBUserStore:
    """User profiles. Accounts are provisioned by the identity collaborator."""

    def __init__(self, db: ChatDatabase) -> None:
        self._db = db

    def create(self, name: str, email: str) -> User:
        user_id = new_id()
        email = email.strip().lower()
        with self._db.lock:
            self._db.connection.execute(
                "INSERT INTO users (id, name, email, created_at) VALUES (?, ?, ?, ?)",
                [user_id, name.strip(), email, _to_db(utcnow())],
            )
        return User(id=user_id, name=name.strip(), email=email)

    def get(self, user_id: str) -> Optional[User]:
        with self._db.lock:
            row = self._db.connection.execute(
                "SELECT id, name, email FROM users WHERE id = ?", [user_id]
            ).fetchone()
        return _row_to_user(row) if row else None

    def get_many(self, user_ids: Iterable[str]) -> Dict[str, User]:
        ids = sorted(set(user_ids))
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        with self._db.lock:
            rows = self._db.connection.execute(
                f"SELECT id, name, email FROM users WHERE id IN ({placeholders})", ids
            ).fetchall()
        return {row[0]: _row_to_user(row) for row in rows}

    def search_by_email(
        self, fragment: str, exclude_id: Optional[str] = None, limit: int = 10
    ) -> List[User]:
        with self._db.lock:
            rows = self._db.connection.execute(
                f"""
                SELECT id, name, email FROM users
                WHERE contains(lower(email), lower(?)) AND id <> ?
                ORDER BY email
                LIMIT {int(limit)}
                """,
                [fragment, exclude_id or ""],
            ).fetchall()
        return [_row_to_user(r) for r in rows]
