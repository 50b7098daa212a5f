"""SQLite persistence for users, chat sessions/messages, documents and allowed senders.

Each operation opens a short-lived connection, so the store can be shared by
concurrent request handlers; SQLite serialises writes to the same row.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from app.intent_helpers import _normalize_msisdn
from app.state import (
    DOCUMENT_STATUS_ORDER,
    DocumentStatus,
    DocumentType,
    MessageRole,
    SenderStatus,
)

logger = logging.getLogger(__name__)


class StoreError(Exception):
    pass


class NotFound(StoreError):
    pass


class DuplicateSender(StoreError):
    pass


class InvalidStatusTransition(StoreError):
    pass


_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    username TEXT UNIQUE NOT NULL,
    email TEXT UNIQUE NOT NULL,
    role TEXT NOT NULL DEFAULT 'user' CHECK (role IN ('admin', 'user')),
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS chat_sessions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_chat_sessions_user ON chat_sessions (user_id);
CREATE TABLE IF NOT EXISTS chat_messages (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL REFERENCES chat_sessions (id) ON DELETE CASCADE,
    role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
    content TEXT NOT NULL,
    metadata TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_chat_messages_session ON chat_messages (session_id);
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    type TEXT NOT NULL CHECK (type IN ('quotation', 'contract', 'invoice')),
    title TEXT NOT NULL,
    content TEXT,
    data TEXT,
    status TEXT NOT NULL DEFAULT 'draft' CHECK (status IN ('draft', 'generated', 'signed', 'sent')),
    file_path TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_documents_user ON documents (user_id);
CREATE TABLE IF NOT EXISTS allowed_senders (
    id TEXT PRIMARY KEY,
    phone TEXT UNIQUE NOT NULL,
    display_name TEXT,
    user_id TEXT,
    status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'approved', 'rejected')),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _loads(raw: Optional[str]) -> Any:
    if raw is None or raw == "":
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


class Store:
    def __init__(self, path: str) -> None:
        self.path = path
        self._init_db()

    # ------------------------------------------------------------------ infra

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        con = sqlite3.connect(self.path)
        con.row_factory = sqlite3.Row
        con.execute("PRAGMA foreign_keys = ON")
        try:
            yield con
            con.commit()
        except Exception:
            con.rollback()
            raise
        finally:
            con.close()

    def _init_db(self) -> None:
        folder = os.path.dirname(self.path)
        if folder:
            os.makedirs(folder, exist_ok=True)
        with self._connect() as con:
            con.executescript(_SCHEMA)

    # ------------------------------------------------------------------ users

    def create_user(self, username: str, email: str, role: str = "user") -> Dict[str, Any]:
        row = {
            "id": str(uuid.uuid4()),
            "username": username,
            "email": email,
            "role": role,
            "created_at": _now(),
        }
        with self._connect() as con:
            con.execute(
                "INSERT INTO users (id, username, email, role, created_at) VALUES (?, ?, ?, ?, ?)",
                (row["id"], username, email, role, row["created_at"]),
            )
        return row

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._connect() as con:
            row = con.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return dict(row) if row else None

    def ensure_default_admin(self) -> Dict[str, Any]:
        with self._connect() as con:
            row = con.execute("SELECT * FROM users WHERE username = 'admin'").fetchone()
        if row:
            return dict(row)
        logger.info("Creating default admin user")
        return self.create_user("admin", "admin@localhost", role="admin")

    def resolve_owner_user_id(self, phone: str) -> str:
        """Linked user of the sender, else the earliest admin, else the earliest user."""
        with self._connect() as con:
            mapped = con.execute(
                "SELECT user_id FROM allowed_senders WHERE phone = ?", (phone,)
            ).fetchone()
            if mapped and mapped["user_id"]:
                return mapped["user_id"]
            admin = con.execute(
                "SELECT id FROM users WHERE role = 'admin' ORDER BY created_at ASC, rowid ASC LIMIT 1"
            ).fetchone()
            if admin:
                return admin["id"]
            anyone = con.execute(
                "SELECT id FROM users ORDER BY created_at ASC, rowid ASC LIMIT 1"
            ).fetchone()
        return anyone["id"] if anyone else "admin"

    # ------------------------------------------------------------------ chat

    def create_session(self, user_id: str, title: Optional[str] = None) -> Dict[str, Any]:
        now = _now()
        row = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "title": title or "New Chat",
            "created_at": now,
            "updated_at": now,
        }
        with self._connect() as con:
            con.execute(
                "INSERT INTO chat_sessions (id, user_id, title, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                (row["id"], user_id, row["title"], now, now),
            )
        return row

    def list_sessions(self, user_id: str) -> List[Dict[str, Any]]:
        with self._connect() as con:
            rows = con.execute(
                "SELECT * FROM chat_sessions WHERE user_id = ? ORDER BY updated_at DESC", (user_id,)
            ).fetchall()
        return [dict(r) for r in rows]

    def get_session(self, session_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        sql = "SELECT * FROM chat_sessions WHERE id = ?"
        params: tuple = (session_id,)
        if user_id is not None:
            sql += " AND user_id = ?"
            params = (session_id, user_id)
        with self._connect() as con:
            row = con.execute(sql, params).fetchone()
        return dict(row) if row else None

    def touch_session(self, session_id: str) -> None:
        with self._connect() as con:
            con.execute("UPDATE chat_sessions SET updated_at = ? WHERE id = ?", (_now(), session_id))

    def add_message(
        self,
        session_id: str,
        role: MessageRole,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        row = {
            "id": str(uuid.uuid4()),
            "session_id": session_id,
            "role": MessageRole(role).value,
            "content": content,
            "metadata": metadata,
            "created_at": _now(),
        }
        try:
            with self._connect() as con:
                con.execute(
                    "INSERT INTO chat_messages (id, session_id, role, content, metadata, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        row["id"],
                        session_id,
                        row["role"],
                        content,
                        json.dumps(metadata) if metadata is not None else None,
                        row["created_at"],
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise NotFound(f"chat session {session_id} not found") from exc
        return row

    def list_messages(self, session_id: str) -> List[Dict[str, Any]]:
        with self._connect() as con:
            rows = con.execute(
                "SELECT * FROM chat_messages WHERE session_id = ? ORDER BY created_at ASC, rowid ASC",
                (session_id,),
            ).fetchall()
        out = []
        for r in rows:
            d = dict(r)
            d["metadata"] = _loads(d.get("metadata"))
            out.append(d)
        return out

    # ------------------------------------------------------------------ documents

    def create_document(
        self,
        document_id: str,
        user_id: str,
        doc_type: DocumentType,
        title: str,
        content: str,
        data: Dict[str, Any],
        status: DocumentStatus,
        file_path: Optional[str],
    ) -> Dict[str, Any]:
        now = _now()
        with self._connect() as con:
            con.execute(
                "INSERT INTO documents (id, user_id, type, title, content, data, status, file_path, "
                "created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    document_id,
                    user_id,
                    DocumentType(doc_type).value,
                    title,
                    content,
                    json.dumps(data),
                    DocumentStatus(status).value,
                    file_path,
                    now,
                    now,
                ),
            )
        return self.get_document(document_id)  # type: ignore[return-value]

    def _document_row(self, row: sqlite3.Row) -> Dict[str, Any]:
        d = dict(row)
        d["data"] = _loads(d.get("data"))
        return d

    def list_documents(self, user_id: str) -> List[Dict[str, Any]]:
        with self._connect() as con:
            rows = con.execute(
                "SELECT * FROM documents WHERE user_id = ? ORDER BY created_at DESC", (user_id,)
            ).fetchall()
        return [self._document_row(r) for r in rows]

    def get_document(self, document_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        sql = "SELECT * FROM documents WHERE id = ?"
        params: tuple = (document_id,)
        if user_id is not None:
            sql += " AND user_id = ?"
            params = (document_id, user_id)
        with self._connect() as con:
            row = con.execute(sql, params).fetchone()
        return self._document_row(row) if row else None

    def update_document_content(
        self, document_id: str, user_id: str, content: str, data: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        with self._connect() as con:
            if data is None:
                cur = con.execute(
                    "UPDATE documents SET content = ?, updated_at = ? WHERE id = ? AND user_id = ?",
                    (content, _now(), document_id, user_id),
                )
            else:
                cur = con.execute(
                    "UPDATE documents SET content = ?, data = ?, updated_at = ? WHERE id = ? AND user_id = ?",
                    (content, json.dumps(data), _now(), document_id, user_id),
                )
        if cur.rowcount == 0:
            raise NotFound(f"document {document_id} not found")
        return self.get_document(document_id)  # type: ignore[return-value]

    def update_document_file(self, document_id: str, user_id: str, file_path: str) -> None:
        with self._connect() as con:
            con.execute(
                "UPDATE documents SET file_path = ?, updated_at = ? WHERE id = ? AND user_id = ?",
                (file_path, _now(), document_id, user_id),
            )

    def update_document_status(
        self, document_id: str, user_id: str, status: DocumentStatus
    ) -> Dict[str, Any]:
        new = DocumentStatus(status)
        current = self.get_document(document_id, user_id)
        if current is None:
            raise NotFound(f"document {document_id} not found")
        old = DocumentStatus(current["status"])
        if DOCUMENT_STATUS_ORDER.index(new) < DOCUMENT_STATUS_ORDER.index(old):
            raise InvalidStatusTransition(f"cannot move document from {old.value} to {new.value}")
        if new is not old:
            with self._connect() as con:
                con.execute(
                    "UPDATE documents SET status = ?, updated_at = ? WHERE id = ? AND user_id = ?",
                    (new.value, _now(), document_id, user_id),
                )
        return self.get_document(document_id)  # type: ignore[return-value]

    def delete_document(self, document_id: str, user_id: str) -> bool:
        with self._connect() as con:
            cur = con.execute("DELETE FROM documents WHERE id = ? AND user_id = ?", (document_id, user_id))
        return cur.rowcount > 0

    # ------------------------------------------------------------------ allowed senders

    def list_senders(self) -> List[Dict[str, Any]]:
        with self._connect() as con:
            rows = con.execute("SELECT * FROM allowed_senders ORDER BY updated_at DESC").fetchall()
        return [dict(r) for r in rows]

    def get_sender(self, phone: str) -> Optional[Dict[str, Any]]:
        with self._connect() as con:
            row = con.execute("SELECT * FROM allowed_senders WHERE phone = ?", (phone,)).fetchone()
        return dict(row) if row else None

    def register_sender(
        self, phone: str, display_name: Optional[str] = None, user_id: Optional[str] = None
    ) -> Dict[str, Any]:
        key = _normalize_msisdn(phone)
        if not key:
            raise ValueError("phone is required")
        now = _now()
        row = {
            "id": str(uuid.uuid4()),
            "phone": key,
            "display_name": display_name,
            "user_id": user_id,
            "status": SenderStatus.PENDING.value,
            "created_at": now,
            "updated_at": now,
        }
        try:
            with self._connect() as con:
                con.execute(
                    "INSERT INTO allowed_senders (id, phone, display_name, user_id, status, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (row["id"], key, display_name, user_id, row["status"], now, now),
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicateSender(f"phone {key} already registered") from exc
        return row

    def set_sender_status(self, phone: str, status: SenderStatus) -> Dict[str, Any]:
        key = _normalize_msisdn(phone)
        with self._connect() as con:
            cur = con.execute(
                "UPDATE allowed_senders SET status = ?, updated_at = ? WHERE phone = ?",
                (SenderStatus(status).value, _now(), key),
            )
        if cur.rowcount == 0:
            raise NotFound(f"phone {key} not registered")
        return self.get_sender(key)  # type: ignore[return-value]
