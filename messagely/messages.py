"""Message storage and the read-receipt transition."""
from __future__ import annotations

import logging
import sqlite3
from typing import List

from .database import Database, current_timestamp, parse_datetime, serialize_datetime
from .errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from .models import Message, MessageDetail, ReadReceipt, ReceivedMessage, SentMessage
from .users import UserDirectory, summary_from_row

logger = logging.getLogger("messagely.messages")


class MessageStore:
    """Owns message records.

    Every read or transition takes the requesting username explicitly; only
    the two participants may view a message and only its recipient may mark
    it as read.
    """

    def __init__(self, database: Database, users: UserDirectory) -> None:
        self._database = database
        self._users = users

    def create(self, from_username: str, to_username: str, body: str) -> Message:
        if body is None or not body.strip():
            raise ValidationError("body must not be empty")

        # Both lookups raise NotFoundError for an unknown participant.
        self._users.summary(from_username)
        self._users.summary(to_username)

        sent_at = current_timestamp()
        try:
            with self._database.transaction() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO messages (from_username, to_username, body, sent_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (from_username, to_username, body, serialize_datetime(sent_at)),
                )
                message_id = int(cursor.lastrowid)
        except sqlite3.IntegrityError as exc:
            raise NotFoundError("Message participants must be registered users") from exc

        logger.info("Message %s sent from %s to %s", message_id, from_username, to_username)
        return Message(
            id=message_id,
            from_username=from_username,
            to_username=to_username,
            body=body,
            sent_at=sent_at,
        )

    def get(self, message_id: int, requesting_username: str) -> MessageDetail:
        """Return a message with both participants attached.

        Raises :class:`ForbiddenError` unless ``requesting_username`` is the
        sender or the recipient.
        """

        row = self._fetch(message_id)
        if requesting_username not in (row["from_username"], row["to_username"]):
            raise ForbiddenError(f"Not allowed to view message {message_id}")

        return MessageDetail(
            id=int(row["id"]),
            body=str(row["body"]),
            sent_at=parse_datetime(row["sent_at"]),
            read_at=parse_datetime(row["read_at"]),
            from_user=self._users.summary(row["from_username"]),
            to_user=self._users.summary(row["to_username"]),
        )

    def mark_read(self, message_id: int, requesting_username: str) -> ReadReceipt:
        """Record the recipient's first read of a message.

        The update only matches rows whose ``read_at`` is still empty, so of
        several concurrent callers exactly one succeeds; the rest get a
        :class:`ConflictError` and the stored timestamp is left alone.
        """

        row = self._fetch(message_id)
        if requesting_username != row["to_username"]:
            raise ForbiddenError(f"Only the recipient may mark message {message_id} as read")

        read_at = current_timestamp()
        with self._database.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE messages
                   SET read_at = ?
                 WHERE id = ? AND to_username = ? AND read_at IS NULL
                """,
                (serialize_datetime(read_at), message_id, requesting_username),
            )
            updated = cursor.rowcount

        if updated == 0:
            raise ConflictError(f"Message {message_id} has already been read")

        logger.info("Message %s read by %s", message_id, requesting_username)
        return ReadReceipt(id=message_id, read_at=read_at)

    def messages_from(self, username: str) -> List[SentMessage]:
        with self._database.transaction() as conn:
            rows = conn.execute(
                """
                SELECT m.id, m.body, m.sent_at, m.read_at,
                       u.username, u.first_name, u.last_name, u.phone
                  FROM messages AS m
                  JOIN users AS u ON m.to_username = u.username
                 WHERE m.from_username = ?
                 ORDER BY m.sent_at, m.id
                """,
                (username,),
            ).fetchall()
        return [
            SentMessage(
                id=int(row["id"]),
                to_user=summary_from_row(row),
                body=str(row["body"]),
                sent_at=parse_datetime(row["sent_at"]),
                read_at=parse_datetime(row["read_at"]),
            )
            for row in rows
        ]

    def messages_to(self, username: str) -> List[ReceivedMessage]:
        with self._database.transaction() as conn:
            rows = conn.execute(
                """
                SELECT m.id, m.body, m.sent_at, m.read_at,
                       u.username, u.first_name, u.last_name, u.phone
                  FROM messages AS m
                  JOIN users AS u ON m.from_username = u.username
                 WHERE m.to_username = ?
                 ORDER BY m.sent_at, m.id
                """,
                (username,),
            ).fetchall()
        return [
            ReceivedMessage(
                id=int(row["id"]),
                from_user=summary_from_row(row),
                body=str(row["body"]),
                sent_at=parse_datetime(row["sent_at"]),
                read_at=parse_datetime(row["read_at"]),
            )
            for row in rows
        ]

    def _fetch(self, message_id: int) -> sqlite3.Row:
        with self._database.transaction() as conn:
            try:
                row = conn.execute(
                    "SELECT * FROM messages WHERE id = ?",
                    (message_id,),
                ).fetchone()
            except OverflowError:
                # Ids outside SQLite's 64-bit INTEGER range cannot exist.
                row = None
        if row is None:
            raise NotFoundError(f"Message {message_id} not found")
        return row


__all__ = ["MessageStore"]
