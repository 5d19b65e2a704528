"""User registration, authentication and lookup."""
from __future__ import annotations

import logging
import sqlite3
from typing import List

from passlib.context import CryptContext

from .database import Database, current_timestamp, parse_datetime, serialize_datetime
from .errors import ConflictError, NotFoundError, ValidationError
from .models import User, UserSummary

logger = logging.getLogger("messagely.users")

DEFAULT_WORK_FACTOR = 12


def build_password_context(work_factor: int = DEFAULT_WORK_FACTOR) -> CryptContext:
    """Return a bcrypt context hashing with ``work_factor`` rounds."""

    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=work_factor)


def summary_from_row(row: sqlite3.Row) -> UserSummary:
    return UserSummary(
        username=str(row["username"]),
        first_name=str(row["first_name"]),
        last_name=str(row["last_name"]),
        phone=str(row["phone"]),
    )


def _require(value: str, field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} must not be empty")
    return str(value).strip()


class UserDirectory:
    """Owns user records and is the only place password hashes are read."""

    def __init__(self, database: Database, *, work_factor: int = DEFAULT_WORK_FACTOR) -> None:
        self._database = database
        self._pwd_context = build_password_context(work_factor)

    def register(
        self,
        username: str,
        password: str,
        first_name: str,
        last_name: str,
        phone: str,
    ) -> User:
        """Create a new user and return it without the password hash."""

        username = _require(username, "username")
        first_name = _require(first_name, "first_name")
        last_name = _require(last_name, "last_name")
        phone = _require(phone, "phone")
        if not password:
            raise ValidationError("password must not be empty")

        try:
            password_hash = self._pwd_context.hash(password)
        except ValueError as exc:
            raise ValidationError("password contains unsupported characters") from exc

        now = serialize_datetime(current_timestamp())

        try:
            with self._database.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO users (
                        username, password_hash, first_name, last_name, phone, join_at, last_login_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (username, password_hash, first_name, last_name, phone, now, now),
                )
        except sqlite3.IntegrityError as exc:
            raise ConflictError(f"Username '{username}' is already taken") from exc

        logger.info("Registered user %s", username)
        return self.get(username)

    def authenticate(self, username: str, password: str) -> bool:
        """Return ``True`` if ``password`` matches the stored hash for ``username``.

        ``username`` is stripped the same way :meth:`register` strips it.
        """

        username = (username or "").strip()
        with self._database.transaction() as conn:
            row = conn.execute(
                "SELECT password_hash FROM users WHERE username = ?",
                (username,),
            ).fetchone()

        if row is None:
            # Burn the same time as a real verification.
            self._pwd_context.dummy_verify()
            return False

        try:
            return self._pwd_context.verify(password, row["password_hash"])
        except ValueError:
            # Unusable password (e.g. a NUL byte) or an unparseable stored hash.
            logger.warning("Password verification for %s could not be performed", username)
            return False

    def update_login_timestamp(self, username: str) -> User:
        with self._database.transaction() as conn:
            cursor = conn.execute(
                "UPDATE users SET last_login_at = ? WHERE username = ?",
                (serialize_datetime(current_timestamp()), username),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"User '{username}' not found")
        return self.get(username)

    def all(self) -> List[UserSummary]:
        """Basic info on every user, ordered by username."""

        with self._database.transaction() as conn:
            rows = conn.execute(
                "SELECT username, first_name, last_name, phone FROM users ORDER BY username"
            ).fetchall()
        return [summary_from_row(row) for row in rows]

    def get(self, username: str) -> User:
        with self._database.transaction() as conn:
            row = conn.execute(
                """
                SELECT username, first_name, last_name, phone, join_at, last_login_at
                  FROM users
                 WHERE username = ?
                """,
                (username,),
            ).fetchone()
        if row is None:
            raise NotFoundError(f"User '{username}' not found")
        return self._row_to_user(row)

    def summary(self, username: str) -> UserSummary:
        """Return the display summary used when attaching participants to messages."""

        with self._database.transaction() as conn:
            row = conn.execute(
                "SELECT username, first_name, last_name, phone FROM users WHERE username = ?",
                (username,),
            ).fetchone()
        if row is None:
            raise NotFoundError(f"User '{username}' not found")
        return summary_from_row(row)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            username=str(row["username"]),
            first_name=str(row["first_name"]),
            last_name=str(row["last_name"]),
            phone=str(row["phone"]),
            join_at=parse_datetime(str(row["join_at"])),
            last_login_at=parse_datetime(str(row["last_login_at"])),
        )


__all__ = ["DEFAULT_WORK_FACTOR", "UserDirectory", "build_password_context", "summary_from_row"]
