"""Domain models for users and the messages they exchange."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class UserSummary:
    """Public display attributes of a user."""

    username: str
    first_name: str
    last_name: str
    phone: str


@dataclass(frozen=True)
class User(UserSummary):
    """A user account as returned by the directory. Never carries the hash."""

    join_at: datetime
    last_login_at: datetime


@dataclass(frozen=True)
class Message:
    """A freshly created message."""

    id: int
    from_username: str
    to_username: str
    body: str
    sent_at: datetime


@dataclass(frozen=True)
class MessageDetail:
    id: int
    body: str
    sent_at: datetime
    read_at: Optional[datetime]
    from_user: UserSummary
    to_user: UserSummary


@dataclass(frozen=True)
class SentMessage:
    id: int
    to_user: UserSummary
    body: str
    sent_at: datetime
    read_at: Optional[datetime]


@dataclass(frozen=True)
class ReceivedMessage:
    id: int
    from_user: UserSummary
    body: str
    sent_at: datetime
    read_at: Optional[datetime]


@dataclass(frozen=True)
class ReadReceipt:
    """Outcome of a recipient marking a message as read."""

    id: int
    read_at: datetime


__all__ = [
    "Message",
    "MessageDetail",
    "ReadReceipt",
    "ReceivedMessage",
    "SentMessage",
    "User",
    "UserSummary",
]
