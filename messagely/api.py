"""FastAPI application exposing the messagely JSON API."""
from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime
from typing import Dict, List, Optional

import anyio
from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from .config import Settings, load_settings
from .database import Database
from .errors import AuthenticationError, ForbiddenError, MessagelyError, StorageError
from .messages import MessageStore
from .security import BearerAuth, TokenIssuer
from .users import UserDirectory

logger = logging.getLogger("messagely.api")


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)
    password: str = Field(..., min_length=1, max_length=72)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., min_length=1, max_length=32)

    @field_validator("username", "first_name", "last_name", "phone")
    @classmethod
    def _strip(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)

    @field_validator("username")
    @classmethod
    def _strip_username(cls, value: str) -> str:
        return value.strip()


class TokenResponse(BaseModel):
    token: str


class UserSummaryResponse(BaseModel):
    username: str
    first_name: str
    last_name: str
    phone: str


class UserResponse(UserSummaryResponse):
    join_at: datetime
    last_login_at: datetime


class RegisterResponse(TokenResponse):
    user: UserResponse


class UserListResponse(BaseModel):
    users: List[UserSummaryResponse]


class UserDetailResponse(BaseModel):
    user: UserResponse


class MessageCreateRequest(BaseModel):
    """The sender is always the authenticated user, never a request field."""

    to_username: str = Field(..., min_length=1, max_length=64)
    body: str = Field(..., min_length=1)

    @field_validator("body")
    @classmethod
    def _require_body(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("body must not be blank")
        return value


class MessageView(BaseModel):
    id: int
    from_username: str
    to_username: str
    body: str
    sent_at: datetime


class MessageDetailView(BaseModel):
    id: int
    body: str
    sent_at: datetime
    read_at: Optional[datetime]
    from_user: UserSummaryResponse
    to_user: UserSummaryResponse


class ReadReceiptView(BaseModel):
    id: int
    read_at: datetime


class SentMessageView(BaseModel):
    id: int
    to_user: UserSummaryResponse
    body: str
    sent_at: datetime
    read_at: Optional[datetime]


class ReceivedMessageView(BaseModel):
    id: int
    from_user: UserSummaryResponse
    body: str
    sent_at: datetime
    read_at: Optional[datetime]


class MessageCreateResponse(BaseModel):
    message: MessageView


class MessageDetailResponse(BaseModel):
    message: MessageDetailView


class ReadReceiptResponse(BaseModel):
    message: ReadReceiptView


class SentMessageListResponse(BaseModel):
    messages: List[SentMessageView]


class ReceivedMessageListResponse(BaseModel):
    messages: List[ReceivedMessageView]


def _require_same_user(current_user: str, username: str) -> None:
    if current_user != username:
        raise ForbiddenError("You may only list your own messages")


def create_app(
    *,
    settings: Settings | None = None,
    database: Database | None = None,
    initialize_database: bool = True,
) -> FastAPI:
    """Create the API application.

    The user directory, message store and credential issuer are built once and
    hold no per-request state; every core call runs in a worker thread so
    bcrypt and SQLite never block the event loop.
    """

    if settings is None:
        settings = load_settings()
    if database is None:
        database = Database(settings.database_path)
    if initialize_database:
        database.initialize()

    users = UserDirectory(database, work_factor=settings.bcrypt_work_factor)
    messages = MessageStore(database, users)
    issuer = TokenIssuer(settings.secret_key, ttl=settings.token_ttl)
    current_user = BearerAuth(issuer)

    app = FastAPI(
        title="Messagely",
        description="Registered users exchanging directed messages with read receipts",
        version="1.0.0",
    )
    app.state.database = database
    app.state.users = users
    app.state.messages = messages
    app.state.issuer = issuer

    @app.exception_handler(MessagelyError)
    async def handle_messagely_error(_: Request, exc: MessagelyError):
        if isinstance(exc, StorageError):
            logger.error("Storage failure: %s", exc)
        headers: Dict[str, str] | None = None
        if isinstance(exc, AuthenticationError):
            headers = {"WWW-Authenticate": "Bearer"}
        return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)}, headers=headers)

    @app.get("/healthz")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    auth_router = APIRouter(prefix="/auth")

    @auth_router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
    async def register(payload: RegisterRequest) -> RegisterResponse:
        user = await anyio.to_thread.run_sync(
            users.register,
            payload.username,
            payload.password,
            payload.first_name,
            payload.last_name,
            payload.phone,
        )
        return RegisterResponse(token=issuer.issue(user.username), user=UserResponse(**asdict(user)))

    @auth_router.post("/login", response_model=TokenResponse)
    async def login(payload: LoginRequest) -> TokenResponse:
        valid = await anyio.to_thread.run_sync(users.authenticate, payload.username, payload.password)
        if not valid:
            logger.warning("Failed login attempt for %s", payload.username)
            raise AuthenticationError("Invalid username or password")
        await anyio.to_thread.run_sync(users.update_login_timestamp, payload.username)
        logger.info("User %s logged in", payload.username)
        return TokenResponse(token=issuer.issue(payload.username))

    users_router = APIRouter(prefix="/users")

    @users_router.get("", response_model=UserListResponse)
    async def list_users(_: str = Depends(current_user)) -> UserListResponse:
        summaries = await anyio.to_thread.run_sync(users.all)
        return UserListResponse(users=[UserSummaryResponse(**asdict(item)) for item in summaries])

    @users_router.get("/{username}", response_model=UserDetailResponse)
    async def read_user(username: str, _: str = Depends(current_user)) -> UserDetailResponse:
        user = await anyio.to_thread.run_sync(users.get, username)
        return UserDetailResponse(user=UserResponse(**asdict(user)))

    @users_router.get("/{username}/to", response_model=ReceivedMessageListResponse)
    async def list_messages_to(
        username: str,
        requester: str = Depends(current_user),
    ) -> ReceivedMessageListResponse:
        _require_same_user(requester, username)
        received = await anyio.to_thread.run_sync(messages.messages_to, username)
        return ReceivedMessageListResponse(
            messages=[ReceivedMessageView(**asdict(item)) for item in received]
        )

    @users_router.get("/{username}/from", response_model=SentMessageListResponse)
    async def list_messages_from(
        username: str,
        requester: str = Depends(current_user),
    ) -> SentMessageListResponse:
        _require_same_user(requester, username)
        sent = await anyio.to_thread.run_sync(messages.messages_from, username)
        return SentMessageListResponse(messages=[SentMessageView(**asdict(item)) for item in sent])

    messages_router = APIRouter(prefix="/messages")

    @messages_router.get("/{message_id}", response_model=MessageDetailResponse)
    async def read_message(message_id: int, requester: str = Depends(current_user)) -> MessageDetailResponse:
        detail = await anyio.to_thread.run_sync(messages.get, message_id, requester)
        return MessageDetailResponse(message=MessageDetailView(**asdict(detail)))

    @messages_router.post("", response_model=MessageCreateResponse, status_code=status.HTTP_201_CREATED)
    async def send_message(
        payload: MessageCreateRequest,
        requester: str = Depends(current_user),
    ) -> MessageCreateResponse:
        message = await anyio.to_thread.run_sync(
            messages.create,
            requester,
            payload.to_username,
            payload.body,
        )
        return MessageCreateResponse(message=MessageView(**asdict(message)))

    @messages_router.post("/{message_id}/read", response_model=ReadReceiptResponse)
    async def mark_message_read(message_id: int, requester: str = Depends(current_user)) -> ReadReceiptResponse:
        receipt = await anyio.to_thread.run_sync(messages.mark_read, message_id, requester)
        return ReadReceiptResponse(message=ReadReceiptView(**asdict(receipt)))

    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(messages_router)

    return app


__all__ = ["create_app"]
