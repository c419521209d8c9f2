"""Bearer-session authentication for admins and students."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from enum import Enum
from threading import RLock
from typing import Optional

from backend.utils.config import Settings, get_settings


class AuthenticationError(Exception):
    """Base authentication failure."""


class AdminTokenNotConfiguredError(AuthenticationError):
    """Raised when ADMIN_TOKEN is missing."""


class InvalidTokenError(AuthenticationError):
    """Raised when a provided token is invalid."""


class Role(str, Enum):
    ADMIN = "admin"
    STUDENT = "student"


@dataclass(frozen=True)
class Principal:
    role: Role
    student_id: Optional[int] = None


class AuthService:
    """Issues and validates session tokens.

    There is one admin session, replaced on every login. Student sessions are
    issued by the credential system through issue_student_token; each student
    holds at most one live token.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._lock = RLock()
        self._admin_session_token: Optional[str] = None
        self._student_sessions: dict[str, int] = {}
        self._student_tokens: dict[int, str] = {}

    @property
    def admin_auth_enabled(self) -> bool:
        return bool(self._settings.admin_token)

    @property
    def active_session_count(self) -> int:
        with self._lock:
            admin = 1 if self._admin_session_token is not None else 0
            return admin + len(self._student_sessions)

    def _expected_admin_token(self) -> str:
        if not self._settings.admin_token:
            raise AdminTokenNotConfiguredError(
                "ADMIN_TOKEN is not configured. Set ADMIN_TOKEN in environment variables."
            )
        return self._settings.admin_token

    def login(self, provided_admin_token: str) -> str:
        expected = self._expected_admin_token()
        if not secrets.compare_digest(provided_admin_token, expected):
            raise InvalidTokenError("Invalid admin token")
        token = secrets.token_urlsafe(32)
        with self._lock:
            self._admin_session_token = token
        return token

    def issue_student_token(self, student_id: int) -> str:
        token = secrets.token_urlsafe(32)
        with self._lock:
            previous = self._student_tokens.get(student_id)
            if previous is not None:
                self._student_sessions.pop(previous, None)
            self._student_tokens[student_id] = token
            self._student_sessions[token] = student_id
        return token

    def resolve_bearer_token(self, bearer_token: str) -> Principal:
        with self._lock:
            admin_token = self._admin_session_token
            student_id = self._student_sessions.get(bearer_token)
        if admin_token is not None and secrets.compare_digest(bearer_token, admin_token):
            return Principal(role=Role.ADMIN)
        if student_id is not None:
            return Principal(role=Role.STUDENT, student_id=student_id)
        raise InvalidTokenError("Invalid or expired bearer token")
