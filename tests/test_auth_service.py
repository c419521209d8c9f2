from __future__ import annotations

from dataclasses import replace

import pytest

from backend.services.auth_service import (
    AdminTokenNotConfiguredError,
    AuthService,
    InvalidTokenError,
    Role,
)
from backend.utils.config import get_settings


def _build_service(admin_token: str = "admin-secret") -> AuthService:
    return AuthService(settings=replace(get_settings(), admin_token=admin_token))


def test_repeated_admin_logins_keep_a_single_session():
    service = _build_service()

    tokens = [service.login("admin-secret") for _ in range(500)]

    assert service.active_session_count == 1
    assert service.resolve_bearer_token(tokens[-1]).role is Role.ADMIN
    with pytest.raises(InvalidTokenError):
        service.resolve_bearer_token(tokens[0])


def test_reissuing_student_token_replaces_previous_one():
    service = _build_service()

    first = service.issue_student_token(7)
    for _ in range(100):
        latest = service.issue_student_token(7)
    other = service.issue_student_token(8)

    assert service.active_session_count == 2
    with pytest.raises(InvalidTokenError):
        service.resolve_bearer_token(first)
    principal = service.resolve_bearer_token(latest)
    assert principal.role is Role.STUDENT
    assert principal.student_id == 7
    assert service.resolve_bearer_token(other).student_id == 8


def test_admin_and_student_sessions_coexist():
    service = _build_service()

    student_token = service.issue_student_token(3)
    admin_token = service.login("admin-secret")

    assert service.resolve_bearer_token(admin_token).role is Role.ADMIN
    assert service.resolve_bearer_token(student_token).role is Role.STUDENT


def test_login_rejects_wrong_token_and_unconfigured_admin():
    with pytest.raises(InvalidTokenError):
        _build_service().login("wrong")
    with pytest.raises(AdminTokenNotConfiguredError):
        _build_service(admin_token="").login("anything")


def test_unknown_token_is_rejected_before_any_login():
    with pytest.raises(InvalidTokenError, match="Invalid or expired bearer token"):
        _build_service().resolve_bearer_token("not-a-session")
