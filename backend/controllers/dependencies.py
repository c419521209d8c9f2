"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from backend.services.allocation_service import AllocationRunController
from backend.services.auth_service import AuthService, InvalidTokenError, Principal, Role
from backend.services.report_service import ReportService
from backend.utils.config import get_settings


bearer_scheme = HTTPBearer(auto_error=False)


def get_auth_service(request: Request) -> AuthService:
    service = getattr(request.app.state, "auth_service", None)
    if service is None:
        service = AuthService(settings=get_settings())
        request.app.state.auth_service = service
    return service


def get_allocation_controller(request: Request) -> AllocationRunController:
    service = getattr(request.app.state, "allocation_controller", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Allocation service is not initialized",
        )
    return service


def get_report_service(request: Request) -> ReportService:
    service = getattr(request.app.state, "report_service", None)
    if service is None:
        controller = get_allocation_controller(request)
        service = ReportService(state=controller.state, settings=get_settings())
        request.app.state.report_service = service
    return service


def _resolve_principal(
    credentials: HTTPAuthorizationCredentials | None,
    auth_service: AuthService,
) -> Principal:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header with Bearer token is required",
        )
    try:
        return auth_service.resolve_bearer_token(credentials.credentials)
    except InvalidTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc


async def require_admin(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> None:
    if not auth_service.admin_auth_enabled:
        return
    principal = _resolve_principal(credentials, auth_service)
    if principal.role is not Role.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )


async def require_student(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> Principal:
    principal = _resolve_principal(credentials, auth_service)
    if principal.role is not Role.STUDENT or principal.student_id is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Student access required",
        )
    return principal
