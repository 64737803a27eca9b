"""ASGI middleware for Bearer token authentication of the service API."""

from __future__ import annotations

import hmac

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from hooklink.audit.logger import AuditLogger
from hooklink.models import AuditEvent, AuditEventType, RiskLevel

# Paths that bypass authentication (exact match)
PUBLIC_PATHS = {"/health"}

# Provider callbacks are authenticated by identity resolution, not a token
PUBLIC_PREFIXES = ("/incoming/",)


def _unauthorized(details: str, status_code: int) -> JSONResponse:
    error = "Unauthorized" if status_code == 401 else "Forbidden"
    return JSONResponse(
        {"success": False, "error": error, "details": details},
        status_code=status_code,
    )


class AuthMiddleware:
    """ASGI middleware that validates Bearer tokens using constant-time comparison."""

    def __init__(
        self,
        app: ASGIApp,
        token: str,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self.app = app
        self._token = token.encode()
        self.audit_logger = audit_logger

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        path = request.url.path

        if path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES):
            await self.app(scope, receive, send)
            return

        auth_header = request.headers.get("authorization", "")

        if not auth_header:
            self._log_failure(request, "missing_token")
            await _unauthorized("API key is required.", 401)(scope, receive, send)
            return

        if not auth_header.startswith("Bearer "):
            self._log_failure(request, "invalid_format")
            await _unauthorized("Authorization header must use the Bearer scheme.", 401)(
                scope, receive, send,
            )
            return

        provided_token = auth_header[7:].encode()

        if not hmac.compare_digest(provided_token, self._token):
            self._log_failure(request, "invalid_token")
            await _unauthorized("Invalid API key.", 403)(scope, receive, send)
            return

        if self.audit_logger:
            self.audit_logger.log(AuditEvent(
                event_type=AuditEventType.AUTH_SUCCESS,
                source_ip=request.client.host if request.client else None,
                user_id=request.headers.get("x-client-user-id"),
                action=f"{request.method} {path}",
                result="success",
                risk_level=RiskLevel.INFO,
            ))

        await self.app(scope, receive, send)

    def _log_failure(self, request: Request, reason: str) -> None:
        if self.audit_logger:
            self.audit_logger.log(AuditEvent(
                event_type=AuditEventType.AUTH_FAILURE,
                source_ip=request.client.host if request.client else None,
                action=f"{request.method} {request.url.path}",
                result="failure",
                risk_level=RiskLevel.HIGH,
                details={"reason": reason},
            ))
