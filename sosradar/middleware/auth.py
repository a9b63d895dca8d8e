"""Request authentication for SOS reporters and operators.

Two FastAPI dependencies live here:

* :func:`resolve_reporter` -- decodes the reporter's bearer JWT (header,
  or ``?token=`` query parameter for clients that cannot set headers).
  Returns *None* rather than raising so the detection pipeline owns the
  "no reporter" decision.
* :func:`require_admin_api_key` -- validates the ``X-Admin-API-Key``
  header for operator actions such as resolving an incident.  Uses
  constant-time comparison to prevent timing attacks.
"""

from __future__ import annotations

import hmac
from datetime import UTC, datetime, timedelta

import structlog
from fastapi import HTTPException, Request, Security
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from config.settings import settings
from sosradar.models.enums import ReporterRole
from sosradar.services.detection import Reporter

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_api_key_header = APIKeyHeader(name="X-Admin-API-Key", auto_error=False)
_bearer = HTTPBearer(auto_error=False)


# ---------------------------------------------------------------------------
# Reporter tokens
# ---------------------------------------------------------------------------


def decode_reporter_token(token: str) -> Reporter | None:
    """Decode a reporter JWT into a :class:`Reporter`.

    Two claim shapes are accepted: ``{userId, role}`` (app sessions) and
    ``{uid, typ}`` (shared-vault links, where ``typ == "vault_share"``
    means a patient).  Anything else is rejected.
    """
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None

    if claims.get("userId") and claims.get("role"):
        reporter_id, role = str(claims["userId"]), str(claims["role"])
    elif claims.get("uid") and claims.get("typ"):
        reporter_id = str(claims["uid"])
        role = "patient" if claims["typ"] == "vault_share" else str(claims["typ"])
    else:
        return None

    return Reporter(
        reporter_id=reporter_id,
        role=ReporterRole.DOCTOR if role == ReporterRole.DOCTOR else ReporterRole.PATIENT,
    )


def issue_reporter_token(
    reporter_id: str,
    role: ReporterRole = ReporterRole.PATIENT,
    *,
    expires_in: timedelta = timedelta(hours=12),
) -> str:
    """Sign a ``{userId, role}`` token (development tooling and tests)."""
    claims = {
        "userId": reporter_id,
        "role": str(role),
        "exp": datetime.now(UTC) + expires_in,
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


async def resolve_reporter(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
) -> Reporter | None:
    """FastAPI dependency returning the calling reporter, or *None*."""
    token = credentials.credentials if credentials is not None else request.query_params.get("token")
    if not token:
        return None

    reporter = decode_reporter_token(token)
    if reporter is None:
        logger.warning(
            "auth.invalid_reporter_token",
            path=request.url.path,
            client_ip=request.client.host if request.client else "unknown",
        )
    return reporter


# ---------------------------------------------------------------------------
# Admin API key
# ---------------------------------------------------------------------------


async def require_admin_api_key(
    request: Request,
    api_key: str | None = Security(_api_key_header),
) -> str:
    """FastAPI dependency that enforces admin API key authentication.

    Returns the validated key on success; raises 401/403 on failure.

    Usage::

        @router.post("/{incident_id}/resolve", dependencies=[Depends(require_admin_api_key)])
        async def resolve_incident(...): ...
    """
    configured_key = settings.admin_api_key

    if not configured_key:
        # In development without a configured key, log a warning but allow access
        if not settings.is_production:
            logger.warning(
                "auth.admin_key_not_configured",
                note="Admin API key not set; allowing request in development mode",
            )
            return ""
        logger.error("auth.admin_key_not_configured_production")
        raise HTTPException(
            status_code=503,
            detail="Admin authentication is not configured.",
        )

    if not api_key:
        logger.warning(
            "auth.missing_api_key",
            path=request.url.path,
            client_ip=request.client.host if request.client else "unknown",
        )
        raise HTTPException(
            status_code=401,
            detail="Missing X-Admin-API-Key header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if not hmac.compare_digest(api_key.encode(), configured_key.encode()):
        logger.warning(
            "auth.invalid_api_key",
            path=request.url.path,
            client_ip=request.client.host if request.client else "unknown",
        )
        raise HTTPException(
            status_code=403,
            detail="Invalid API key.",
        )

    return api_key
