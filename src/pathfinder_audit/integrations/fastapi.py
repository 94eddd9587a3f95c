"""FastAPI integration: request auditing middleware and an admin router.

Usage::

    from pathfinder_audit.integrations.fastapi import AuditMiddleware, create_audit_router

    app = FastAPI()
    app.add_middleware(AuditMiddleware, service=audit_service)
    app.include_router(create_audit_router(audit_service, prefix="/admin/audit"))

Requires the ``fastapi`` extra::

    pip install pathfinder-audit[fastapi]
"""

from __future__ import annotations

import time
import uuid
from datetime import datetime
from typing import Any

try:
    from fastapi import APIRouter, HTTPException, Query, Request, Response
    from pydantic import BaseModel as _FaBaseModel
    from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
    from starlette.types import ASGIApp
except ImportError as _err:  # pragma: no cover
    raise ImportError(
        "FastAPI is required for pathfinder_audit.integrations.fastapi. "
        "Install it with: pip install pathfinder-audit[fastapi]"
    ) from _err

import structlog

from pathfinder_audit.audit.compliance import ComplianceReport
from pathfinder_audit.audit.integrity import ChainVerification
from pathfinder_audit.audit.query import AuditQueryFilters
from pathfinder_audit.audit.retention import PolicyOutcome
from pathfinder_audit.audit.serialization import as_utc
from pathfinder_audit.audit.service import AuditService
from pathfinder_audit.core.context import RequestContext, request_context
from pathfinder_audit.core.exceptions import AuditError, RetentionError

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
CORRELATION_ID_HEADER = "X-Correlation-ID"


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


def _attr(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def build_http_event(
    request: Request, status_code: int, response_time_ms: int
) -> dict[str, Any]:
    """The ``http_request`` audit event for one completed request.

    The actor is read from ``request.state.user`` (object or mapping with
    ``id``, ``username`` and ``roles``) when an upstream auth dependency set it.
    """
    user = getattr(request.state, "user", None)
    failed = status_code >= 400
    event: dict[str, Any] = {
        "event_type": "http_request",
        "event_category": "api",
        "event_severity": "warn" if failed else "info",
        "event_name": f"{request.method} {request.url.path}",
        "action": request.method.lower(),
        "action_result": "failure" if failed else "success",
        "actor_type": "user" if user is not None else "anonymous",
        "http_method": request.method,
        "http_path": request.url.path,
        "http_status_code": status_code,
        "response_time_ms": response_time_ms,
    }
    if user is not None:
        event["actor_id"] = _attr(user, "id")
        event["actor_username"] = _attr(user, "username")
        event["actor_roles"] = _attr(user, "roles") or []
    if request.url.query:
        event["custom_data"] = {"query": dict(request.query_params)}
    return event


class AuditMiddleware(BaseHTTPMiddleware):
    """Binds a :class:`RequestContext` per request and audits each response.

    A failure while logging the audit event is reported to the operational
    log only; the client always receives the application's response.
    """

    def __init__(self, app: ASGIApp, service: AuditService) -> None:
        super().__init__(app)
        self._service = service

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        ctx = RequestContext(
            request_id=request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4()),
            correlation_id=request.headers.get(CORRELATION_ID_HEADER),
            session_id=request.cookies.get("session_id"),
            ip_address=_client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
        started = time.perf_counter()
        with request_context(ctx):
            response = await call_next(request)
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            try:
                await self._service.log(build_http_event(request, response.status_code, elapsed_ms))
            except Exception:
                logger.exception(
                    "audit_middleware_error",
                    path=request.url.path,
                    request_id=ctx.request_id,
                )
        response.headers.setdefault(REQUEST_ID_HEADER, ctx.request_id or "")
        return response


# ---------------------------------------------------------------------------
# Admin router
# ---------------------------------------------------------------------------


class _EventsResponse(_FaBaseModel):
    count: int
    events: list[dict[str, Any]]


class _RetentionResponse(_FaBaseModel):
    archived: int
    purged: int
    failed: int
    policies: list[PolicyOutcome]


def create_audit_router(
    service: AuditService,
    prefix: str = "/audit",
) -> APIRouter:
    """Return an :class:`APIRouter` with audit administration endpoints.

    Endpoints:
        - ``GET  {prefix}/events``             : filtered event query
        - ``GET  {prefix}/compliance/{framework}`` : compliance report
        - ``POST {prefix}/retention/run``      : apply retention policies
        - ``GET  {prefix}/verify``             : hash chain verification
    """
    router = APIRouter(prefix=prefix, tags=["audit"])

    @router.get("/events", response_model=_EventsResponse)
    async def list_events(
        startDate: datetime | None = None,  # noqa: N803
        endDate: datetime | None = None,  # noqa: N803
        eventType: str | None = None,  # noqa: N803
        eventCategory: str | None = None,  # noqa: N803
        actorId: str | None = None,  # noqa: N803
        targetId: str | None = None,  # noqa: N803
        minRiskScore: int | None = Query(default=None, ge=0, le=100),  # noqa: N803
        actionResult: str | None = None,  # noqa: N803
        limit: int = Query(default=100, ge=0),
        verify: bool = False,
    ) -> _EventsResponse:
        filters = AuditQueryFilters(
            start_date=startDate,
            end_date=endDate,
            event_type=eventType,
            event_category=eventCategory,
            actor_id=actorId,
            target_id=targetId,
            min_risk_score=minRiskScore,
            action_result=actionResult,
            limit=limit,
        )
        try:
            rows = await service.query(filters, verify_integrity=verify)
        except AuditError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return _EventsResponse(count=len(rows), events=rows)

    @router.get("/compliance/{framework}", response_model=ComplianceReport)
    async def compliance_report(
        framework: str,
        start: datetime,
        end: datetime,
    ) -> ComplianceReport:
        if as_utc(start) > as_utc(end):
            raise HTTPException(status_code=422, detail="start must not be after end")
        try:
            return await service.generate_compliance_report(framework, start, end)
        except AuditError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc

    @router.post("/retention/run", response_model=_RetentionResponse)
    async def run_retention() -> _RetentionResponse:
        try:
            run = await service.apply_retention_policies()
        except RetentionError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return _RetentionResponse(
            archived=run.archived,
            purged=run.purged,
            failed=len(run.failed),
            policies=run.outcomes,
        )

    @router.get("/verify", response_model=ChainVerification)
    async def verify_chain(limit: int | None = Query(default=None, ge=1)) -> ChainVerification:
        try:
            return await service.verify_chain(limit)
        except AuditError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc

    return router
