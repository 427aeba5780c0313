"""REST handlers for ``/audit``."""

from __future__ import annotations

from datetime import datetime

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

from atti_backend.api.common import (
    ApiJSONResponse,
    get_caller,
    parse_model,
    read_json_object,
    requires_roles,
)
from atti_backend.app import AppContext
from atti_backend.audit import AuditEntry, AuditFilter
from atti_backend.auth.context import Role
from atti_backend.errors import InvalidRequestError
from atti_backend.utils.time import parse_datetime_param


def _optional(request: Request, name: str) -> str | None:
    value = request.query_params.get(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _date_param(request: Request, name: str, ctx: AppContext, *, end_of_day: bool) -> datetime | None:
    raw = _optional(request, name)
    if raw is None:
        return None
    try:
        return parse_datetime_param(raw, ctx.tz, end_of_day=end_of_day)
    except ValueError as exc:
        raise InvalidRequestError(f"'{name}' is not a valid ISO-8601 date: {raw!r}") from exc


@requires_roles(Role.ADMIN)
async def query_audit(request: Request) -> Response:
    ctx: AppContext = request.app.state.context
    filters = AuditFilter(
        process_instance_id=_optional(request, "processInstanceId"),
        user_id=_optional(request, "userId"),
        date_from=_date_param(request, "from", ctx, end_of_day=False),
        date_to=_date_param(request, "to", ctx, end_of_day=True),
    )
    events = await run_in_threadpool(ctx.audit.query, filters)
    return ApiJSONResponse([e.to_dict() for e in events])


async def append_audit(request: Request) -> Response:
    ctx: AppContext = request.app.state.context
    entry = parse_model(AuditEntry, await read_json_object(request))
    event = await run_in_threadpool(ctx.audit.append, entry, get_caller(request))
    return ApiJSONResponse(event.to_dict(), status_code=201)


routes = [
    Route("/audit", query_audit, methods=["GET"]),
    Route("/audit", append_audit, methods=["POST"]),
]
