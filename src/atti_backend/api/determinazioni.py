"""REST handlers for ``/determinazioni``."""

from __future__ import annotations

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

from atti_backend.api.common import (
    ApiJSONResponse,
    get_caller,
    parse_model,
    path_int,
    read_json_object,
    requires_roles,
)
from atti_backend.app import AppContext
from atti_backend.audit.recorder import EventType
from atti_backend.auth.context import Caller, Role
from atti_backend.determinazioni import Determinazione, DeterminazioneDraft, Stato
from atti_backend.determinazioni.lifecycle import parse_stato
from atti_backend.errors import InvalidRequestError


def _context(request: Request) -> AppContext:
    return request.app.state.context


def _audit_key(record: Determinazione) -> str:
    return record.process_instance_id or record.numero


def _record_created(ctx: AppContext, record: Determinazione, caller: Caller) -> None:
    ctx.audit.record(
        EventType.ATTO_CREATO,
        caller,
        process_instance_id=_audit_key(record),
        details={"id": record.id, "numero": record.numero, "oggetto": record.oggetto},
    )


def _record_status_change(
    ctx: AppContext, record: Determinazione, previous: Stato, caller: Caller
) -> None:
    event_type = (
        EventType.ATTO_PUBBLICATO if record.stato is Stato.PUBLISHED else EventType.STATO_AGGIORNATO
    )
    ctx.audit.record(
        event_type,
        caller,
        process_instance_id=_audit_key(record),
        details={
            "id": record.id,
            "numero": record.numero,
            "da": previous,
            "a": record.stato,
        },
    )


@requires_roles(Role.PREPARER, Role.MANAGER)
async def create_determinazione(request: Request) -> Response:
    caller = get_caller(request)
    draft = parse_model(DeterminazioneDraft, await read_json_object(request))
    ctx = _context(request)

    def _create() -> Determinazione:
        record = ctx.lifecycle.create(draft, caller)
        _record_created(ctx, record, caller)
        return record

    record = await run_in_threadpool(_create)
    return ApiJSONResponse(
        record.to_dict(),
        status_code=201,
        headers={"Location": f"/determinazioni/{record.id}"},
    )


async def list_determinazioni(request: Request) -> Response:
    records = await run_in_threadpool(_context(request).lifecycle.find_all)
    return ApiJSONResponse([r.to_dict() for r in records])


async def get_determinazione(request: Request) -> Response:
    record_id = path_int(request, "record_id")
    record = await run_in_threadpool(_context(request).lifecycle.get, record_id)
    return ApiJSONResponse(record.to_dict())


@requires_roles(Role.MANAGER)
async def update_stato(request: Request) -> Response:
    caller = get_caller(request)
    record_id = path_int(request, "record_id")
    payload = await read_json_object(request)
    stato_raw = payload.get("stato")
    if not isinstance(stato_raw, str) or not stato_raw.strip():
        raise InvalidRequestError("Field 'stato' is required")
    target = parse_stato(stato_raw)
    ctx = _context(request)

    def _update() -> Determinazione:
        previous, record = ctx.lifecycle.transition(record_id, target, caller)
        _record_status_change(ctx, record, previous, caller)
        return record

    record = await run_in_threadpool(_update)
    return ApiJSONResponse(record.to_dict())


routes = [
    Route("/determinazioni", create_determinazione, methods=["POST"]),
    Route("/determinazioni", list_determinazioni, methods=["GET"]),
    Route("/determinazioni/{record_id}", get_determinazione, methods=["GET"]),
    Route("/determinazioni/{record_id}/stato", update_stato, methods=["PUT"]),
]
