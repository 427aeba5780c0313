"""Helpers shared by the REST handlers."""

from __future__ import annotations

import functools
import json
import logging
from typing import Any, Awaitable, Callable, TypeVar

from pydantic import BaseModel, ValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from atti_backend.auth.context import Caller, Role
from atti_backend.errors import InvalidRequestError
from atti_backend.utils.serialization import json_default

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)
Endpoint = Callable[[Request], Awaitable[Response]]


class ApiJSONResponse(JSONResponse):
    """JSONResponse that understands datetimes, Decimals and enums."""

    def render(self, content: Any) -> bytes:
        return json.dumps(
            content,
            ensure_ascii=False,
            allow_nan=False,
            separators=(",", ":"),
            default=json_default,
        ).encode("utf-8")


def error_response(status_code: int, code: str, message: str, **extra: Any) -> ApiJSONResponse:
    return ApiJSONResponse(
        status_code=status_code,
        content={"error": code, "message": message, **extra},
    )


def get_caller(request: Request) -> Caller:
    caller = getattr(request.state, "caller", None)
    if caller is None:
        # The auth middleware guards every non-exempt route.
        raise RuntimeError("No authenticated caller on request")
    return caller


def requires_roles(*roles: Role) -> Callable[[Endpoint], Endpoint]:
    """Reject callers holding none of ``roles`` with 403."""

    def decorator(endpoint: Endpoint) -> Endpoint:
        @functools.wraps(endpoint)
        async def wrapper(request: Request) -> Response:
            caller = get_caller(request)
            if not caller.has_any_role(roles):
                logger.warning(
                    "Access denied for %s on %s %s (needs one of %s)",
                    caller.user_id,
                    request.method,
                    request.url.path,
                    ", ".join(r.value for r in roles),
                )
                return error_response(
                    403,
                    "forbidden",
                    "Caller lacks the required role",
                )
            return await endpoint(request)

        return wrapper

    return decorator


async def read_json_object(request: Request) -> dict[str, Any]:
    body = await request.body()
    if not body.strip():
        raise InvalidRequestError("Request body is required")
    try:
        payload = json.loads(body)
    except ValueError as exc:
        raise InvalidRequestError("Request body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    return payload


def parse_model(model: type[ModelT], payload: dict[str, Any]) -> ModelT:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}"
            for err in exc.errors()
        )
        raise InvalidRequestError(details) from exc


def path_int(request: Request, name: str) -> int:
    raw = request.path_params[name]
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidRequestError(f"'{name}' must be an integer") from exc
