"""User administration endpoints.

These are placeholders for the identity provider admin API: they validate
input and answer with fixed payloads, without touching any user directory.
"""

from __future__ import annotations

import logging

from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

from atti_backend.api.common import ApiJSONResponse, get_caller, read_json_object, requires_roles
from atti_backend.auth.context import Role
from atti_backend.errors import InvalidRequestError

logger = logging.getLogger(__name__)

PLACEHOLDER_USER_ID = "nuovo-id-generato"


@requires_roles(Role.ADMIN)
async def list_users(request: Request) -> Response:
    return ApiJSONResponse([])


@requires_roles(Role.ADMIN)
async def create_user(request: Request) -> Response:
    payload = await read_json_object(request)
    username = payload.get("username")
    if not isinstance(username, str) or not username.strip():
        raise InvalidRequestError("Field 'username' is required")
    logger.info("User %s requested by %s (not provisioned)", username, get_caller(request).user_id)
    return ApiJSONResponse({"id": PLACEHOLDER_USER_ID, "username": username.strip()}, status_code=201)


@requires_roles(Role.ADMIN)
async def update_user(request: Request) -> Response:
    if not await read_json_object(request):
        raise InvalidRequestError("Request body must not be empty")
    return Response(status_code=204)


@requires_roles(Role.ADMIN)
async def assign_roles(request: Request) -> Response:
    payload = await read_json_object(request)
    if not isinstance(payload.get("ruoli"), list):
        raise InvalidRequestError("Field 'ruoli' must be a list")
    return Response(status_code=204)


@requires_roles(Role.ADMIN)
async def reset_password(request: Request) -> Response:
    return Response(status_code=204)


routes = [
    Route("/admin/utenti", list_users, methods=["GET"]),
    Route("/admin/utenti", create_user, methods=["POST"]),
    Route("/admin/utenti/{user_id}", update_user, methods=["PUT"]),
    Route("/admin/utenti/{user_id}/ruoli", assign_roles, methods=["PUT"]),
    Route("/admin/utenti/{user_id}/reset-password", reset_password, methods=["POST"]),
]
