"""Read-only reference data: DMN decisions and regulatory references."""

from __future__ import annotations

from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

from atti_backend.api.common import ApiJSONResponse
from atti_backend.decisions import default_catalog
from atti_backend.normativa import cerca_normativa, richiede_pubblicazione


async def list_decisions(request: Request) -> Response:
    return ApiJSONResponse(list(default_catalog()))


async def list_normativa(request: Request) -> Response:
    query = request.query_params.get("q")
    return ApiJSONResponse(
        {
            "riferimenti": cerca_normativa(query),
            "richiedePubblicazione": richiede_pubblicazione(),
        }
    )


routes = [
    Route("/decisions", list_decisions, methods=["GET"]),
    Route("/normativa", list_normativa, methods=["GET"]),
]
