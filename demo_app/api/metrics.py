from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import Response

from demo_app.observability.metrics import MetricsRegistry


router = APIRouter(tags=["metrics"])


@router.get("/metrics", include_in_schema=False)
async def metrics(request: Request) -> Response:
    registry: MetricsRegistry = request.app.state.metrics
    return Response(content=registry.render(), media_type=registry.content_type)
