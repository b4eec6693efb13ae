from __future__ import annotations

import structlog
from fastapi import APIRouter
from fastapi.responses import PlainTextResponse


router = APIRouter(tags=["hello"])


@router.get("/", response_class=PlainTextResponse)
async def hello() -> str:
    structlog.get_logger("app").info("Hello World endpoint was called")
    return "Hello World!"
