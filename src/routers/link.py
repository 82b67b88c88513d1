"""Inbound endpoint for the HTTP link transport."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, HTTPException

from src.dependencies import Runtime, http_error
from src.workouts.errors import WorkoutError
from src.workouts.link.http_transport import HttpLinkTransport

router = APIRouter(prefix="/link", tags=["link"])
logger = logging.getLogger("pacelink.link.router")


@router.get("/ping")
async def ping(runtime: Runtime) -> dict:
    return {"status": "ok", "role": runtime.role}


@router.post("/messages")
async def receive_message(runtime: Runtime, data: dict[str, Any] = Body(...)) -> Any:
    """Accept a flat wire map from the peer; requests are answered in the response."""
    transport = runtime.transport
    if not isinstance(transport, HttpLinkTransport):
        raise HTTPException(status_code=409, detail="This device is not linked over HTTP")
    try:
        reply = await transport.receive(data)
    except WorkoutError as exc:
        logger.warning("Inbound link message failed: %s", exc)
        raise http_error(exc) from exc
    return reply if reply is not None else {"status": "accepted"}
