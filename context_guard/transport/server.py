"""HTTP surface: FastAPI app exposing turn handling and thread lifecycle.

The chat transport (a bot, a web UI) posts each inbound message here and
delivers the returned chunks; thread deletion notifications cascade cleanup.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..config import load_config
from ..controller import SessionController
from ..types import ContextGuardConfig, StoreError
from .chunking import split_response_into_chunks

logger = logging.getLogger(__name__)


def create_app(
    config_path: str | None = None,
    *,
    controller: SessionController | None = None,
    config: ContextGuardConfig | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        config_path: Path to a context-guard config file (auto-discovered if None).
        controller: Use an existing controller instead of wiring one from config.
        config: Use this config instead of loading one.
    """
    if controller is None:
        config = config or load_config(config_path)
        controller = SessionController.from_config(config)
    display_limit = controller.config.response.display_limit

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        await controller.start()
        try:
            yield
        finally:
            await controller.aclose()

    app = FastAPI(title="context-guard", lifespan=lifespan)
    app.state.controller = controller

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/stats")
    async def stats():
        return controller.metrics.snapshot()

    @app.post("/threads/{thread_id}/messages")
    async def post_message(thread_id: str, request: Request):
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return JSONResponse({"error": "Body must be JSON"}, status_code=400)
        if not isinstance(body, dict):
            return JSONResponse({"error": "Body must be a JSON object"}, status_code=400)

        message = body.get("message")
        if not isinstance(message, str) or not message.strip():
            return JSONResponse({"error": "Missing 'message' field"}, status_code=400)

        response = await controller.handle_turn(
            thread_id,
            message,
            turn_id=body.get("turn_id") or None,
            topic=body.get("topic") or "",
        )
        return {
            "thread_id": thread_id,
            "response": response,
            "chunks": split_response_into_chunks(response, display_limit),
        }

    @app.delete("/threads/{thread_id}")
    async def delete_thread(thread_id: str):
        failed = await controller.on_thread_deleted(thread_id)
        return {"thread_id": thread_id, "deleted": not failed, "failed": failed}

    @app.get("/threads/{thread_id}/history")
    async def get_history(thread_id: str):
        try:
            entries = await controller.history.read(thread_id)
            summary = await controller.summaries.get(thread_id)
        except StoreError as e:
            logger.warning("History lookup failed for thread %s: %s", thread_id, e)
            return JSONResponse({"error": "store unavailable"}, status_code=503)
        return {
            "thread_id": thread_id,
            "history": [m.to_dict() for m in entries],
            "summary": summary,
        }

    return app
