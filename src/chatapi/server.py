from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from resolution.answerer import compose_emergency
from resolution.config import ServiceSettings, configure_logging, load_settings
from resolution.errors import ConfigStoreError
from resolution.pipeline import ResolutionPipeline, build_pipeline

from .commands import (
    ChatCommand,
    CommandDispatcher,
    ConversationStateQuery,
    HoursStatusCommand,
    QAMatchCommand,
    StartConversationCommand,
)

logger = logging.getLogger(__name__)

VALIDATION_ERRORS = {
    "/chat": "Message and conversationId are required",
    "/chat/qa-match": "Message is required",
}


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ChatRequest(_Request):
    message: Optional[str] = None
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    organization_id: Optional[str] = Field(default=None, alias="organizationId")


class StartRequest(_Request):
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    organization_id: Optional[str] = Field(default=None, alias="organizationId")


class QAMatchRequest(_Request):
    message: Optional[str] = None
    organization_id: Optional[str] = Field(default=None, alias="organizationId")


def _ok(data: Dict[str, Any]) -> Dict[str, Any]:
    return {"success": True, "data": data}


def _fail(status_code: int, error: str, data: Optional[Dict[str, Any]] = None) -> JSONResponse:
    body: Dict[str, Any] = {"success": False, "error": error}
    if data is not None:
        body["data"] = data
    return JSONResponse(status_code=status_code, content=body)


def create_app(
    settings: Optional[ServiceSettings] = None,
    pipeline: Optional[ResolutionPipeline] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    if pipeline is None:
        settings = settings or load_settings(os.getenv("CHATBOT_CONFIG"))
        configure_logging(settings.log_level)
        pipeline = build_pipeline(settings)

    dispatcher = CommandDispatcher(pipeline, clock=clock)

    app = FastAPI(title="Chatbot response resolution")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.pipeline = pipeline
    app.state.dispatcher = dispatcher

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.debug("Rejected request to %s: %s", request.url.path, exc.errors())
        return _fail(400, VALIDATION_ERRORS.get(request.url.path, "Invalid request body"))

    @app.post("/chat")
    async def chat(body: ChatRequest) -> Any:
        message = (body.message or "").strip()
        conversation_id = (body.conversation_id or "").strip()
        if not message or not conversation_id:
            return _fail(400, "Message and conversationId are required")
        command = ChatCommand(message, conversation_id, body.organization_id)
        try:
            return _ok(await dispatcher.dispatch(command))
        except ConfigStoreError:
            logger.exception("Bot configuration unavailable for %s", body.organization_id)
            return _fail(500, "Failed to process chat message")
        except Exception:
            logger.exception("Chat resolution failed for %s", conversation_id)
            return _fail(200, "Failed to process chat message", compose_emergency().to_dict())

    @app.post("/chat/start")
    async def start(body: Optional[StartRequest] = None) -> Any:
        if body is None:
            body = StartRequest()
        command = StartConversationCommand((body.conversation_id or "").strip() or None, body.organization_id)
        try:
            return _ok(await dispatcher.dispatch(command))
        except ConfigStoreError:
            logger.exception("Bot configuration unavailable for %s", body.organization_id)
            return _fail(500, "Failed to start conversation")

    @app.post("/chat/qa-match")
    async def qa_match(body: QAMatchRequest) -> Any:
        message = (body.message or "").strip()
        if not message:
            return _fail(400, "Message is required")
        try:
            return _ok(await dispatcher.dispatch(QAMatchCommand(message, body.organization_id)))
        except ConfigStoreError:
            logger.exception("Bot configuration unavailable for %s", body.organization_id)
            return _fail(500, "Failed to process QA match")

    @app.get("/operating-hours/status")
    async def hours_status(
        org: Optional[str] = None,
        organization_id: Optional[str] = Query(default=None),
    ) -> Any:
        organization = org or organization_id
        try:
            return _ok(await dispatcher.dispatch(HoursStatusCommand(organization)))
        except ConfigStoreError:
            logger.exception("Bot configuration unavailable for %s", organization)
            return _fail(500, "Failed to check operating hours status")

    @app.get("/conversations/{conversation_id}")
    async def conversation_state(conversation_id: str) -> Any:
        data = await dispatcher.dispatch(ConversationStateQuery(conversation_id))
        if data is None:
            return _fail(404, "Conversation not found")
        return _ok(data)

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {
            "status": "ok",
            "bots": pipeline.config_store.organizations(),
            "aiEnabled": pipeline.ai_responder is not None,
        }

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "9000")))
