"""HTTP binding of the widget, training-status and webhook-test operations.

Public widget routes are addressed by the chatbot's public id. Workspace
routes trust the ``X-Workspace-Id`` header set by the auth layer in front of
this app.

Every request gets its own connection and services. The chat route keeps its
connection open until the streamed body has been fully sent (or the client
went away), so it manages the connection itself instead of using a
dependency.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import httpx
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from sitebot.config import SitebotConfig
from sitebot.errors import ChatRequestError, NotFoundError, SourceInputError
from sitebot.rag.responder import ChatRequest, ChatTurn
from sitebot.services import Services, build_services, open_db
from sitebot.webhooks.events import WebhookPayloadError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ChatMessageIn(_Body):
    role: str
    content: str


class ChatIn(_Body):
    chatbot_id: str = Field(alias="chatbotId")
    messages: list[ChatMessageIn]
    visitor_id: str | None = Field(default=None, alias="visitorId")
    conversation_id: str | None = Field(default=None, alias="conversationId")


class LeadIn(_Body):
    chatbot_id: str = Field(alias="chatbotId")
    conversation_id: str | None = Field(default=None, alias="conversationId")
    email: str | None = None
    name: str | None = None
    phone: str | None = None
    company: str | None = None


class EscalateIn(_Body):
    conversation_id: str = Field(alias="conversationId")
    email: str | None = None
    name: str | None = None
    reason: str | None = None


class EndIn(_Body):
    conversation_id: str = Field(alias="conversationId")


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def create_app(
    config: SitebotConfig | None = None,
    transport: httpx.BaseTransport | None = None,
) -> FastAPI:
    """Build the FastAPI app over the database named in *config*.

    *transport* is passed to the webhook dispatcher (tests use a MockTransport).
    """
    cfg = config or SitebotConfig()
    db_path = Path(cfg.database.path)
    open_db(db_path).close()  # create file and schema up front

    app = FastAPI(title="sitebot", docs_url=None, redoc_url=None)

    def _services() -> Services:
        return build_services(open_db(db_path), cfg, transport=transport)

    def get_services() -> Iterator[Services]:
        svc = _services()
        try:
            yield svc
        finally:
            svc.close()

    def require_workspace(x_workspace_id: str | None = Header(default=None)) -> str:
        if not x_workspace_id:
            raise HTTPException(status_code=401, detail="Unauthorized")
        return x_workspace_id

    _register_error_handlers(app)

    # ---- Widget ----

    @app.post("/api/widget/chat")
    def widget_chat(body: ChatIn) -> StreamingResponse:
        svc = _services()
        try:
            reply = svc.responder.respond(
                ChatRequest(
                    chatbot_public_id=body.chatbot_id,
                    messages=[ChatTurn(role=m.role, content=m.content) for m in body.messages],
                    visitor_id=body.visitor_id,
                    conversation_id=body.conversation_id,
                )
            )
        except Exception:
            svc.close()
            raise

        def _body() -> Iterator[str]:
            try:
                yield from reply.stream
            finally:
                reply.stream.close()
                svc.close()

        return StreamingResponse(
            _body(),
            media_type="text/plain; charset=utf-8",
            headers={"X-Conversation-Id": reply.conversation_id},
        )

    @app.get("/api/widget/config/{public_id}")
    def widget_config(public_id: str, svc: Services = Depends(get_services)) -> dict:
        settings = svc.responder.widget_config(public_id)
        return {
            "publicId": settings.public_id,
            "name": settings.name,
            "welcomeMessage": settings.welcome_message,
        }

    @app.post("/api/widget/lead")
    def widget_lead(body: LeadIn, svc: Services = Depends(get_services)) -> dict:
        svc.responder.capture_lead(
            body.chatbot_id,
            email=body.email,
            name=body.name,
            phone=body.phone,
            company=body.company,
            conversation_id=body.conversation_id,
        )
        return {"success": True}

    @app.post("/api/widget/escalate")
    def widget_escalate(body: EscalateIn, svc: Services = Depends(get_services)) -> dict:
        conversation = svc.responder.escalate(
            body.conversation_id, email=body.email, name=body.name, reason=body.reason
        )
        return {"success": True, "status": conversation.status.value}

    @app.post("/api/widget/end")
    def widget_end(body: EndIn, svc: Services = Depends(get_services)) -> dict:
        conversation = svc.responder.end_conversation(body.conversation_id)
        return {"success": True, "status": conversation.status.value}

    # ---- Workspace ----

    @app.get("/api/training/{chatbot_id}/status")
    def training_status(
        chatbot_id: str,
        workspace_id: str = Depends(require_workspace),
        svc: Services = Depends(get_services),
    ) -> dict:
        return svc.pipeline.training_status(chatbot_id, workspace_id).to_dict()

    @app.post("/api/webhooks/{endpoint_id}/test")
    def webhook_test(
        endpoint_id: str,
        workspace_id: str = Depends(require_workspace),
        svc: Services = Depends(get_services),
    ) -> dict:
        outcome = svc.dispatcher.send_test(endpoint_id, workspace_id)
        return {
            "success": outcome.success,
            "statusCode": outcome.status_code,
            "responseTime": outcome.response_time_ms,
            "error": outcome.error,
        }

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    return app


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"error": str(exc)})

    async def _bad_request(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    for exc_type in (ChatRequestError, SourceInputError, WebhookPayloadError):
        app.add_exception_handler(exc_type, _bad_request)

    @app.exception_handler(HTTPException)
    async def _http(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def _invalid(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": "Invalid request body"})

    @app.exception_handler(Exception)
    async def _internal(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
