"""Retrieval-augmented chat responder.

One visitor turn:
  1. Resolve the conversation (reuse a valid one, else create it).
  2. Persist the USER message before anything else can fail.
  3. Retrieve up to top_k chunks from the chatbot's included sources.
     Embedding/store failures degrade to an empty context.
  4. Build the system prompt (custom or default persona + knowledge block).
  5. Stream the model's answer; the full text is persisted as one ASSISTANT
     message when the stream ends, fails, or is closed by the client.

The conversation id is available on the returned ``ChatReply`` before the
first token is produced, so HTTP callers can put it in a response header.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterator
from dataclasses import dataclass

from sitebot.db.models import (
    Chatbot,
    ChatbotStatus,
    Conversation,
    ConversationStatus,
    Message,
    MessageRole,
)
from sitebot.db.repository import Repository
from sitebot.db.vector_store import VectorStore, VectorStoreError
from sitebot.errors import ChatRequestError, NotFoundError
from sitebot.rag.embeddings import EmbeddingClient, EmbeddingError
from sitebot.rag.llm_client import stream_chat
from sitebot.rag.prompts import APOLOGY_MESSAGE, build_system_prompt
from sitebot.rag.retriever import DEFAULT_TOP_K, retrieve_context
from sitebot.webhooks.dispatcher import WebhookDispatcher
from sitebot.webhooks.events import (
    ConversationEndedData,
    ConversationNewData,
    EscalationRequestedData,
    LeadCapturedData,
    LeadInfo,
    TranscriptMessage,
    WebhookEventType,
    utc_timestamp,
)

logger = logging.getLogger(__name__)

DEFAULT_WELCOME_MESSAGE = "Hi! How can I help you today?"
DEFAULT_ESCALATION_REASON = "Visitor requested human support"
ESCALATION_TRANSCRIPT_LIMIT = 30

StreamFn = Callable[..., Iterator[str]]


@dataclass
class ChatTurn:
    role: str
    content: str


@dataclass
class ChatRequest:
    chatbot_public_id: str
    messages: list[ChatTurn]
    visitor_id: str | None = None
    conversation_id: str | None = None


@dataclass
class ChatReply:
    """Result of ``ChatResponder.respond``; iterate ``stream`` for the answer text."""

    conversation_id: str
    stream: Iterator[str]
    new_conversation: bool = False


@dataclass
class WidgetConfig:
    public_id: str
    name: str
    welcome_message: str = DEFAULT_WELCOME_MESSAGE


class ChatResponder:
    """Answer visitor messages for active chatbots.

    Args:
        repo:        Repository for chatbots, conversations and messages.
        store:       Vector store holding the chunk embeddings.
        embedder:    Client used to embed the visitor's latest message.
        dispatcher:  Webhook dispatcher for conversation/lead/escalation events.
        model:       LiteLLM chat model string.
        temperature: Sampling temperature for the answer.
        max_tokens:  Output token cap for the answer.
        top_k:       Number of chunks injected as context.
        stream_fn:   Streaming completion function (``stream_chat`` signature).
    """

    def __init__(
        self,
        repo: Repository,
        store: VectorStore,
        embedder: EmbeddingClient,
        dispatcher: WebhookDispatcher,
        model: str = "openai/gpt-4o-mini",
        temperature: float = 0.7,
        max_tokens: int = 1024,
        top_k: int = DEFAULT_TOP_K,
        stream_fn: StreamFn = stream_chat,
    ) -> None:
        self._repo = repo
        self._store = store
        self._embedder = embedder
        self._dispatcher = dispatcher
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.top_k = top_k
        self._stream_fn = stream_fn

    # ------------------------------------------------------------------
    # Chat turn
    # ------------------------------------------------------------------

    def respond(self, request: ChatRequest) -> ChatReply:
        """Resolve the conversation, store the question and retrieve context; return the reply stream.

        Raises:
            ChatRequestError: No messages, or the last message is not a
                non-blank user message.
            NotFoundError: Unknown or inactive chatbot.
        """
        question = _latest_user_question(request.messages)
        chatbot = self._repo.get_chatbot_by_public_id(request.chatbot_public_id)
        if chatbot is None or chatbot.status != ChatbotStatus.ACTIVE:
            raise NotFoundError("Chatbot not found or inactive")

        conversation, created = self._resolve_conversation(chatbot, request)
        announcement = None
        if created:
            announcement = ConversationNewData(
                chatbot_id=chatbot.id,
                conversation_id=conversation.id,
                visitor_id=conversation.visitor_id,
                started_at=utc_timestamp(),
            )
        self._repo.add_message(
            Message(
                id=str(uuid.uuid4()),
                conversation_id=conversation.id,
                role=MessageRole.USER,
                content=question,
            )
        )

        context = self._retrieve(question, chatbot)
        system_prompt = build_system_prompt(chatbot.system_prompt, context)
        model_messages = [{"role": "system", "content": system_prompt}]
        model_messages.extend(
            {"role": turn.role.lower(), "content": turn.content}
            for turn in request.messages
            if turn.role.lower() in ("user", "assistant")
        )
        return ChatReply(
            conversation_id=conversation.id,
            stream=self._stream(
                conversation.id, model_messages, chatbot.workspace_id, announcement
            ),
            new_conversation=created,
        )

    def _resolve_conversation(
        self, chatbot: Chatbot, request: ChatRequest
    ) -> tuple[Conversation, bool]:
        if request.conversation_id:
            existing = self._repo.get_conversation(request.conversation_id)
            if (
                existing is not None
                and existing.chatbot_id == chatbot.id
                and existing.status != ConversationStatus.RESOLVED
            ):
                return existing, False

        conversation = Conversation(
            id=str(uuid.uuid4()),
            chatbot_id=chatbot.id,
            visitor_id=request.visitor_id or f"visitor_{uuid.uuid4()}",
        )
        self._repo.add_conversation(conversation)
        return conversation, True

    def _retrieve(self, question: str, chatbot: Chatbot) -> str:
        try:
            found = retrieve_context(
                question, chatbot.id, self._repo, self._store, self._embedder, top_k=self.top_k
            )
        except (EmbeddingError, VectorStoreError) as exc:
            logger.warning(
                "Retrieval failed for chatbot %s; answering without context: %s", chatbot.id, exc
            )
            return ""
        return found.text

    def _stream(
        self,
        conversation_id: str,
        messages: list[dict],
        workspace_id: str,
        announcement: ConversationNewData | None,
    ) -> Iterator[str]:
        """Yield the answer, then persist it and announce a new conversation.

        CONVERSATION_NEW goes out once the reply has been streamed so webhook
        latency never delays the first token.
        """
        parts: list[str] = []
        model_stream: Iterator[str] | None = None
        try:
            try:
                model_stream = self._stream_fn(
                    self.model,
                    messages,
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                )
                for delta in model_stream:
                    parts.append(delta)
                    yield delta
            except Exception:
                logger.exception("Model stream failed for conversation %s", conversation_id)
                apology = APOLOGY_MESSAGE if not parts else "\n\n" + APOLOGY_MESSAGE
                parts.append(apology)
                yield apology
        finally:
            # Runs on completion, on failure and when the client closes us early.
            close = getattr(model_stream, "close", None)
            if callable(close):
                close()
            self._persist_reply(conversation_id, "".join(parts))
            if announcement is not None:
                self._notify(workspace_id, WebhookEventType.CONVERSATION_NEW, announcement)

    def _persist_reply(self, conversation_id: str, text: str) -> None:
        if not text:
            return
        try:
            self._repo.add_message(
                Message(
                    id=str(uuid.uuid4()),
                    conversation_id=conversation_id,
                    role=MessageRole.ASSISTANT,
                    content=text,
                )
            )
        except Exception:
            logger.exception("Failed to save assistant message for conversation %s", conversation_id)

    # ------------------------------------------------------------------
    # Widget side-channels
    # ------------------------------------------------------------------

    def widget_config(self, public_id: str) -> WidgetConfig:
        chatbot = self._repo.get_chatbot_by_public_id(public_id)
        if chatbot is None or chatbot.status != ChatbotStatus.ACTIVE:
            raise NotFoundError("Chatbot not found or inactive")
        return WidgetConfig(
            public_id=chatbot.public_id,
            name=chatbot.name,
            welcome_message=chatbot.welcome_message or DEFAULT_WELCOME_MESSAGE,
        )

    def capture_lead(
        self,
        chatbot_public_id: str,
        email: str | None = None,
        name: str | None = None,
        phone: str | None = None,
        company: str | None = None,
        conversation_id: str | None = None,
    ) -> None:
        """Store visitor contact details and notify LEAD_CAPTURED subscribers.

        Raises:
            ChatRequestError: Neither email nor phone given.
            NotFoundError: Unknown chatbot, or a conversation of another chatbot.
        """
        if not (email or phone):
            raise ChatRequestError("At least email or phone is required")
        chatbot = self._repo.get_chatbot_by_public_id(chatbot_public_id)
        if chatbot is None:
            raise NotFoundError("Chatbot not found")

        if conversation_id:
            conversation = self._repo.get_conversation(conversation_id)
            if conversation is None or conversation.chatbot_id != chatbot.id:
                raise NotFoundError(f"Conversation '{conversation_id}' not found")
            self._repo.update_conversation_lead(
                conversation_id,
                email=email or None,
                name=name or None,
                phone=phone or None,
                company=company or None,
            )

        self._notify(
            chatbot.workspace_id,
            WebhookEventType.LEAD_CAPTURED,
            LeadCapturedData(
                chatbot_id=chatbot.id,
                chatbot_name=chatbot.name,
                conversation_id=conversation_id or None,
                lead=LeadInfo(email=email, name=name, phone=phone, company=company),
                captured_at=utc_timestamp(),
            ),
        )

    def escalate(
        self,
        conversation_id: str,
        email: str | None = None,
        name: str | None = None,
        reason: str | None = None,
    ) -> Conversation:
        """Hand the conversation to a human: status ESCALATED + transcript webhook."""
        conversation, chatbot = self._require_conversation(conversation_id)
        self._repo.set_conversation_status(conversation_id, ConversationStatus.ESCALATED)
        self._repo.update_conversation_lead(conversation_id, email=email or None, name=name or None)

        transcript = self._repo.list_messages(conversation_id, limit=ESCALATION_TRANSCRIPT_LIMIT)
        self._notify(
            chatbot.workspace_id,
            WebhookEventType.ESCALATION_REQUESTED,
            EscalationRequestedData(
                chatbot_id=chatbot.id,
                chatbot_name=chatbot.name,
                conversation_id=conversation.id,
                visitor_id=conversation.visitor_id,
                visitor_email=email or None,
                visitor_name=name or None,
                reason=reason or DEFAULT_ESCALATION_REASON,
                messages=[
                    TranscriptMessage(role=m.role.value, content=m.content, created_at=m.created_at)
                    for m in transcript
                ],
            ),
        )
        return self._repo.get_conversation(conversation_id) or conversation

    def end_conversation(self, conversation_id: str) -> Conversation:
        """Mark the conversation RESOLVED. Ending it twice notifies only once."""
        conversation, chatbot = self._require_conversation(conversation_id)
        if conversation.status == ConversationStatus.RESOLVED:
            return conversation

        self._repo.set_conversation_status(
            conversation_id, ConversationStatus.RESOLVED, ended=True
        )
        self._notify(
            chatbot.workspace_id,
            WebhookEventType.CONVERSATION_ENDED,
            ConversationEndedData(
                chatbot_id=chatbot.id,
                conversation_id=conversation.id,
                visitor_id=conversation.visitor_id,
                message_count=len(self._repo.list_messages(conversation_id)),
                ended_at=utc_timestamp(),
            ),
        )
        return self._repo.get_conversation(conversation_id) or conversation

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_conversation(self, conversation_id: str) -> tuple[Conversation, Chatbot]:
        conversation = self._repo.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        chatbot = self._repo.get_chatbot(conversation.chatbot_id)
        if chatbot is None:
            raise NotFoundError("Chatbot not found")
        return conversation, chatbot

    def _notify(self, workspace_id: str, event_type: WebhookEventType, data) -> None:
        try:
            self._dispatcher.dispatch(workspace_id, event_type, data)
        except Exception:
            logger.exception("Webhook dispatch of %s failed", event_type.value)


def _latest_user_question(messages: list[ChatTurn]) -> str:
    if not messages:
        raise ChatRequestError("messages array is required")
    last = messages[-1]
    if last.role.lower() != "user" or not last.content.strip():
        raise ChatRequestError("The last message must be a non-empty user message")
    return last.content
