"""
Chat session: the conversation state behind the chat surface.

Owns the Conversation, enforces one in-flight generation at a time, folds
attached notes into the history sent to the provider, and mirrors streamed
deltas into the assistant message.
"""

import logging
import time
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional

from pydantic import BaseModel, Field

from notechat.adapters import StreamCallbacks, StreamHandle
from notechat.adapters.schema import GenerationOptions, Message
from notechat.config import Settings
from notechat.registry import ProviderRegistry

if TYPE_CHECKING:
    from notechat.history import HistoryStore

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


class NoteAttachment(BaseModel):
    """A note whose content is sent alongside a user message."""
    path: str
    content: str


class ChatMessage(Message):
    """A message as shown in the chat, with UI state."""
    id: str = Field(default_factory=_new_id)
    attached_note: Optional[NoteAttachment] = None
    is_streaming: bool = False
    error: Optional[str] = None

    def to_provider_message(self) -> Message:
        """The message as the model sees it (attached note folded in)."""
        content = self.content
        if self.attached_note:
            note = self.attached_note
            content = f"[Note: {note.path}]\n{note.content}\n\n{self.content}"
        return Message(role=self.role, content=content, timestamp=self.timestamp)


class Conversation(BaseModel):
    """Ordered messages plus the provider/model they were sent to."""
    id: str = Field(default_factory=_new_id)
    title: str = "New Chat"
    messages: list[ChatMessage] = []
    model: str = ""
    provider: str = ""
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)

    @property
    def streaming_message(self) -> Optional[ChatMessage]:
        for message in self.messages:
            if message.is_streaming:
                return message
        return None

    def add(self, message: ChatMessage) -> ChatMessage:
        self.messages.append(message)
        self.updated_at = time.time()
        return message


class ChatSession:
    """
    Drives one chat view.

    At most one generation runs at a time; send() while generating is
    ignored. Terminal callbacks finalize the assistant message and, when
    enabled, save the transcript.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        settings: Optional[Settings] = None,
        history: Optional["HistoryStore"] = None,
    ):
        self.registry = registry
        self.settings = settings or Settings()
        self.history = history
        self.models: list[str] = []
        self._attachment: Optional[NoteAttachment] = None
        self._handle: Optional[StreamHandle] = None
        self._pending: Optional[ChatMessage] = None
        self.conversation = self._create_conversation()

    @property
    def is_generating(self) -> bool:
        return self._handle is not None

    @property
    def attachment(self) -> Optional[NoteAttachment]:
        return self._attachment

    def _create_conversation(self) -> Conversation:
        provider = self.registry.active_provider()
        return Conversation(
            model=self.models[0] if self.models else provider.default_model,
            provider=self.registry.active_provider_id,
        )

    def new_conversation(self) -> Conversation:
        """Cancel anything in flight and start an empty conversation."""
        self.cancel()
        # The cancelled stream still finalizes its own conversation
        self._handle = None
        self._pending = None
        self._attachment = None
        self.conversation = self._create_conversation()
        return self.conversation

    # ─────────────────────────────────────────────────────────────────
    # SELECTION
    # ─────────────────────────────────────────────────────────────────

    def select_provider(self, provider_id: str) -> None:
        self.registry.set_active_provider(provider_id)
        self.conversation.provider = self.registry.active_provider_id

    def select_model(self, model: str) -> None:
        self.conversation.model = model

    async def refresh_models(self) -> list[str]:
        """Populate the model list for the active provider; select the first."""
        self.models = await self.registry.active_provider().list_models()
        if self.models:
            self.conversation.model = self.models[0]
        return self.models

    # ─────────────────────────────────────────────────────────────────
    # ATTACHMENTS
    # ─────────────────────────────────────────────────────────────────

    def attach_note(self, path: str) -> NoteAttachment:
        """Read a note and hold it for the next message."""
        content = Path(path).read_text(encoding="utf-8")
        self._attachment = NoteAttachment(path=str(path), content=content)
        return self._attachment

    def detach_note(self) -> None:
        self._attachment = None

    # ─────────────────────────────────────────────────────────────────
    # GENERATION
    # ─────────────────────────────────────────────────────────────────

    def options(self) -> GenerationOptions:
        return GenerationOptions(
            temperature=self.settings.chat_temperature,
            max_tokens=self.settings.chat_max_tokens,
            system_prompt=self.settings.chat_system_prompt or None,
        )

    def send(
        self, text: str, on_token: Optional[Callable[[str], None]] = None
    ) -> Optional[StreamHandle]:
        """
        Send a user message and start streaming the reply.

        `on_token` additionally receives each delta as it arrives.

        Returns None (and does nothing) for blank text or while a
        generation is already running. Must be called on a running loop.
        """
        text = text.strip()
        if not text or self.is_generating:
            return None

        conversation = self.conversation
        conversation.add(ChatMessage(
            role="user",
            content=text,
            timestamp=time.time(),
            attached_note=self._attachment,
        ))
        self._attachment = None

        history = [m.to_provider_message() for m in conversation.messages]
        assistant = conversation.add(ChatMessage(
            role="assistant", content="", timestamp=time.time(), is_streaming=True,
        ))

        def token(delta: str) -> None:
            assistant.content += delta
            if on_token is not None:
                on_token(delta)

        def on_complete(full_text: str) -> None:
            assistant.content = full_text
            self._finish(conversation, assistant)

        def on_error(error: Exception) -> None:
            # Partial content stays visible; the error is shown beside it
            assistant.error = str(error)
            self._finish(conversation, assistant)

        self._pending = assistant
        provider = self.registry.active_provider()
        conversation.provider = provider.id
        logger.info("Sending to %s/%s", provider.id, conversation.model)
        self._handle = provider.stream_chat(
            history,
            conversation.model or None,
            StreamCallbacks(on_token=token, on_complete=on_complete, on_error=on_error),
            self.options(),
        )
        return self._handle

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()

    def _finish(self, conversation: Conversation, assistant: ChatMessage) -> None:
        assistant.is_streaming = False
        conversation.updated_at = time.time()
        if self._pending is assistant:
            self._handle = None
            self._pending = None
        if self.settings.save_history and self.history is not None:
            try:
                self.history.save(conversation)
            except OSError as e:
                logger.error("Failed to save chat history: %s", e)
