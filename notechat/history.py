"""
Chat transcripts in Markdown.

One file per conversation, named from its creation time, so saving the same
conversation again rewrites the same file.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from notechat.config import PROVIDER_NAMES
from notechat.conversation import ChatMessage, Conversation

logger = logging.getLogger(__name__)

TRANSCRIPT_SUFFIX = "_chat.md"
MESSAGE_SEPARATOR = "---"


def transcript_filename(conversation: Conversation) -> str:
    created = datetime.fromtimestamp(conversation.created_at)
    return created.strftime("%Y-%m-%d_%H-%M-%S") + TRANSCRIPT_SUFFIX


def _time(timestamp: Optional[float]) -> str:
    if timestamp is None:
        return ""
    return datetime.fromtimestamp(timestamp).strftime("%H:%M:%S")


def _message_lines(message: ChatMessage) -> list[str]:
    heading = "👤 User" if message.role == "user" else "🤖 Assistant"
    if message.role == "system":
        heading = "⚙️ System"
    stamp = _time(message.timestamp)

    lines = [f"### {heading} ({stamp})" if stamp else f"### {heading}", ""]
    if message.attached_note:
        lines.append(f"> 📎 Attached note: `{message.attached_note.path}`")
        lines.append("")
    lines.append(message.content)
    lines.append("")
    if message.error:
        lines.append(f"> ⚠️ Error: {message.error}")
        lines.append("")
    lines.append(MESSAGE_SEPARATOR)
    lines.append("")
    return lines


def render_transcript(conversation: Conversation) -> str:
    """
    Render a conversation as a Markdown transcript.
    """
    created = datetime.fromtimestamp(conversation.created_at)
    provider = PROVIDER_NAMES.get(conversation.provider, conversation.provider)

    lines = []
    lines.append("# Chat Session")
    lines.append("")
    lines.append(f"**Date:** {created.strftime('%Y-%m-%d %H:%M:%S')}")
    lines.append(f"**Provider:** {provider}")
    lines.append(f"**Model:** {conversation.model}")
    lines.append(f"**Session ID:** {conversation.id}")
    lines.append("")
    lines.append(MESSAGE_SEPARATOR)
    lines.append("")

    for message in conversation.messages:
        lines.extend(_message_lines(message))

    return "\n".join(lines)


class HistoryStore:
    """Transcript files under one directory (created on first save)."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def path_for(self, conversation: Conversation) -> Path:
        return self.directory / transcript_filename(conversation)

    def save(self, conversation: Conversation) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(conversation)
        path.write_text(render_transcript(conversation), encoding="utf-8")
        logger.debug("Saved transcript %s", path)
        return path

    def list_sessions(self) -> list[Path]:
        """Saved transcripts, newest first."""
        if not self.directory.is_dir():
            return []
        return sorted(
            self.directory.glob(f"*{TRANSCRIPT_SUFFIX}"),
            key=lambda p: p.name,
            reverse=True,
        )

    def delete_session(self, filename: str) -> bool:
        """Delete one transcript. Returns False when it does not exist."""
        path = self.directory / Path(filename).name
        if not path.exists():
            return False
        path.unlink()
        logger.debug("Deleted transcript %s", path)
        return True
