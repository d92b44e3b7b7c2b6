"""
Prompt commands that stream their answer straight into a document.

While a command runs, a placeholder marks the insertion point; the first
delta replaces it and later deltas append. A failed run restores the
document as it was.
"""

import logging
from pathlib import Path
from typing import Callable, Optional

from notechat.adapters import ProviderAdapter, StreamCallbacks, StreamHandle
from notechat.adapters.schema import GenerationOptions
from notechat.config import DEFAULT_COMMAND_TEMPERATURE, GENERATING_PLACEHOLDER, PromptCommand

logger = logging.getLogger(__name__)


class DocumentInsertion:
    """Streams text into a file at a fixed character offset."""

    def __init__(self, path: str | Path, offset: Optional[int] = None):
        self.path = Path(path)
        self.original = self.path.read_text(encoding="utf-8")
        if offset is None or offset > len(self.original):
            offset = len(self.original)
        self.offset = max(offset, 0)
        self.inserted = ""
        self.error: Optional[Exception] = None
        self._started = False

    @property
    def text(self) -> str:
        """Document content as it currently stands, placeholder included."""
        middle = self.inserted if self._started else GENERATING_PLACEHOLDER
        return self.original[: self.offset] + middle + self.original[self.offset :]

    def begin(self) -> None:
        self._write(self.text)

    def on_token(self, token: str) -> None:
        self._started = True
        self.inserted += token
        self._write(self.text)

    def on_complete(self, full_text: str) -> None:
        self.inserted = full_text
        self._started = True
        self._write(self.text)
        logger.info("Inserted %d chars into %s", len(full_text), self.path)

    def on_error(self, error: Exception) -> None:
        self.error = error
        self._write(self.original)
        logger.warning("Command failed, %s restored: %s", self.path, error)

    def callbacks(self, on_token: Optional[Callable[[str], None]] = None) -> StreamCallbacks:
        """Callbacks that drive this insertion, with an optional token tap."""
        def token(delta: str) -> None:
            self.on_token(delta)
            if on_token is not None:
                on_token(delta)

        return StreamCallbacks(
            on_token=token, on_complete=self.on_complete, on_error=self.on_error
        )

    def _write(self, content: str) -> None:
        self.path.write_text(content, encoding="utf-8")


def build_prompt(command: PromptCommand, text: str) -> str:
    return f"{command.prompt}\n\n{text}"


def run_command(
    adapter: ProviderAdapter,
    command: PromptCommand,
    document: str | Path,
    selection: Optional[str] = None,
    model: Optional[str] = None,
    offset: Optional[int] = None,
    on_token: Optional[Callable[[str], None]] = None,
) -> tuple[StreamHandle, DocumentInsertion]:
    """
    Run a prompt command over a selection (or the whole document).

    The answer goes at `offset`, defaulting to just after the selection
    when it appears in the document, else the end of the document.
    Must be called on a running event loop.
    """
    insertion = DocumentInsertion(document, offset)
    source = selection if selection else insertion.original
    if offset is None and selection:
        found = insertion.original.find(selection)
        if found >= 0:
            insertion.offset = found + len(selection)

    temperature = command.temperature
    if temperature is None:
        temperature = DEFAULT_COMMAND_TEMPERATURE
    options = GenerationOptions(temperature=temperature)

    insertion.begin()
    logger.info("Running command %r on %s", command.name, insertion.path)
    handle = adapter.stream_generate(
        build_prompt(command, source),
        model or command.model,
        insertion.callbacks(on_token),
        options,
    )
    return handle, insertion
