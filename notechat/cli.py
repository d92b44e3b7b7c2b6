"""CLI entry point for notechat.

Chat with any configured provider from the terminal, run prompt commands
over note files, and manage saved transcripts. Same session internals as
the editor integration.

Entry point:
    notechat providers [--json]
    notechat models [--provider ID] [--json]
    notechat chat "question" [--attach note.md] [--provider ID] [--model M]
    notechat generate "prompt" [--provider ID] [--model M]
    notechat run-command Summarize --file note.md [--offset N]
    notechat history [--delete FILENAME]
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from notechat.adapters import RequestError, StreamHandle
from notechat.adapters.schema import GenerationOptions
from notechat.config import Settings, load_settings

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────
# ARGUMENT PARSING
# ─────────────────────────────────────────────────────────────────────


def _add_provider_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--provider", default=None, help="Provider ID (default: active provider)")
    parser.add_argument("--model", default=None, help="Model ID (default: provider default)")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="notechat",
        description="Multi-provider LLM chat for your notes.",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )
    parser.add_argument("--config", default=None, help="Settings file (default: ./notechat.yaml)")
    sub = parser.add_subparsers(dest="command")

    # providers
    providers_p = sub.add_parser("providers", help="List providers and availability")
    providers_p.add_argument("--json", action="store_true", dest="json_output", help="JSON output")

    # models
    models_p = sub.add_parser("models", help="List models for a provider")
    models_p.add_argument("--provider", default=None, help="Provider ID (default: active provider)")
    models_p.add_argument("--json", action="store_true", dest="json_output", help="JSON output")

    # chat
    chat_p = sub.add_parser("chat", help="Ask a question, streaming the answer")
    chat_p.add_argument("prompt", help="Message to send")
    _add_provider_args(chat_p)
    chat_p.add_argument("--attach", default=None, help="Note file sent along with the message")
    chat_p.add_argument("--system", default=None, help="System prompt override")
    chat_p.add_argument("--temperature", type=float, default=None, help="Sampling temperature (0-1)")
    chat_p.add_argument("--max-tokens", type=int, default=None, help="Max tokens in the answer")
    chat_p.add_argument("--no-history", action="store_true", help="Do not save a transcript")

    # generate
    gen_p = sub.add_parser("generate", help="One-shot completion, printed when done")
    gen_p.add_argument("prompt", help="Prompt text")
    _add_provider_args(gen_p)
    gen_p.add_argument("--system", default=None, help="System prompt")
    gen_p.add_argument("--temperature", type=float, default=None, help="Sampling temperature (0-1)")
    gen_p.add_argument("--max-tokens", type=int, default=None, help="Max tokens in the answer")

    # run-command
    cmd_p = sub.add_parser("run-command", help="Stream a prompt command into a note")
    cmd_p.add_argument("name", help="Command name (e.g. Summarize)")
    cmd_p.add_argument("--file", required=True, help="Note file to read and insert into")
    cmd_p.add_argument("--offset", type=int, default=None, help="Insertion offset (default: end)")
    cmd_p.add_argument("--selection", default=None, help="Text to run on (default: whole note)")
    _add_provider_args(cmd_p)

    # history
    history_p = sub.add_parser("history", help="List or delete saved transcripts")
    history_p.add_argument("--delete", default=None, metavar="FILENAME", help="Transcript to delete")

    return parser


# ─────────────────────────────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────────────────────────────


def _registry(settings: Settings, provider: Optional[str] = None):
    from notechat.registry import ProviderRegistry

    return ProviderRegistry(settings.providers, active_provider=provider or settings.active_provider)


def _adapter(settings: Settings, provider: Optional[str]):
    """Adapter for an explicit provider, or the active one. None if not configured."""
    registry = _registry(settings, provider)
    if provider is None:
        return registry.active_provider()
    adapter = registry.get(provider)
    if adapter is None:
        print(f"Error: provider not configured: {provider}", file=sys.stderr)
    return adapter


def _echo(token: str) -> None:
    sys.stdout.write(token)
    sys.stdout.flush()


async def _wait_interruptible(handle: StreamHandle) -> str:
    """Wait for a stream; Ctrl-C cancels it instead of killing the process."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, handle.cancel)
    except NotImplementedError:
        pass  # Windows: default KeyboardInterrupt behaviour
    try:
        return await handle.wait()
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass


# ─────────────────────────────────────────────────────────────────────
# COMMANDS
# ─────────────────────────────────────────────────────────────────────


async def _cmd_providers(settings: Settings, json_output: bool = False) -> int:
    """List providers and whether they are usable. Returns exit code."""
    registry = _registry(settings)
    info = registry.provider_info()

    if json_output:
        result = {
            "active": registry.active_provider_id,
            "providers": [
                {"id": p.id, "name": p.name, "available": p.available} for p in info
            ],
        }
        json.dump(result, sys.stdout, indent=2)
        sys.stdout.write("\n")
    else:
        for p in info:
            marker = "*" if p.id == registry.active_provider_id else " "
            status = "available" if p.available else "not configured"
            print(f"{marker} {p.id:<10} {p.name}  ({status})")

    return 0


async def _cmd_models(
    settings: Settings, provider: Optional[str] = None, json_output: bool = False
) -> int:
    """List models for one provider. Returns exit code."""
    adapter = _adapter(settings, provider)
    if adapter is None:
        return 1

    models = await adapter.list_models()

    if json_output:
        json.dump({"provider": adapter.id, "models": models}, sys.stdout, indent=2)
        sys.stdout.write("\n")
    else:
        for model_id in models:
            print(model_id)

    return 0


async def _cmd_chat(
    settings: Settings,
    prompt: str,
    provider: Optional[str] = None,
    model: Optional[str] = None,
    attach: Optional[str] = None,
    system: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    no_history: bool = False,
) -> int:
    """Send one chat message and stream the reply. Returns exit code."""
    from notechat.conversation import ChatSession
    from notechat.history import HistoryStore

    if provider and provider not in _registry(settings, provider).provider_ids():
        print(f"Error: provider not configured: {provider}", file=sys.stderr)
        return 1

    updates: dict = {}
    if system is not None:
        updates["chat_system_prompt"] = system
    if temperature is not None:
        updates["chat_temperature"] = temperature
    if max_tokens is not None:
        updates["chat_max_tokens"] = max_tokens
    if no_history:
        updates["save_history"] = False
    if updates:
        try:
            settings = Settings.model_validate({**settings.model_dump(), **updates})
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    session = ChatSession(
        _registry(settings, provider),
        settings,
        history=HistoryStore(settings.history_dir),
    )
    if model:
        session.select_model(model)
    if attach:
        try:
            session.attach_note(attach)
        except OSError as e:
            print(f"Error reading note: {e}", file=sys.stderr)
            return 1

    handle = session.send(prompt, on_token=_echo)
    if handle is None:
        print("Error: empty message", file=sys.stderr)
        return 1

    await _wait_interruptible(handle)
    sys.stdout.write("\n")

    if handle.error is not None:
        print(f"Error: {handle.error}", file=sys.stderr)
        return 1
    return 0


async def _cmd_generate(
    settings: Settings,
    prompt: str,
    provider: Optional[str] = None,
    model: Optional[str] = None,
    system: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
) -> int:
    """One-shot completion. Returns exit code."""
    adapter = _adapter(settings, provider)
    if adapter is None:
        return 1

    try:
        options = GenerationOptions(
            temperature=temperature, max_tokens=max_tokens, system_prompt=system
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        text = await adapter.generate(prompt, model, options)
    except RequestError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(text)
    return 0


async def _cmd_run_command(
    settings: Settings,
    name: str,
    file: str,
    offset: Optional[int] = None,
    selection: Optional[str] = None,
    provider: Optional[str] = None,
    model: Optional[str] = None,
) -> int:
    """Stream a prompt command's answer into a note. Returns exit code."""
    from notechat.commands import run_command

    command = settings.find_command(name)
    if command is None:
        available = ", ".join(c.name for c in settings.commands)
        print(f"Error: unknown command: {name}", file=sys.stderr)
        print(f"Available: {available}", file=sys.stderr)
        return 1

    if not Path(file).is_file():
        print(f"Error: file not found: {file}", file=sys.stderr)
        return 1

    adapter = _adapter(settings, provider)
    if adapter is None:
        return 1

    handle, insertion = run_command(
        adapter, command, file,
        selection=selection, model=model, offset=offset, on_token=_echo,
    )
    await _wait_interruptible(handle)
    sys.stdout.write("\n")

    if insertion.error is not None:
        print(f"Error: {insertion.error}", file=sys.stderr)
        return 1
    print(f"Updated {file}", file=sys.stderr)
    return 0


async def _cmd_history(settings: Settings, delete: Optional[str] = None) -> int:
    """List or delete saved transcripts. Returns exit code."""
    from notechat.history import HistoryStore

    store = HistoryStore(settings.history_dir)

    if delete:
        if not store.delete_session(delete):
            print(f"No such transcript: {delete}", file=sys.stderr)
        return 0

    for path in store.list_sessions():
        print(path.name)
    return 0


# ─────────────────────────────────────────────────────────────────────
# ENTRY POINT
# ─────────────────────────────────────────────────────────────────────


def main(argv: Optional[list[str]] = None):
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Logging
    level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(name)s %(message)s", stream=sys.stderr)

    # Load env
    load_dotenv()

    try:
        settings = load_settings(args.config)
    except ValueError as e:
        print(f"Error loading settings: {e}", file=sys.stderr)
        sys.exit(1)

    # Dispatch
    if args.command == "providers":
        code = asyncio.run(_cmd_providers(settings, json_output=args.json_output))
    elif args.command == "models":
        code = asyncio.run(_cmd_models(
            settings, provider=args.provider, json_output=args.json_output,
        ))
    elif args.command == "chat":
        code = asyncio.run(_cmd_chat(
            settings,
            prompt=args.prompt,
            provider=args.provider,
            model=args.model,
            attach=args.attach,
            system=args.system,
            temperature=args.temperature,
            max_tokens=args.max_tokens,
            no_history=args.no_history,
        ))
    elif args.command == "generate":
        code = asyncio.run(_cmd_generate(
            settings,
            prompt=args.prompt,
            provider=args.provider,
            model=args.model,
            system=args.system,
            temperature=args.temperature,
            max_tokens=args.max_tokens,
        ))
    elif args.command == "run-command":
        code = asyncio.run(_cmd_run_command(
            settings,
            name=args.name,
            file=args.file,
            offset=args.offset,
            selection=args.selection,
            provider=args.provider,
            model=args.model,
        ))
    elif args.command == "history":
        code = asyncio.run(_cmd_history(settings, delete=args.delete))
    else:
        parser.print_help()
        code = 1

    sys.exit(code)


if __name__ == "__main__":
    main()
