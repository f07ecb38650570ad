"""
Interactive command-line chat client built on the dispatch pipeline.

Added 2026-10-19: Terminal front end replacing the desktop UI for local use.
Ctrl-C while a reply is streaming cancels that reply; /quit exits.
"""

# Standard library imports
import argparse
import asyncio
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

# Third-party imports
from dotenv import load_dotenv

# Local imports
from backends.factory import AVAILABLE_BACKENDS, create_backend
from common.config import Config, load_config
from common.logging import get_logger, setup_logging
from common.models import AppSettings
from dispatch.events import ChatRequest
from dispatch.pipeline import DispatchPipeline
from sessions.registry import SessionManager
from sessions.store import YamlStore

# Load environment variables from .env file at module level
load_dotenv()

logger = get_logger(__name__)

DEFAULT_TITLE = "New chat"
TITLE_LENGTH = 40


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Streaming chat client")
    parser.add_argument("--config", type=Path, default=Path("config.yaml"), help="Config file")
    parser.add_argument("--backend", choices=AVAILABLE_BACKENDS, help="Override the backend")
    parser.add_argument("--model", type=str, help="Override the model")
    parser.add_argument("--temperature", type=float, help="Override the temperature")
    parser.add_argument("--system-prompt", type=str, help="Override the system prompt")
    parser.add_argument("--store-dir", type=Path, help="Directory for sessions and settings")
    return parser.parse_args(argv)


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Return a copy of ``config`` with command-line overrides applied."""
    if args.backend:
        config = config.model_copy(
            update={"backend": config.backend.model_copy(update={"active": args.backend})}
        )
    if args.store_dir:
        config = config.model_copy(
            update={"storage": config.storage.model_copy(update={"store_dir": str(args.store_dir)})}
        )
    return config


def resolve_settings(
    config: Config, args: argparse.Namespace, stored: Optional[AppSettings]
) -> AppSettings:
    """Stored settings win over config defaults; command-line flags win over both."""
    settings = stored or AppSettings(
        model=config.chat.model,
        temperature=config.chat.temperature,
        system_prompt=config.chat.system_prompt,
    )
    overrides = {
        key: value
        for key, value in (
            ("model", args.model),
            ("temperature", args.temperature),
            ("system_prompt", args.system_prompt),
        )
        if value is not None
    }
    return settings.model_copy(update=overrides) if overrides else settings


async def read_line(prompt: str) -> str:
    """
    Read one line from stdin on a daemon thread.

    Cancelling the caller never waits for Enter: the thread is abandoned and
    does not hold up interpreter exit.

    Raises:
        EOFError: When stdin is closed
    """
    loop = asyncio.get_running_loop()
    future: "asyncio.Future[str]" = loop.create_future()

    def _settle(line: Optional[str], error: Optional[Exception]) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(line or "")

    def _read() -> None:
        try:
            result = (input(prompt), None)
        except Exception as e:
            result = (None, e)
        try:
            loop.call_soon_threadsafe(_settle, *result)
        except RuntimeError:
            # Loop closed while waiting for input
            logger.debug(event="stdin_line_discarded")

    threading.Thread(target=_read, name="stdin-reader", daemon=True).start()
    return await future


async def stream_reply(
    pipeline: DispatchPipeline, manager: SessionManager, request: ChatRequest
) -> None:
    """Submit one turn and print its events until the terminal one arrives."""
    handle = pipeline.submit(request)
    loop = asyncio.get_running_loop()

    previous_sigint = signal.getsignal(signal.SIGINT)
    cancel_on_sigint = True
    try:
        loop.add_signal_handler(signal.SIGINT, handle.cancel)
    except NotImplementedError:
        # Windows event loops have no signal handlers
        cancel_on_sigint = False
        logger.debug(event="sigint_cancel_unavailable")

    try:
        async for event in pipeline.events():
            manager.apply_event(event)
            if event.key != request.key:
                continue

            if event.kind == "chunk":
                print(event.content, end="", flush=True)
            elif event.kind == "error":
                print(f"\n[error] {event.error}", end="")
            elif event.kind == "cancelled":
                print("\n[cancelled]", end="")

            if event.is_terminal:
                break
    finally:
        if cancel_on_sigint:
            loop.remove_signal_handler(signal.SIGINT)
            if previous_sigint is not None:
                # remove_signal_handler installs the default handler, not the previous one
                signal.signal(signal.SIGINT, previous_sigint)
        print()


def print_sessions(manager: SessionManager) -> None:
    for session in manager.list_sessions():
        marker = "*" if session.id == manager.active_session_id else " "
        print(f"{marker} {session.id[:8]}  {session.title}  ({len(session.messages)} messages)")


async def chat_loop(config: Config, args: argparse.Namespace) -> None:
    """Read lines from stdin and stream each reply until /quit or EOF."""
    store = YamlStore(Path(config.storage.store_dir))
    settings = resolve_settings(config, args, store.load_settings())
    manager = SessionManager(store.load_all_sessions())
    session_id = manager.create_session(DEFAULT_TITLE)

    backend = create_backend(config.backend)

    logger.info(
        event="chat_started",
        backend=backend.name,
        model=settings.model,
        stored_sessions=len(manager.sessions) - 1,
    )

    async with DispatchPipeline(backend, config.pipeline) as pipeline:
        while True:
            try:
                line = await read_line("> ")
            except EOFError:
                break

            text = line.strip()
            if not text:
                continue
            if text == "/quit":
                break
            if text == "/new":
                session_id = manager.create_session(DEFAULT_TITLE)
                continue
            if text == "/list":
                print_sessions(manager)
                continue

            session = manager.sessions[session_id]
            if session.title == DEFAULT_TITLE:
                session.set_title(text[:TITLE_LENGTH])

            request = manager.begin_turn(session_id, text, settings)
            await stream_reply(pipeline, manager, request)
            store.save_session(session)

    store.save_settings(settings)


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point."""
    try:
        args = parse_args(argv)
        config = apply_overrides(load_config(args.config), args)
        setup_logging(config)
        asyncio.run(chat_loop(config, args))

    except KeyboardInterrupt:
        logger.info(event="application_shutdown", reason="Keyboard interrupt")
    except ValueError as e:
        # Fail fast on configuration problems (unknown backend, missing API key)
        logger.critical(event="startup_failed", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
