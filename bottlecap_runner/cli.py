#!/usr/bin/env python3
"""BottleCap Runner CLI - headless runner for local Ollama models.

Usage:
    bottlecap-runner --token bc_runner_xxx...
    bottlecap-runner                       # uses the saved token
    bottlecap-runner run --token bc_runner_xxx...
    bottlecap-runner probe                 # is Ollama reachable?
    bottlecap-runner token save bc_runner_xxx...
    bottlecap-runner token clear

Environment variables (alternative to args):
    BOTTLECAP_TOKEN        Runner token
    BOTTLECAP_BACKEND      Coordination service URL
    OLLAMA_HOST            Ollama base URL (default: http://localhost:11434)
    BOTTLECAP_DEVICE_NAME  Device name reported to the service (default: hostname)
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from dotenv import load_dotenv
from rich.console import Console

from .backend import OllamaClient
from .config import get_config_value, load_config, require_config_value
from .credentials import CredentialStoreError, TokenStore, validate_token
from .events import ConsoleEventSink
from .manager import SessionManager

log = logging.getLogger("bottlecap_runner")


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


class RunnerCLI:
    """Runs one session until it closes or the process is interrupted."""

    def __init__(
        self,
        token: str,
        backend_url: str,
        ollama_url: str,
        ollama_timeout: float = 300.0,
        send_timeout: float = 5.0,
        device_name: Optional[str] = None,
        store: Optional[TokenStore] = None,
        console: Optional[Console] = None,
    ):
        self.token = token
        self.backend_url = backend_url
        self.ollama_url = ollama_url
        self.ollama_timeout = ollama_timeout
        self.send_timeout = send_timeout
        self.device_name = device_name
        self.store = store or TokenStore()
        self.console = console or Console()

        self._stop = asyncio.Event()

    def request_stop(self) -> None:
        self._stop.set()

    async def run(self) -> int:
        """Run the runner. Returns exit code."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except NotImplementedError:
                # Windows event loops
                pass

        async with OllamaClient(self.ollama_url, timeout=self.ollama_timeout) as backend:
            if await backend.probe():
                log.info(f"Ollama is running at {self.ollama_url}")
            else:
                log.warning(f"Ollama is not running at {self.ollama_url}")
                log.warning("Install it from https://ollama.com/download, then: ollama pull llama3.2")

            manager = SessionManager(
                backend=backend,
                sink=ConsoleEventSink(self.console),
                url=self.backend_url,
                device_name=self.device_name,
                send_timeout=self.send_timeout,
            )

            handle = await manager.connect(self.token)
            try:
                self.store.set(self.token)
            except CredentialStoreError as e:
                log.warning(f"Could not save token: {e}")

            log.info("Press Ctrl+C to stop")
            stop_task = asyncio.create_task(self._stop.wait())
            try:
                await asyncio.wait(
                    {stop_task, handle.task}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                stop_task.cancel()
                await manager.disconnect()
                await handle.task

        if handle.session.error:
            return 1
        log.info("Goodbye!")
        return 0


async def probe(ollama_url: str) -> bool:
    async with OllamaClient(ollama_url, timeout=5.0) as backend:
        return await backend.probe()


def _resolve_token(args: argparse.Namespace, store: TokenStore) -> str:
    if args.token:
        return args.token
    try:
        saved = store.get()
    except CredentialStoreError as e:
        log.warning(f"Could not load saved token: {e}")
        return ""
    if saved:
        log.info("Loaded saved token")
    return saved or ""


def _token_command(args: argparse.Namespace, store: TokenStore, console: Console) -> int:
    try:
        if args.action == "save":
            validate_token(args.value)
            store.set(args.value)
            console.print("[green]Token saved[/green]")
        elif args.action == "clear":
            store.delete()
            console.print("[yellow]Token cleared[/yellow]")
        else:
            token = store.get()
            if not token:
                console.print("[yellow]No saved token[/yellow]")
                return 1
            console.print(f"{token[:14]}...")
    except (ValueError, CredentialStoreError) as e:
        console.print(f"[red]{e}[/red]")
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    config = load_config()

    parser = argparse.ArgumentParser(
        description="BottleCap Runner - serve local Ollama models to BottleCapAI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  bottlecap-runner --token bc_runner_xxx...
  bottlecap-runner run --token bc_runner_xxx...
  bottlecap-runner --ollama http://192.168.1.10:11434
  bottlecap-runner probe
  bottlecap-runner token clear
        """,
    )
    parser.add_argument(
        "--token",
        default=config["TOKEN"],
        help="Runner token (or set BOTTLECAP_TOKEN; default: saved token)",
    )
    parser.add_argument(
        "--backend",
        default=config["BACKEND_URL"],
        help="Coordination service WebSocket URL",
    )
    parser.add_argument(
        "--ollama",
        default=config["OLLAMA_URL"],
        help="Ollama base URL (default: http://localhost:11434)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    commands = parser.add_subparsers(dest="command")
    run = commands.add_parser("run", help="Connect and serve requests (default)")
    run.add_argument(
        "--token",
        default=argparse.SUPPRESS,
        help="Runner token (overrides the top-level --token)",
    )
    commands.add_parser("probe", help="Check whether Ollama is reachable")

    token = commands.add_parser("token", help="Manage the saved runner token")
    token_actions = token.add_subparsers(dest="action", required=True)
    save = token_actions.add_parser("save", help="Save a runner token")
    save.add_argument("value")
    token_actions.add_parser("clear", help="Delete the saved token")
    token_actions.add_parser("show", help="Show the saved token (truncated)")

    return parser


def main(argv: Optional[list[str]] = None):
    """CLI entry point."""
    load_dotenv()
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    console = Console()
    store = TokenStore()

    if args.command == "probe":
        running = asyncio.run(probe(args.ollama))
        if running:
            console.print(f"[green]Ollama is running at {args.ollama}[/green]")
        else:
            console.print(f"[red]Ollama is not running at {args.ollama}[/red]")
        sys.exit(0 if running else 1)

    if args.command == "token":
        sys.exit(_token_command(args, store, console))

    token = _resolve_token(args, store)
    try:
        validate_token(token)
    except ValueError as e:
        log.error(str(e))
        log.error("Use --token, set BOTTLECAP_TOKEN, or run: bottlecap-runner token save <token>")
        sys.exit(1)

    try:
        backend_url = args.backend or require_config_value("BACKEND_URL")
        ollama_url = args.ollama or require_config_value("OLLAMA_URL")
    except RuntimeError as e:
        log.error(str(e))
        sys.exit(1)

    config = load_config()
    cli = RunnerCLI(
        token=token,
        backend_url=backend_url,
        ollama_url=ollama_url,
        ollama_timeout=config["OLLAMA_TIMEOUT"],
        send_timeout=config["SEND_TIMEOUT"],
        device_name=get_config_value("DEVICE_NAME") or None,
        store=store,
        console=console,
    )

    exit_code = asyncio.run(cli.run())
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
