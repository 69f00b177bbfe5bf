"""Command line entry point for the freeip scanner."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Dict, List, Sequence

from aiohttp import web

from .engine import (
    CacheStatus,
    Engine,
    EngineSnapshot,
    FreeIpError,
    JsonFileStore,
    default_store_path,
)
from .engine.base import Snapshot
from .settings import list_interfaces, read_settings, setting_keys, write_setting
from .web import create_app

PROBE_ENV = "FREEIP_PROBE"


def parse_port(value: str) -> int:
    try:
        port = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid port '{value}'") from exc
    if not 0 < port <= 65535:
        raise argparse.ArgumentTypeError(
            f"port {port} is outside the valid range (1-65535)"
        )
    return port


def parse_index(value: str) -> int:
    try:
        index = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid index '{value}'") from exc
    if index < 1:
        raise argparse.ArgumentTypeError("index must be 1 or greater")
    return index


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="freeip",
        description="Find unused IPv4 addresses with an external probe and cache the results.",
    )
    parser.add_argument(
        "--format",
        choices={"json", "text"},
        default="text",
        help="Output format (default: text).",
    )
    parser.add_argument(
        "--output",
        type=Path,
        help="Optional file to write the result to (JSON is always used).",
    )
    parser.add_argument(
        "--cache-file",
        type=Path,
        default=None,
        help=f"Store for cached results and probe settings (default: {default_store_path()}).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable informational log messages.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging, including probe stderr.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    probe_help = f"Probe executable (default: ${PROBE_ENV})."

    scan_parser = subparsers.add_parser(
        "scan",
        help="Run the probe once and cache the free addresses it reports.",
    )
    scan_parser.add_argument("probe", nargs="?", help=probe_help)

    show_parser = subparsers.add_parser(
        "show",
        help="Show the cached free addresses without scanning.",
    )
    show_parser.add_argument(
        "--pick",
        type=parse_index,
        metavar="N",
        help="Print only the Nth address (from 1), e.g. to pipe into xclip or pbcopy.",
    )

    serve_parser = subparsers.add_parser(
        "serve",
        help="Expose scan, cancel and snapshot commands over HTTP.",
    )
    serve_parser.add_argument("probe", nargs="?", help=probe_help)
    serve_parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Address to listen on (default: 127.0.0.1).",
    )
    serve_parser.add_argument(
        "--port",
        type=parse_port,
        default=8731,
        help="Port to listen on (default: 8731).",
    )

    config_parser = subparsers.add_parser(
        "config",
        help="Show or change the settings the probe reads.",
    )
    config_parser.add_argument(
        "key", nargs="?", choices=setting_keys(), help="Setting to show or change."
    )
    config_parser.add_argument("value", nargs="?", help="New value for the setting.")

    subparsers.add_parser(
        "interfaces",
        help="List network interfaces usable by the probe.",
    )

    return parser


def _open_store(args: argparse.Namespace) -> JsonFileStore:
    return JsonFileStore(args.cache_file or default_store_path())


def _probe_path(args: argparse.Namespace) -> str:
    probe = args.probe or os.environ.get(PROBE_ENV)
    if not probe:
        raise FreeIpError(f"No probe given and ${PROBE_ENV} is not set")
    return probe


def _add_signal_handlers(loop: asyncio.AbstractEventLoop, callback) -> List[int]:
    installed: List[int] = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, callback)
        except (NotImplementedError, RuntimeError):
            continue
        installed.append(signum)
    return installed


def _remove_signal_handlers(loop: asyncio.AbstractEventLoop, installed: List[int]) -> None:
    for signum in installed:
        loop.remove_signal_handler(signum)


async def _run_scan(args: argparse.Namespace) -> EngineSnapshot:
    engine = Engine(_open_store(args), _probe_path(args))
    seen: set[str] = set()

    def report(addresses: Snapshot, loading: bool) -> None:
        for address in addresses:
            if address not in seen:
                seen.add(address)
                if args.format == "text":
                    print(address, file=sys.stderr, flush=True)

    engine.subscribe(report)
    loop = asyncio.get_running_loop()
    installed = _add_signal_handlers(loop, engine.cancel_scan)
    try:
        if not await engine.request_scan():
            raise FreeIpError(f"Probe {engine.probe_path} is missing or not executable")
        await engine.wait()
    finally:
        _remove_signal_handlers(loop, installed)
        await engine.shutdown()
    return engine.get_snapshot()


async def _run_show(args: argparse.Namespace) -> object:
    snapshot = Engine(_open_store(args)).get_snapshot()
    if args.pick is None:
        return snapshot
    if args.pick > len(snapshot.addresses):
        raise FreeIpError(
            f"No address {args.pick}: {len(snapshot.addresses)} cached"
        )
    return {"address": snapshot.addresses[args.pick - 1]}


async def _run_serve(args: argparse.Namespace) -> EngineSnapshot:
    engine = Engine(_open_store(args), _probe_path(args))
    runner = web.AppRunner(create_app(engine))
    await runner.setup()
    site = web.TCPSite(runner, args.host, args.port)
    await site.start()
    logging.info("Listening on http://%s:%d", args.host, args.port)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    installed = _add_signal_handlers(loop, stop.set)
    try:
        await stop.wait()
    finally:
        _remove_signal_handlers(loop, installed)
        await runner.cleanup()
    return engine.get_snapshot()


async def _run_config(args: argparse.Namespace) -> Dict[str, object]:
    store = _open_store(args)
    if args.value is not None:
        try:
            write_setting(store, args.key, args.value)
        except ValueError as exc:
            raise FreeIpError(str(exc)) from exc
    settings = read_settings(store)
    if args.key:
        return {args.key: settings[args.key]}
    return settings


async def _run_interfaces(args: argparse.Namespace) -> Dict[str, object]:
    return {"interfaces": list_interfaces()}


async def _dispatch(args: argparse.Namespace) -> object:
    if args.command == "scan":
        return await _run_scan(args)
    if args.command == "show":
        return await _run_show(args)
    if args.command == "serve":
        return await _run_serve(args)
    if args.command == "config":
        return await _run_config(args)
    if args.command == "interfaces":
        return await _run_interfaces(args)
    raise RuntimeError(f"Unsupported command: {args.command}")


def _configure_logging(args: argparse.Namespace) -> None:
    if args.debug:
        level = logging.DEBUG
    elif args.verbose:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _format_result(result: object, fmt: str) -> str:
    if fmt == "json":
        return json.dumps(_result_to_dict(result), indent=2, sort_keys=True)
    return _format_text(result)


def _result_to_dict(result: object) -> dict:
    if isinstance(result, EngineSnapshot):
        return result.to_dict()
    if isinstance(result, dict):
        return result
    raise TypeError(f"Unsupported result object: {result!r}")


def format_snapshot(snapshot: EngineSnapshot) -> List[str]:
    """Render a snapshot the way the indicator menu shows it."""

    addresses = list(snapshot.addresses)
    if snapshot.loading:
        if addresses:
            return [f"Scanning... ({len(addresses)} found so far)", *addresses]
        return ["Scanning..."]

    if snapshot.status is CacheStatus.NEVER_SCANNED:
        return ["No scan yet, run 'freeip scan' to look for free addresses"]

    lines: List[str] = []
    if snapshot.expired:
        lines.append("Refresh to update (> 24 h)")
    if not addresses:
        lines.append("No free IP found")
    lines.extend(addresses)
    return lines


def _format_text(result: object) -> str:
    if isinstance(result, EngineSnapshot):
        return "\n".join(format_snapshot(result))

    if isinstance(result, dict):
        if set(result) == {"address"}:
            return str(result["address"])
        if "interfaces" in result:
            interfaces = result["interfaces"] or ["(none)"]
            return "\n".join(str(name) for name in interfaces)
        return "\n".join(f"{key}: {value}" for key, value in result.items())

    raise TypeError(f"Unsupported result object: {result!r}")


def run(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args)

    try:
        result = asyncio.run(_dispatch(args))
    except FreeIpError as exc:
        logging.error("%s", exc)
        return 2

    output = _format_result(result, args.format)
    print(output)

    if args.output:
        args.output.write_text(json.dumps(_result_to_dict(result), indent=2, sort_keys=True) + "\n")

    return 0


def main(argv: Sequence[str] | None = None) -> int:
    exit_code = run(argv)
    if argv is None:
        sys.exit(exit_code)
    return exit_code


__all__ = ["format_snapshot", "main", "parse_index", "parse_port", "run"]
