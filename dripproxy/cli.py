"""CLI entry point for dripproxy."""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import asdict
import json
from pathlib import Path
import sys
from typing import Sequence

from dripproxy.config.loader import load_config, write_starter_config
from dripproxy.core.logging import configure_logging, emit_metric, get_logger
from dripproxy.core.stream import FileStream, OpenMode, describe_stream
from dripproxy.tarpit.proxy import DelayingProxyStream
from dripproxy.tarpit.reader import StreamCollector


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dripproxy")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init", help="Create starter config")
    init_parser.add_argument("--config", type=Path, default=Path("./config/dripproxy.yml"))
    init_parser.add_argument("--force", action="store_true")

    show_parser = subparsers.add_parser("show-config", help="Print the parsed config")
    show_parser.add_argument("--config", type=Path, default=None)

    drip_parser = subparsers.add_parser("drip", help="Pipe a file through a delaying proxy")
    drip_parser.add_argument("input", type=Path)
    drip_parser.add_argument("--config", type=Path, default=None)
    drip_parser.add_argument("--chunk-size", type=int, default=None)
    drip_parser.add_argument("--jitter-range", type=int, default=None)
    drip_parser.add_argument("--interval-ms", type=int, default=None)
    drip_parser.add_argument("--seed", type=int, default=None, help="Use a seeded jitter source")
    drip_parser.add_argument("--timeout", type=float, default=60.0)
    drip_parser.add_argument(
        "--report",
        action="store_true",
        help="Print a JSON delivery summary instead of the payload",
    )

    return parser


def cmd_init(config_path: Path, force: bool) -> int:
    write_starter_config(config_path, force=force)
    print(f"wrote config: {config_path}")
    return 0


def cmd_show_config(config_path: Path | None) -> int:
    config = load_config(config_path)
    print(json.dumps(asdict(config), indent=2))
    return 0


async def _drip(proxy: DelayingProxyStream, *, report: bool, timeout: float) -> StreamCollector:
    out = sys.stdout.buffer
    collector = StreamCollector(proxy, sink=None if report else out.write)
    proxy.open(OpenMode.READ_ONLY)
    try:
        await collector.collect(timeout=timeout)
    finally:
        proxy.close()
    if not report:
        out.flush()
    return collector


def cmd_drip(
    input_path: Path,
    config_path: Path | None,
    *,
    chunk_size: int | None,
    jitter_range: int | None,
    interval_ms: int | None,
    seed: int | None,
    timeout: float,
    report: bool,
) -> int:
    try:
        config = load_config(
            config_path,
            proxy_overrides={
                "chunk_size": chunk_size,
                "jitter_range": jitter_range,
                "release_interval_ms": interval_ms,
                "seed": seed,
            },
        )
    except ValueError as exc:
        print(json.dumps({"error": str(exc)}, indent=2), file=sys.stderr)
        return 2
    configure_logging(config.logging, force=True)
    logger = get_logger("dripproxy.cli")

    source = FileStream(input_path)
    if not source.open(OpenMode.READ_ONLY):
        print(json.dumps({"error": source.error_string, "input": str(input_path)}, indent=2), file=sys.stderr)
        return 1
    source_info = describe_stream(source)
    proxy = config.proxy.build_proxy(source)
    try:
        collector = asyncio.run(_drip(proxy, report=report, timeout=timeout))
    except TimeoutError:
        print(json.dumps({"error": f"input not drained within {timeout} seconds"}, indent=2), file=sys.stderr)
        return 1

    emit_metric(
        logger,
        name="bytes_dripped",
        value=len(collector.received),
        service="cli",
        payload={"reads": len(collector.chunks), "ticks": proxy.ticks},
    )
    if report:
        summary = {
            "input": str(input_path),
            "source": source_info,
            "bytes": len(collector.received),
            "reads": collector.chunks,
            "proxy": proxy.snapshot(),
        }
        print(json.dumps(summary, indent=2))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "init":
        return cmd_init(args.config, args.force)
    if args.command == "show-config":
        return cmd_show_config(args.config)
    if args.command == "drip":
        return cmd_drip(
            args.input,
            args.config,
            chunk_size=args.chunk_size,
            jitter_range=args.jitter_range,
            interval_ms=args.interval_ms,
            seed=args.seed,
            timeout=args.timeout,
            report=args.report,
        )
    parser.error(f"unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
