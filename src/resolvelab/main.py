from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List

from pydantic import ValidationError

from .config.config_parser import (
    build_cache,
    build_settings,
    build_upstream,
    parse_config_file,
)
from .config.logging_config import init_logging
from .delegation import MODES
from .errors import ResolveLabError
from .models import RECORD_TYPES
from .orchestrator import ResolutionOrchestrator

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="resolvelab",
        description="Trace how a DNS name is resolved, stage by stage",
    )
    parser.add_argument("domain", help="Domain name to resolve")
    parser.add_argument(
        "-t",
        "--type",
        dest="record_type",
        default="A",
        type=str.upper,
        choices=RECORD_TYPES,
        help="Record type (default: A)",
    )
    parser.add_argument(
        "-m",
        "--mode",
        default="recursive",
        choices=MODES,
        help="Resolution mode (default: recursive)",
    )
    parser.add_argument("--config", default=None, help="Path to YAML config")
    parser.add_argument(
        "--real",
        action="store_true",
        help="Use the real delegation chain (falls back to simulation on error)",
    )
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument(
        "--packet-loss", type=float, default=None, help="Packet loss percent (0-100)"
    )
    parser.add_argument(
        "--max-retries", type=int, default=None, help="Delivery attempts per hop"
    )
    parser.add_argument(
        "--latency", type=int, default=None, help="Simulated one-way latency in ms"
    )
    parser.add_argument(
        "--dnssec", action="store_true", help="Append DNSSEC validation steps"
    )
    parser.add_argument(
        "--dnssec-failure",
        action="store_true",
        help="Break the DNSSEC chain at the root DS check (implies --dnssec)",
    )
    parser.add_argument(
        "--no-cache", action="store_true", help="Bypass and do not populate caches"
    )
    parser.add_argument(
        "--compare",
        action="store_true",
        help="Compare the simulated hierarchy with the real delegation chain",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["debug", "info", "warn", "error", "crit"],
        help="Override logging.level from the config",
    )
    return parser


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {
        "seed": args.seed,
        "packet_loss": args.packet_loss,
        "max_retries": args.max_retries,
        "network_latency_ms": args.latency,
    }
    if args.real:
        overrides["query_mode"] = "real"
    if args.dnssec or args.dnssec_failure:
        overrides["dnssec_enabled"] = True
    if args.dnssec_failure:
        overrides["simulate_dnssec_failure"] = True
    if args.no_cache:
        overrides["cache_enabled"] = False
    return overrides


def main(argv: List[str] | None = None) -> int:
    """
    CLI entry point: resolve one name and print the JSON result.

    Args:
        argv: Command-line arguments.

    Returns:
        0 on success, 1 when the resolution (or comparison) failed, 2 on an
        invalid config or settings.

    Example use:
        CLI:
            resolvelab www.example.co.uk -t A -m iterative --seed 7
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    cfg: Dict[str, Any] = {}
    if args.config:
        try:
            cfg = parse_config_file(args.config)
        except (OSError, ValueError) as exc:
            print(str(exc), file=sys.stderr)
            return EXIT_USAGE

    log_cfg = dict(cfg.get("logging") or {})
    if args.log_level:
        log_cfg["level"] = args.log_level
    log_cfg.setdefault("level", "warn")
    init_logging(log_cfg)
    logger = logging.getLogger("resolvelab.main")
    if args.config:
        logger.info("Loaded config from %s", args.config)

    try:
        settings = build_settings(cfg, overrides=_cli_overrides(args))
    except ValidationError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_USAGE

    orchestrator = ResolutionOrchestrator(
        upstream=build_upstream(cfg), cache=build_cache(cfg)
    )

    if args.compare:
        try:
            report = asyncio.run(
                orchestrator.compare(
                    args.domain, timeout_ms=settings.real_delegation_timeout_ms
                )
            )
        except (ResolveLabError, asyncio.TimeoutError) as exc:
            logger.error("Comparison for %s failed: %s", args.domain, exc or "timed out")
            print(json.dumps({"domain": args.domain, "error": str(exc)}, indent=2))
            return EXIT_FAILED
        print(json.dumps(report, indent=2))
        return EXIT_OK

    result = asyncio.run(
        orchestrator.resolve(args.domain, args.record_type, args.mode, settings)
    )
    print(json.dumps(result.to_dict(), indent=2))
    return EXIT_OK if result.success else EXIT_FAILED


if __name__ == "__main__":
    raise SystemExit(main())  # pragma: no cover
