"""Token sale CLI — command-line interface for the crowdsale engine.

Usage:
    python -m tokensale.cli status
    python -m tokensale.cli quote --value 5 --at 2026-03-01T12:00:00Z
    python -m tokensale.cli simulate --script ops.json --events events.jsonl
    python -m tokensale.cli check-invariants

A simulate script is a JSON list of steps, each an object with an "op"
key naming a service operation plus its arguments, and an optional "at"
timestamp used as the clock for that step:

    [
      {"op": "add_precommitment", "caller": "sale_admin", "beneficiary": "fund",
       "value": 100, "bonus_factor": 20, "vesting_months": 6,
       "at": "2026-02-01T00:00:00Z"},
      {"op": "contribute", "participant": "alice", "value": 5,
       "at": "2026-03-02T00:00:00Z"},
      {"op": "verify_kyc", "caller": "sale_admin", "participant": "alice"},
      {"op": "finalize", "caller": "sale_admin", "at": "2026-04-01T00:00:00Z"}
    ]
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from tokensale.crowdsale import Crowdsale
from tokensale.persistence.event_log import EventLog
from tokensale.policy.resolver import ParamsResolver, parse_utc
from tokensale.service import CrowdsaleService, ServiceResult


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"

SIMULATE_OPS = (
    "contribute",
    "verify_kyc",
    "reject_kyc",
    "add_precommitment",
    "release_vesting",
    "release_team_tokens",
    "finalize",
    "claim_refund",
)


def _make_service(config_dir: Path, events_path: Optional[Path] = None) -> CrowdsaleService:
    """Create a CrowdsaleService over a fresh sale built from config."""
    resolver = ParamsResolver.from_config_dir(config_dir)
    event_log = EventLog(storage_path=events_path) if events_path is not None else None
    return CrowdsaleService(Crowdsale(resolver.sale_config()), event_log=event_log)


def _parse_at(value: Optional[str]) -> Optional[datetime]:
    return parse_utc(value) if value else None


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args.config)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_quote(args: argparse.Namespace) -> int:
    resolver = ParamsResolver.from_config_dir(args.config)
    sale = Crowdsale(resolver.sale_config())
    now = _parse_at(args.at) or datetime.now(timezone.utc)
    bonus = args.bonus if args.bonus is not None else sale.rates.bonus_for(now)
    try:
        tokens = sale.rates.tokens_for(args.value, bonus)
    except ValueError as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1
    print(json.dumps({
        "value": args.value,
        "bonus_factor": bonus,
        "phase": sale.rates.phase_for(now),
        "rate": sale.rates.rate_with_bonus(bonus),
        "tokens": tokens,
        "at": now.isoformat(),
    }, indent=2))
    return 0


def run_step(service: CrowdsaleService, step: dict[str, Any]) -> ServiceResult:
    """Dispatch one simulate step to the service."""
    args = dict(step)
    op = args.pop("op", None)
    if op not in SIMULATE_OPS:
        return ServiceResult(success=False, errors=[f"Unknown operation: {op!r}"])
    args["now"] = _parse_at(args.pop("at", None))
    try:
        return getattr(service, op)(**args)
    except TypeError as e:
        return ServiceResult(success=False, errors=[f"Bad arguments for {op}: {e}"])


def cmd_simulate(args: argparse.Namespace) -> int:
    with args.script.open("r", encoding="utf-8") as f:
        steps = json.load(f)
    if not isinstance(steps, list):
        print("Failed: script must be a JSON list of steps", file=sys.stderr)
        return 1

    service = _make_service(args.config, args.events)
    failures = 0
    for i, step in enumerate(steps):
        result = run_step(service, step)
        if not result.success:
            failures += 1
            print(f"Step {i} ({step.get('op')}) failed: {'; '.join(result.errors)}",
                  file=sys.stderr)

    status = service.status()
    status["steps"] = len(steps)
    status["failed_steps"] = failures
    status["invariant_errors"] = service.check_invariants().errors
    print(json.dumps(status, indent=2))
    return 1 if failures or status["invariant_errors"] else 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run sale parameter invariant checks."""
    # Import and run the existing check_invariants tool
    tools_dir = Path(__file__).resolve().parents[2] / "tools"
    sys.path.insert(0, str(tools_dir))
    from check_invariants import check
    return check(args.config / ParamsResolver.PARAMS_FILENAME)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tokensale",
        description="KYC-gated crowdsale engine CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show sale configuration and a fresh snapshot")

    # quote
    p_quote = sub.add_parser("quote", help="Quote tokens for a contribution")
    p_quote.add_argument("--value", type=int, required=True, help="Contribution value")
    p_quote.add_argument("--bonus", type=int, help="Bonus factor (default: tier at --at)")
    p_quote.add_argument("--at", help="ISO-8601 time of contribution (default: now)")

    # simulate
    p_sim = sub.add_parser("simulate", help="Replay a JSON script of operations")
    p_sim.add_argument("--script", type=Path, required=True, help="JSON list of steps")
    p_sim.add_argument("--events", type=Path, help="Write audit events to this JSONL file")

    # check-invariants
    sub.add_parser("check-invariants", help="Run sale parameter invariant checks")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "quote": cmd_quote,
        "simulate": cmd_simulate,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
