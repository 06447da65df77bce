#!/usr/bin/env python3
"""Sale invariant checks against the sale parameter file."""

import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
PARAMS_PATH = ROOT / "config" / "sale_params.json"

CAP_KEYS = ("total_supply", "presale_cap", "sale_cap", "foundation_pool", "team_pool")


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def parse_utc(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def check_window(sale: dict, errors: list[str]) -> tuple:
    start = end = None
    for key in ("start_utc", "end_utc"):
        try:
            parsed = parse_utc(sale[key])
        except (KeyError, TypeError, ValueError, AttributeError):
            errors.append(f"sale.{key} must be an ISO-8601 timestamp")
            continue
        if key == "start_utc":
            start = parsed
        else:
            end = parsed
    if start is not None and end is not None and start >= end:
        errors.append("sale.start_utc must be before sale.end_utc")
    return start, end


def check(params_path: Path = PARAMS_PATH) -> int:
    params = load_json(params_path)
    errors: list[str] = []

    # --- Window and pricing ---
    sale = params.get("sale", {})
    start, end = check_window(sale, errors)
    for key in ("rate", "goal"):
        if not is_int(sale.get(key)) or sale[key] <= 0:
            errors.append(f"sale.{key} must be a positive integer")

    # --- Supply split ---
    caps = params.get("caps", {})
    for key in CAP_KEYS:
        if not is_int(caps.get(key)) or caps[key] < 0:
            errors.append(f"caps.{key} must be a non-negative integer")
    if all(is_int(caps.get(key)) for key in CAP_KEYS):
        pools = sum(caps[key] for key in CAP_KEYS[1:])
        if pools > caps["total_supply"]:
            errors.append(
                f"presale + sale + foundation + team ({pools}) exceeds "
                f"total_supply ({caps['total_supply']})"
            )
        if caps["sale_cap"] == 0 and caps["presale_cap"] == 0:
            errors.append("at least one of presale_cap, sale_cap must be positive")
        # The goal must be reachable with the purchase cap at base rate
        rate, goal = sale.get("rate"), sale.get("goal")
        if is_int(rate) and is_int(goal) and rate > 0:
            purchase_cap = caps["presale_cap"] + caps["sale_cap"]
            if goal * rate > purchase_cap:
                errors.append(
                    f"goal ({goal}) cannot be reached: it needs {goal * rate} tokens "
                    f"at base rate, purchase cap is {purchase_cap}"
                )

    # --- Rate tiers ---
    tiers = params.get("rate_tiers", [])
    previous_hours, previous_bonus = 0, None
    if not isinstance(tiers, list):
        errors.append("rate_tiers must be a list")
        tiers = []
    for i, tier in enumerate(tiers):
        if not isinstance(tier, dict):
            errors.append(f"rate_tiers[{i}] must be an object")
            continue
        hours, bonus = tier.get("hours_after_start"), tier.get("bonus_factor")
        if not is_int(hours) or hours <= previous_hours:
            errors.append(f"rate_tiers[{i}].hours_after_start must be strictly increasing")
        if not is_int(bonus) or bonus < 0:
            errors.append(f"rate_tiers[{i}].bonus_factor must be a non-negative integer")
        elif previous_bonus is not None and bonus > previous_bonus:
            errors.append(f"rate_tiers[{i}].bonus_factor must not exceed the previous tier")
        if is_int(hours) and start is not None and end is not None:
            if start + timedelta(hours=hours) > end:
                errors.append(f"rate_tiers[{i}] ends after the sale window closes")
        if is_int(hours):
            previous_hours = hours
        if is_int(bonus):
            previous_bonus = bonus

    # --- Vesting ---
    vesting = params.get("vesting", {})
    if "month_days" in vesting and (not is_int(vesting["month_days"]) or vesting["month_days"] <= 0):
        errors.append("vesting.month_days must be a positive integer")
    if "team_lock_months" in vesting and (
        not is_int(vesting["team_lock_months"]) or vesting["team_lock_months"] < 0
    ):
        errors.append("vesting.team_lock_months must be a non-negative integer")

    # --- Roles ---
    wallets = params.get("wallets", {})
    names = []
    for key in ("operator", "foundation", "team"):
        value = wallets.get(key)
        if not isinstance(value, str) or not value.strip():
            errors.append(f"wallets.{key} must be a non-empty string")
        else:
            names.append(value.strip())
    if len(set(names)) != len(names):
        errors.append("sale wallets must be distinct")
    admin = params.get("admin")
    if not isinstance(admin, str) or not admin.strip():
        errors.append("admin must be a non-empty string")
    elif admin.strip() in names:
        errors.append("admin must not be one of the sale wallets")

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    path = Path(sys.argv[1]) if len(sys.argv) > 1 else PARAMS_PATH
    raise SystemExit(check(path))
