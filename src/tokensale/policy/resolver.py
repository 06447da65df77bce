"""Sale parameters — loads and validates config/sale_params.json.

Usage:
    resolver = ParamsResolver.from_config_dir(Path("config"))
    config = resolver.sale_config()
    sale = Crowdsale(config)

Every value is validated on construction. A malformed file raises
ValueError naming the offending key; nothing is defaulted silently except
the optional `rate_tiers` and `vesting` sections.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from tokensale.models.sale import (
    RateTier,
    SaleCaps,
    SaleConfig,
    SaleWallets,
    SaleWindow,
)


def parse_utc(value: str) -> datetime:
    """Parse an ISO-8601 timestamp. Naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class ParamsResolver:
    """Validated view over the sale parameter file."""

    PARAMS_FILENAME = "sale_params.json"
    CAP_KEYS = ("total_supply", "presale_cap", "sale_cap", "foundation_pool", "team_pool")
    WALLET_KEYS = ("operator", "foundation", "team")

    def __init__(self, params: dict[str, Any]) -> None:
        self._params = params
        self._validate()

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> ParamsResolver:
        """Load parameters from the config directory.

        Raises:
            FileNotFoundError: If sale_params.json does not exist.
            ValueError: If the file is structurally invalid.
        """
        path = config_dir / cls.PARAMS_FILENAME
        if not path.exists():
            raise FileNotFoundError(f"Sale parameters not found: {path}")
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        return cls(data)

    @property
    def raw(self) -> dict[str, Any]:
        return self._params

    def version(self) -> str:
        return str(self._params.get("version", "unversioned"))

    def window(self) -> SaleWindow:
        sale = self._params["sale"]
        return SaleWindow(
            start_utc=parse_utc(sale["start_utc"]),
            end_utc=parse_utc(sale["end_utc"]),
        )

    def caps(self) -> SaleCaps:
        caps = self._params["caps"]
        return SaleCaps(**{key: caps[key] for key in self.CAP_KEYS})

    def rate_tiers(self) -> tuple[RateTier, ...]:
        start = self.window().start_utc
        return tuple(
            RateTier(
                ends_utc=start + timedelta(hours=tier["hours_after_start"]),
                bonus_factor=tier["bonus_factor"],
            )
            for tier in self._params.get("rate_tiers", [])
        )

    def wallets(self) -> SaleWallets:
        wallets = self._params["wallets"]
        return SaleWallets(**{key: wallets[key] for key in self.WALLET_KEYS})

    def sale_config(self) -> SaleConfig:
        """Build the immutable SaleConfig for a Crowdsale."""
        sale = self._params["sale"]
        vesting = self._params.get("vesting", {})
        return SaleConfig(
            window=self.window(),
            rate=sale["rate"],
            goal=sale["goal"],
            caps=self.caps(),
            wallets=self.wallets(),
            admin_id=self._params["admin"],
            rate_tiers=self.rate_tiers(),
            month_days=vesting.get("month_days", 30),
            team_lock_months=vesting.get("team_lock_months", 12),
        )

    def _validate(self) -> None:
        for section in ("sale", "caps", "wallets"):
            if not isinstance(self._params.get(section), dict):
                raise ValueError(f"Sale parameters missing '{section}' section")

        sale = self._params["sale"]
        for key in ("start_utc", "end_utc"):
            if not isinstance(sale.get(key), str):
                raise ValueError(f"sale.{key} must be an ISO-8601 string")
            try:
                parse_utc(sale[key])
            except ValueError as exc:
                raise ValueError(f"sale.{key} is not a valid timestamp: {exc}") from exc
        for key in ("rate", "goal"):
            self._require_int(sale, key, "sale", minimum=1)

        caps = self._params["caps"]
        for key in self.CAP_KEYS:
            self._require_int(caps, key, "caps", minimum=0)

        wallets = self._params["wallets"]
        for key in self.WALLET_KEYS:
            value = wallets.get(key)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"wallets.{key} must be a non-empty string")

        admin = self._params.get("admin")
        if not isinstance(admin, str) or not admin.strip():
            raise ValueError("'admin' must be a non-empty string")

        tiers = self._params.get("rate_tiers", [])
        if not isinstance(tiers, list):
            raise ValueError("'rate_tiers' must be a list")
        previous_hours = 0
        previous_bonus = None
        for i, tier in enumerate(tiers):
            if not isinstance(tier, dict):
                raise ValueError(f"rate_tiers[{i}] must be an object")
            self._require_int(tier, "hours_after_start", f"rate_tiers[{i}]", minimum=1)
            self._require_int(tier, "bonus_factor", f"rate_tiers[{i}]", minimum=0)
            if tier["hours_after_start"] <= previous_hours:
                raise ValueError(
                    f"rate_tiers[{i}].hours_after_start must be strictly increasing"
                )
            if previous_bonus is not None and tier["bonus_factor"] > previous_bonus:
                raise ValueError(f"rate_tiers[{i}].bonus_factor must not increase")
            previous_hours = tier["hours_after_start"]
            previous_bonus = tier["bonus_factor"]

        vesting = self._params.get("vesting", {})
        if not isinstance(vesting, dict):
            raise ValueError("'vesting' must be an object")
        if "month_days" in vesting:
            self._require_int(vesting, "month_days", "vesting", minimum=1)
        if "team_lock_months" in vesting:
            self._require_int(vesting, "team_lock_months", "vesting", minimum=0)

        # Cross-field checks (window order, pool sum) live on the models.
        self.sale_config()

    @staticmethod
    def _require_int(section: dict[str, Any], key: str, where: str, minimum: int) -> None:
        value = section.get(key)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{where}.{key} must be an integer, got {value!r}")
        if value < minimum:
            raise ValueError(f"{where}.{key} must be >= {minimum}, got {value}")
