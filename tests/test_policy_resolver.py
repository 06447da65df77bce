"""Tests for the sale parameter resolver — proves it loads and validates config correctly."""

import copy
import json

import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from tokensale.policy.resolver import ParamsResolver, parse_utc


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


@pytest.fixture
def resolver() -> ParamsResolver:
    return ParamsResolver.from_config_dir(CONFIG_DIR)


@pytest.fixture
def raw(resolver: ParamsResolver) -> dict:
    return copy.deepcopy(resolver.raw)


class TestLoading:
    def test_window(self, resolver: ParamsResolver) -> None:
        window = resolver.window()
        assert window.start_utc == datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert window.start_utc < window.end_utc

    def test_caps_fit_supply(self, resolver: ParamsResolver) -> None:
        caps = resolver.caps()
        assert (
            caps.presale_cap + caps.sale_cap + caps.foundation_pool + caps.team_pool
            <= caps.total_supply
        )

    def test_rate_tiers_are_relative_to_start(self, resolver: ParamsResolver) -> None:
        tiers = resolver.rate_tiers()
        start = resolver.window().start_utc
        assert tiers[0].ends_utc == start + timedelta(hours=24)
        assert tiers[0].bonus_factor >= tiers[-1].bonus_factor

    def test_sale_config(self, resolver: ParamsResolver) -> None:
        config = resolver.sale_config()
        assert config.rate == 10
        assert config.admin_id == "sale_admin"
        assert config.month_days == 30
        assert config.months(6) == timedelta(days=180)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            ParamsResolver.from_config_dir(tmp_path)


class TestValidation:
    def test_missing_section(self, raw: dict) -> None:
        del raw["caps"]
        with pytest.raises(ValueError, match="caps"):
            ParamsResolver(raw)

    def test_bad_timestamp(self, raw: dict) -> None:
        raw["sale"]["start_utc"] = "March first"
        with pytest.raises(ValueError, match="start_utc"):
            ParamsResolver(raw)

    def test_window_order(self, raw: dict) -> None:
        raw["sale"]["end_utc"] = raw["sale"]["start_utc"]
        with pytest.raises(ValueError, match="before end"):
            ParamsResolver(raw)

    def test_non_positive_rate(self, raw: dict) -> None:
        raw["sale"]["rate"] = 0
        with pytest.raises(ValueError, match="sale.rate"):
            ParamsResolver(raw)

    def test_boolean_is_not_an_integer(self, raw: dict) -> None:
        raw["sale"]["goal"] = True
        with pytest.raises(ValueError, match="integer"):
            ParamsResolver(raw)

    def test_pools_exceed_supply(self, raw: dict) -> None:
        raw["caps"]["team_pool"] = raw["caps"]["total_supply"]
        with pytest.raises(ValueError, match="exceed total supply"):
            ParamsResolver(raw)

    def test_tier_hours_must_increase(self, raw: dict) -> None:
        raw["rate_tiers"][1]["hours_after_start"] = 24
        with pytest.raises(ValueError, match="strictly increasing"):
            ParamsResolver(raw)

    def test_tier_bonus_must_not_increase(self, raw: dict) -> None:
        raw["rate_tiers"][1]["bonus_factor"] = 50
        with pytest.raises(ValueError, match="must not increase"):
            ParamsResolver(raw)

    def test_blank_wallet(self, raw: dict) -> None:
        raw["wallets"]["team"] = ""
        with pytest.raises(ValueError, match="wallets.team"):
            ParamsResolver(raw)

    def test_optional_sections_default(self, raw: dict) -> None:
        del raw["rate_tiers"]
        del raw["vesting"]
        config = ParamsResolver(raw).sale_config()
        assert config.rate_tiers == ()
        assert config.team_lock_months == 12


class TestParseUtc:
    def test_zulu_suffix(self) -> None:
        assert parse_utc("2026-03-01T00:00:00Z") == datetime(2026, 3, 1, tzinfo=timezone.utc)

    def test_naive_taken_as_utc(self) -> None:
        assert parse_utc("2026-03-01T00:00:00").tzinfo == timezone.utc

    def test_offset_normalised(self) -> None:
        parsed = parse_utc("2026-03-01T02:00:00+02:00")
        assert parsed == datetime(2026, 3, 1, tzinfo=timezone.utc)


class TestInvariantTool:
    def test_repository_config_passes(self) -> None:
        from check_invariants import check
        assert check(CONFIG_DIR / "sale_params.json") == 0

    def test_unreachable_goal_fails(self, raw: dict, tmp_path: Path) -> None:
        from check_invariants import check
        raw["sale"]["goal"] = 10**9
        path = tmp_path / "sale_params.json"
        path.write_text(json.dumps(raw), encoding="utf-8")
        assert check(path) == 1

    def test_non_object_tier_reported(
        self, raw: dict, tmp_path: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        from check_invariants import check
        raw["rate_tiers"] = [24, {"hours_after_start": 168, "bonus_factor": 10}]
        path = tmp_path / "sale_params.json"
        path.write_text(json.dumps(raw), encoding="utf-8")
        assert check(path) == 1
        assert "rate_tiers[0] must be an object" in capsys.readouterr().out
