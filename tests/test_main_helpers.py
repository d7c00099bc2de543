from __future__ import annotations

import sys
from datetime import timedelta

import pytest

import martscout.main as main_module
from martscout.config import Category
from martscout.main import _filter_categories, _retention, _select_locations, parse_args

CONFIG = {
    "locations": [
        {"name": "Pune", "latitude": 18.52, "longitude": 73.85},
        {"name": "Surat", "latitude": 21.22, "longitude": 72.79, "enabled": False},
    ]
}


def test_parse_args_defaults() -> None:
    args = parse_args([])
    assert args.once is False
    assert args.dry_run is False
    assert args.concurrency == 1
    assert args.locations == []
    assert args.categories_pattern is None


def test_parse_args_filters() -> None:
    args = parse_args(["--once", "--locations", "Pune, Surat", "--categories", "fruit", "--dry-run"])
    assert args.once is True
    assert args.dry_run is True
    assert args.locations == ["Pune", "Surat"]
    assert args.categories_pattern.search("Fresh Fruits")


def test_parse_args_rejects_bad_concurrency() -> None:
    with pytest.raises(SystemExit):
        parse_args(["--concurrency", "0"])


def test_select_locations_defaults_to_enabled() -> None:
    assert [loc.name for loc in _select_locations(CONFIG, [])] == ["Pune"]


def test_select_locations_by_name_includes_disabled() -> None:
    selected = _select_locations(CONFIG, ["surat", "Atlantis"])
    assert [loc.name for loc in selected] == ["Surat"]


def test_filter_categories() -> None:
    categories = [Category("Fresh Fruits"), Category("Munchies")]
    args = parse_args(["--categories", "^fresh"])
    assert _filter_categories(categories, args.categories_pattern) == [Category("Fresh Fruits")]
    assert _filter_categories(categories, None) == categories


def test_retention() -> None:
    assert _retention({"storage": {"retention_hours": 0}}) is None
    assert _retention({"storage": {"retention_hours": "12"}}) == timedelta(hours=12)
    assert _retention({}) is None


def test_main_exits_without_credentials(monkeypatch, tmp_path) -> None:
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    monkeypatch.delenv("TELEGRAM_CHANNEL_ID", raising=False)
    monkeypatch.setattr(main_module, "load_dotenv", lambda: False)
    monkeypatch.setattr(sys, "argv", ["martscout", "--once", "--config", str(tmp_path / "none.yml")])

    with pytest.raises(SystemExit) as excinfo:
        main_module.main()
    assert excinfo.value.code == 1
