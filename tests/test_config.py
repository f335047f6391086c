"""
Tests for configuration loading, env resolution and validation.
"""
from pathlib import Path

import pytest

from tradedesk.config import (
    as_bool,
    get_config_value,
    load_config,
    resolve_env_vars,
    validate_config,
)

SHIPPED_CONFIG = Path(__file__).resolve().parent.parent / "config" / "config.yaml"


def test_resolve_env_vars_with_defaults(monkeypatch):
    monkeypatch.setenv("TD_KEY", "abc")
    monkeypatch.delenv("TD_MISSING", raising=False)

    resolved = resolve_env_vars({
        "key": "${TD_KEY}",
        "nested": ["${TD_MISSING:fallback}", "${TD_MISSING}"],
        "number": 5,
    })

    assert resolved == {"key": "abc", "nested": ["fallback", ""], "number": 5}


def test_load_config_from_env_path(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text(
        "alpaca:\n"
        "  key_id: ${TD_KEY_ID:PKDEFAULT}\n"
        "  base_url: https://paper-api.alpaca.markets\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("TRADING_CONFIG_PATH", str(path))
    monkeypatch.delenv("TD_KEY_ID", raising=False)

    config = load_config()

    assert config["alpaca"]["key_id"] == "PKDEFAULT"


def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.yaml"))


def test_shipped_config_loads(monkeypatch):
    monkeypatch.setenv("ALPACA_KEY_ID", "PK")
    monkeypatch.setenv("ALPACA_SECRET_KEY", "SK")

    config = load_config(str(SHIPPED_CONFIG))
    validate_config(config)

    assert config["trading"]["trade_amount"] == 1000
    assert len(config["risk"]["excluded_symbols"]) == 26


def test_validate_requires_credentials(base_config):
    base_config["alpaca"]["secret_key"] = ""

    with pytest.raises(ValueError, match="secret_key"):
        validate_config(base_config)


@pytest.mark.parametrize("field,value", [
    ("trade_amount", 0),
    ("stop_loss_pct", 1.0),
    ("stop_loss_pct", 0),
    ("take_profit_pct", -0.1),
    ("max_positions", 0),
])
def test_validate_rejects_out_of_range(base_config, field, value):
    base_config["trading"][field] = value

    with pytest.raises(ValueError):
        validate_config(base_config)


def test_validate_accepts_defaults(base_config):
    validate_config(base_config)


def test_get_config_value(base_config):
    assert get_config_value(base_config, "trading.max_positions") == 5
    assert get_config_value(base_config, "trading.missing", "x") == "x"


@pytest.mark.parametrize("value,expected", [
    ("true", True), ("False", False), ("1", True), ("", False), (None, True), (False, False),
])
def test_as_bool(value, expected):
    assert as_bool(value, default=True) is expected


def test_as_bool_rejects_garbage():
    with pytest.raises(ValueError):
        as_bool("maybe")
