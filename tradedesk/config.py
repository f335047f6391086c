"""
Configuration management with environment variable resolution.
"""
import yaml
import os
import re
from typing import Any, Dict, Optional
from pathlib import Path


DEFAULT_CONFIG_PATH = "config/config.yaml"

# Indices, commodities, volatility, bonds and inverse/leveraged products are
# never eligible for automated entry.
DEFAULT_EXCLUDED_SYMBOLS = [
    # Indices
    'SPY', 'QQQ', 'DIA', 'IWM', 'VTI', 'VOO',
    # Commodities
    'GLD', 'SLV', 'USO', 'UNG', 'CORN', 'WEAT',
    # Futures/Volatility
    'VXX', 'UVXY', 'SVXY', 'VIXY',
    # Bonds
    'TLT', 'IEF', 'AGG', 'BND',
    # Inverse/Leveraged
    'SQQQ', 'TQQQ', 'SPXU', 'SPXL', 'SOXL', 'SOXS',
]

_TRUE_STRINGS = {"1", "true", "yes", "on", "y"}
_FALSE_STRINGS = {"0", "false", "no", "off", "n", ""}


def resolve_env_vars(value: Any) -> Any:
    """
    Resolve environment variables in strings like ${VAR_NAME}.

    Args:
        value: Value to process (can be str, dict, list, or other)

    Returns:
        Processed value with environment variables resolved
    """
    if isinstance(value, str):
        # Pattern to match ${VAR_NAME} or ${VAR_NAME:default_value}
        pattern = r'\$\{([^}:]+)(?::([^}]*))?\}'

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else ""
            return os.environ.get(var_name, default_value)

        return re.sub(pattern, replacer, value)

    elif isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    elif isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    return value


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from YAML file and resolve environment variables.

    Args:
        config_path: Path to the configuration YAML file. Falls back to
            TRADING_CONFIG_PATH, then config/config.yaml.

    Returns:
        Dictionary with configuration values

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML parsing fails
    """
    config_path = config_path or os.environ.get("TRADING_CONFIG_PATH", DEFAULT_CONFIG_PATH)
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_file, 'r', encoding='utf-8') as f:
        config = yaml.safe_load(f) or {}

    return resolve_env_vars(config)


def validate_config(config: Dict[str, Any]) -> None:
    """
    Validate that required configuration fields are present and valid.

    Args:
        config: Configuration dictionary

    Raises:
        ValueError: If configuration is invalid
    """
    required_fields = [
        'alpaca.key_id',
        'alpaca.secret_key',
        'alpaca.base_url',
    ]

    for field in required_fields:
        keys = field.split('.')
        value = config
        try:
            for key in keys:
                value = value[key]

            if not value or value == "":
                raise ValueError(f"Required configuration field '{field}' is empty")

        except (KeyError, TypeError):
            raise ValueError(f"Required configuration field '{field}' is missing")

    trading = config.get('trading', {}) or {}

    if as_float(trading.get('trade_amount'), 1000.0) <= 0:
        raise ValueError("trade_amount must be > 0")

    stop_loss_pct = as_float(trading.get('stop_loss_pct'), 0.10)
    if not 0 < stop_loss_pct < 1:
        raise ValueError("stop_loss_pct must be between 0 and 1")

    if as_float(trading.get('take_profit_pct'), 0.25) <= 0:
        raise ValueError("take_profit_pct must be > 0")

    if as_int(trading.get('max_positions'), 5) < 1:
        raise ValueError("max_positions must be >= 1")


def get_config_value(config: Dict[str, Any], path: str, default: Any = None) -> Any:
    """
    Get a configuration value using dot notation path.

    Args:
        config: Configuration dictionary
        path: Dot-separated path (e.g., 'trading.max_positions')
        default: Default value if path not found

    Returns:
        Configuration value or default
    """
    keys = path.split('.')
    value = config

    try:
        for key in keys:
            value = value[key]
        return value
    except (KeyError, TypeError):
        return default


def as_bool(value: Any, default: bool = False) -> bool:
    """Coerce YAML/env values ("true", "0", 1, None) to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    raise ValueError(f"Cannot interpret {value!r} as a boolean")


def as_float(value: Any, default: float) -> float:
    if value is None or value == "":
        return default
    return float(value)


def as_int(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    return int(value)
