"""Configuration loader - reads engine YAML, interpolates env vars, validates.

Only deployment wiring and reporting are configurable. The solvency and
liquidation parameters are fixed constants in core.py.

Example config.yaml:

    engine:
      name: dsc
      address: engine
      verbose: true
      oracle_timeout: 10800
      log_level: ${ENGINE_LOG_LEVEL}
    collateral:
      - token: WETH
        feed: ETH/USD
      - token: WBTC
        feed: BTC/USD
"""

from __future__ import annotations
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml
from dotenv import load_dotenv

from .chain import Chain
from .core import ENGINE_ADDRESS, ORACLE_TIMEOUT, DebtTokenLike, PriceFeed
from .logging_setup import configure_logging

logger = logging.getLogger(__name__)


# ============================================================================
# FROZEN CONFIG DATACLASSES
# ============================================================================

@dataclass(frozen=True)
class CollateralConfig:
    """One collateral asset and the name of its USD price feed."""
    token: str = ""
    feed: str = ""


@dataclass(frozen=True)
class EngineConfig:
    """
    Engine deployment settings.

    Attributes:
        name: Deployment name, used in log lines
        verbose: Log every APPLIED / REJECTED call at INFO
        oracle_timeout: Maximum tolerated price age in seconds
        engine_address: Wallet of the engine on the chain
        log_level: Root log level name (see logging_setup.configure_logging)
        collateral: Collateral assets in registration order
    """
    name: str = "engine"
    verbose: bool = False
    oracle_timeout: int = ORACLE_TIMEOUT
    engine_address: str = ENGINE_ADDRESS
    log_level: str = "INFO"
    collateral: Tuple[CollateralConfig, ...] = field(default_factory=tuple)

    @property
    def token_addresses(self) -> List[str]:
        return [c.token for c in self.collateral]


# ============================================================================
# ENV INTERPOLATION
# ============================================================================

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


def _as_bool(value: Any) -> bool:
    # Interpolated values arrive as strings
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


# ============================================================================
# YAML -> DATACLASS BUILDERS
# ============================================================================

def _build_collateral(raw: List[Dict[str, Any]]) -> Tuple[CollateralConfig, ...]:
    return tuple(
        CollateralConfig(token=str(c.get("token", "")), feed=str(c.get("feed", "")))
        for c in raw
    )


def _build_engine(raw: Dict[str, Any], collateral: Tuple[CollateralConfig, ...]) -> EngineConfig:
    return EngineConfig(
        name=str(raw.get("name", "engine")),
        verbose=_as_bool(raw.get("verbose", False)),
        oracle_timeout=int(raw.get("oracle_timeout") or ORACLE_TIMEOUT),
        engine_address=str(raw.get("address", ENGINE_ADDRESS)),
        log_level=str(raw.get("log_level") or "INFO"),
        collateral=collateral,
    )


# ============================================================================
# PUBLIC API
# ============================================================================

def load_config(config_path: Optional[Union[str, Path]] = None) -> EngineConfig:
    """Load and validate engine configuration from YAML + .env.

    Args:
        config_path: Path to the YAML file. Defaults to ``config.yaml`` in the
            current directory.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the configuration is invalid
    """
    load_dotenv()

    config_path = Path(config_path) if config_path is not None else Path("config.yaml")
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = _build_engine(raw.get("engine") or {}, _build_collateral(raw.get("collateral") or []))
    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: EngineConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.name:
        raise ValueError("Engine name cannot be empty")
    if not cfg.engine_address:
        raise ValueError("Engine address cannot be empty")
    if cfg.oracle_timeout <= 0:
        raise ValueError(f"Oracle timeout must be positive, got {cfg.oracle_timeout}")
    if not cfg.collateral:
        raise ValueError("At least one collateral asset must be configured")

    seen = set()
    for entry in cfg.collateral:
        if not entry.token:
            raise ValueError("Collateral entry has no token")
        if not entry.feed:
            raise ValueError(f"Collateral '{entry.token}' has no price feed")
        if entry.token in seen:
            raise ValueError(f"Collateral '{entry.token}' configured twice")
        seen.add(entry.token)


def build_engine(
    config: EngineConfig,
    chain: Chain,
    feeds: Mapping[str, PriceFeed],
    debt_token: DebtTokenLike,
):
    """
    Wire a CollateralEngine from a loaded configuration.

    Applies the configured log level to the root logger before building.

    Args:
        config: Validated engine configuration
        chain: Chain on which every collateral token is registered
        feeds: Price feeds by the names used in the configuration
        debt_token: The engine's debt token

    Raises:
        ValueError: If a configured feed name is not in feeds
    """
    from .engine import CollateralEngine

    missing = [c.feed for c in config.collateral if c.feed not in feeds]
    if missing:
        raise ValueError(f"Unknown price feed(s): {', '.join(missing)}")

    configure_logging(config.log_level)

    engine = CollateralEngine(
        chain,
        config.token_addresses,
        [feeds[c.feed] for c in config.collateral],
        debt_token,
        address=config.engine_address,
        oracle_timeout=config.oracle_timeout,
        verbose=config.verbose,
    )
    logger.info("Engine %s built with collateral %s", config.name, ", ".join(config.token_addresses))
    return engine
