"""Unit tests for config loading, env interpolation, validation and engine wiring."""
from __future__ import annotations

import logging
from pathlib import Path

import pytest

from collateral_engine import (
    Chain, ERC20Token, DebtToken, MockPriceFeed, CollateralEngine,
    EngineConfig, CollateralConfig, load_config, build_engine, ORACLE_TIMEOUT,
)
from collateral_engine.config import _interpolate_env, _validate


SAMPLE_YAML = """\
engine:
  name: dsc
  address: vault
  verbose: true
  oracle_timeout: 3600
  log_level: DEBUG
collateral:
  - token: WETH
    feed: ETH/USD
  - token: WBTC
    feed: BTC/USD
"""


@pytest.fixture
def sample_yaml_path(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(SAMPLE_YAML)
    return path


class TestInterpolateEnv:
    def test_simple_substitution(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MY_VAR", "hello")
        assert _interpolate_env("${MY_VAR}") == "hello"

    def test_missing_var_becomes_empty(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NONEXISTENT_VAR_XYZ", raising=False)
        assert _interpolate_env("${NONEXISTENT_VAR_XYZ}") == ""

    def test_nested_structures(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TOK", "WETH")
        result = _interpolate_env({"collateral": [{"token": "${TOK}", "feed": "ETH/USD"}]})
        assert result == {"collateral": [{"token": "WETH", "feed": "ETH/USD"}]}

    def test_non_string_passthrough(self) -> None:
        assert _interpolate_env(42) == 42
        assert _interpolate_env(True) is True


class TestLoadConfig:
    def test_loads_valid_yaml(self, sample_yaml_path: Path) -> None:
        cfg = load_config(sample_yaml_path)
        assert isinstance(cfg, EngineConfig)
        assert cfg.name == "dsc"
        assert cfg.engine_address == "vault"
        assert cfg.verbose is True
        assert cfg.oracle_timeout == 3600
        assert cfg.log_level == "DEBUG"
        assert cfg.collateral == (
            CollateralConfig("WETH", "ETH/USD"),
            CollateralConfig("WBTC", "BTC/USD"),
        )
        assert cfg.token_addresses == ["WETH", "WBTC"]

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nonexistent.yaml")

    def test_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("collateral:\n  - token: WETH\n    feed: ETH/USD\n")
        cfg = load_config(path)
        assert cfg.oracle_timeout == ORACLE_TIMEOUT
        assert cfg.verbose is False
        assert cfg.engine_address == "engine"
        assert cfg.log_level == "INFO"

    def test_env_interpolation_in_yaml(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("ENGINE_VERBOSE", "false")
        monkeypatch.setenv("ENGINE_TIMEOUT", "600")
        monkeypatch.setenv("COLLATERAL_TOKEN", "WETH")
        path = tmp_path / "config.yaml"
        path.write_text(
            "engine:\n"
            "  verbose: ${ENGINE_VERBOSE}\n"
            "  oracle_timeout: ${ENGINE_TIMEOUT}\n"
            "collateral:\n"
            "  - token: ${COLLATERAL_TOKEN}\n"
            "    feed: ETH/USD\n"
        )
        cfg = load_config(path)
        assert cfg.verbose is False
        assert cfg.oracle_timeout == 600
        assert cfg.collateral[0].token == "WETH"

    def test_duplicate_collateral_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            "collateral:\n"
            "  - {token: WETH, feed: ETH/USD}\n"
            "  - {token: WETH, feed: ETH/USD}\n"
        )
        with pytest.raises(ValueError, match="twice"):
            load_config(path)

    def test_no_collateral_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("engine:\n  name: dsc\n")
        with pytest.raises(ValueError, match="collateral"):
            load_config(path)


class TestValidate:
    def _cfg(self, **overrides) -> EngineConfig:
        fields = dict(collateral=(CollateralConfig("WETH", "ETH/USD"),))
        fields.update(overrides)
        return EngineConfig(**fields)

    def test_valid(self) -> None:
        _validate(self._cfg())

    def test_non_positive_timeout(self) -> None:
        with pytest.raises(ValueError, match="timeout"):
            _validate(self._cfg(oracle_timeout=0))

    def test_empty_name(self) -> None:
        with pytest.raises(ValueError):
            _validate(self._cfg(name=""))

    def test_missing_feed(self) -> None:
        with pytest.raises(ValueError, match="price feed"):
            _validate(self._cfg(collateral=(CollateralConfig("WETH", ""),)))


def _sample_feeds(chain: Chain) -> dict:
    ERC20Token(chain, "WETH", "Wrapped Ether")
    ERC20Token(chain, "WBTC", "Wrapped Bitcoin")
    return {
        "ETH/USD": MockPriceFeed(chain, 8, 2000_00000000),
        "BTC/USD": MockPriceFeed(chain, 8, 1000_00000000),
    }


@pytest.mark.usefixtures("root_log_level")
class TestBuildEngine:
    def test_wires_engine(self, sample_yaml_path: Path) -> None:
        cfg = load_config(sample_yaml_path)
        chain = Chain("cfg")
        feeds = _sample_feeds(chain)
        engine = build_engine(cfg, chain, feeds, DebtToken(chain))
        assert isinstance(engine, CollateralEngine)
        assert engine.address == "vault"
        assert engine.verbose is True
        assert engine.oracle.timeout == 3600
        assert engine.get_collateral_tokens() == ["WETH", "WBTC"]
        assert engine.get_collateral_token_price_feed("WBTC") is feeds["BTC/USD"]

    def test_unknown_feed(self, sample_yaml_path: Path) -> None:
        cfg = load_config(sample_yaml_path)
        chain = Chain("cfg")
        with pytest.raises(ValueError, match="BTC/USD"):
            build_engine(cfg, chain, {"ETH/USD": MockPriceFeed(chain, 8, 1)}, DebtToken(chain))

    def test_applies_configured_log_level(self, sample_yaml_path: Path) -> None:
        logging.getLogger().setLevel(logging.WARNING)
        cfg = load_config(sample_yaml_path)
        chain = Chain("cfg")
        build_engine(cfg, chain, _sample_feeds(chain), DebtToken(chain))
        assert logging.getLogger().level == logging.DEBUG

    def test_quiet_level_hides_engine_info(self, caplog: pytest.LogCaptureFixture) -> None:
        cfg = EngineConfig(
            name="dsc",
            collateral=(CollateralConfig("WETH", "ETH/USD"), CollateralConfig("WBTC", "BTC/USD")),
            verbose=True,
            log_level="WARNING",
        )
        chain = Chain("cfg")
        engine = build_engine(cfg, chain, _sample_feeds(chain), DebtToken(chain))
        weth = chain.get_token("WETH")
        weth.mint_to("alice", 1)
        weth.approve("alice", engine.address, 1)
        engine.deposit_collateral("alice", "WETH", 1)
        assert logging.getLogger().level == logging.WARNING
        assert "APPLIED" not in caplog.text
