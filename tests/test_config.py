import pytest

from wealth_manager.config import Settings, get_chain_config, load_env_files
from wealth_manager.errors import ConfigError

ENV_KEYS = [
    "APP_ENV", "LOG_LEVEL", "LOG_JSON", "AVALANCHE_RPC_URL", "CHAIN_ID", "YIELD_OPTIMIZER_ADDRESS",
    "DEFILLAMA_YIELDS_URL", "NATIVE_PRICE_TICKER", "PRICE_CACHE_DIR", "MIN_PORTFOLIO_VALUE_USD",
    "DEFAULT_CHECK_INTERVAL_MINUTES", "CORS_ORIGINS",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    # set-then-delete registers every key, so values loaded from .env files are undone too
    for key in ENV_KEYS:
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)


def test_defaults():
    s = Settings.from_env(load_files=False)
    assert s.app_env == "development"
    assert s.chain_id == 43114
    assert s.chain.name == "Avalanche C-Chain"
    assert s.min_portfolio_value_usd == 100.0
    assert s.cors_origins == ["*"]
    assert not s.is_production


def test_overrides_from_environment(monkeypatch):
    monkeypatch.setenv("CHAIN_ID", "43113")
    monkeypatch.setenv("LOG_JSON", "true")
    monkeypatch.setenv("MIN_PORTFOLIO_VALUE_USD", "250")
    monkeypatch.setenv("CORS_ORIGINS", "https://app.example, https://admin.example")
    s = Settings.from_env(load_files=False)
    assert s.chain.name == "Avalanche Fuji Testnet"
    assert s.log_json is True
    assert s.min_portfolio_value_usd == 250.0
    assert s.cors_origins == ["https://app.example", "https://admin.example"]


def test_production_requires_contract(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    with pytest.raises(ConfigError, match="YIELD_OPTIMIZER_ADDRESS"):
        Settings.from_env(load_files=False)

    monkeypatch.setenv("YIELD_OPTIMIZER_ADDRESS", "0x" + "ab" * 20)
    assert Settings.from_env(load_files=False).is_production


@pytest.mark.parametrize("key,value", [
    ("CHAIN_ID", "1"),
    ("CHAIN_ID", "avalanche"),
    ("MIN_PORTFOLIO_VALUE_USD", "lots"),
    ("DEFAULT_CHECK_INTERVAL_MINUTES", "0"),
])
def test_invalid_values(monkeypatch, key, value):
    monkeypatch.setenv(key, value)
    with pytest.raises(ConfigError):
        Settings.from_env(load_files=False)


def test_unknown_chain():
    with pytest.raises(ConfigError, match="Unsupported chain ID: 5"):
        get_chain_config(5)


def test_env_files_layering(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / ".env").write_text("LOG_LEVEL=WARNING\nCHAIN_ID=43113\n")
    (tmp_path / ".env.staging").write_text("MIN_PORTFOLIO_VALUE_USD=500\n")
    load_env_files("staging")
    s = Settings.from_env(load_files=False)
    assert s.log_level == "WARNING"
    assert s.chain_id == 43113
    assert s.min_portfolio_value_usd == 500.0
