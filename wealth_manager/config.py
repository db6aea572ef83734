from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dotenv import load_dotenv

from .errors import ConfigError


@dataclass(frozen=True)
class ChainConfig:
    chain_id: int
    name: str
    block_explorer: str
    native_symbol: str = "AVAX"
    native_decimals: int = 18


CHAINS: Dict[int, ChainConfig] = {
    43114: ChainConfig(43114, "Avalanche C-Chain", "https://snowtrace.io"),
    43113: ChainConfig(43113, "Avalanche Fuji Testnet", "https://testnet.snowtrace.io"),
}


def get_chain_config(chain_id: int) -> ChainConfig:
    try:
        return CHAINS[chain_id]
    except KeyError:
        raise ConfigError(f"Unsupported chain ID: {chain_id}") from None


def load_env_files(env_name: str) -> None:
    # base, then environment specific, then local overrides; existing vars win
    load_dotenv(".env")
    for path in (f".env.{env_name}", ".env.local"):
        if os.path.exists(path):
            load_dotenv(path)


def _env_int(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from None


def _env_float(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from None


def _env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    app_env: str = "development"
    log_level: str = "INFO"
    log_json: bool = False

    rpc_url: str = "https://api.avax.network/ext/bc/C/rpc"
    chain_id: int = 43114
    yield_optimizer_address: Optional[str] = None

    defillama_yields_url: str = "https://yields.llama.fi"
    native_price_ticker: str = "AVAX-USD"
    price_cache_dir: str = ".cache_prices"

    min_portfolio_value_usd: float = 100.0
    default_check_interval_minutes: int = 60
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @property
    def chain(self) -> ChainConfig:
        return get_chain_config(self.chain_id)

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @classmethod
    def from_env(cls, load_files: bool = True) -> "Settings":
        app_env = os.getenv("APP_ENV", "development")
        if load_files:
            load_env_files(app_env)

        origins = os.getenv("CORS_ORIGINS", "*")
        settings = cls(
            app_env=os.getenv("APP_ENV", app_env),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=_env_bool("LOG_JSON", False),
            rpc_url=os.getenv("AVALANCHE_RPC_URL", cls.rpc_url),
            chain_id=_env_int("CHAIN_ID", 43114),
            yield_optimizer_address=os.getenv("YIELD_OPTIMIZER_ADDRESS") or None,
            defillama_yields_url=os.getenv("DEFILLAMA_YIELDS_URL", cls.defillama_yields_url),
            native_price_ticker=os.getenv("NATIVE_PRICE_TICKER", cls.native_price_ticker),
            price_cache_dir=os.getenv("PRICE_CACHE_DIR", cls.price_cache_dir),
            min_portfolio_value_usd=_env_float("MIN_PORTFOLIO_VALUE_USD", 100.0),
            default_check_interval_minutes=_env_int("DEFAULT_CHECK_INTERVAL_MINUTES", 60),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        get_chain_config(self.chain_id)
        if self.default_check_interval_minutes <= 0:
            raise ConfigError("DEFAULT_CHECK_INTERVAL_MINUTES must be positive")
        if self.min_portfolio_value_usd < 0:
            raise ConfigError("MIN_PORTFOLIO_VALUE_USD must be non-negative")
        if self.is_production and not self.yield_optimizer_address:
            raise ConfigError("YIELD_OPTIMIZER_ADDRESS is required in production")
