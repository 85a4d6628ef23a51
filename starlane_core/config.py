"""
TOML-based configuration for Starlane clients.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from starlane_core.config import load_config
    cfg = load_config("starlane.toml")
    broadcaster = Broadcaster.from_config(cfg)
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from starlane_core.coin import Coin, Fee
from starlane_core.hd_keys import COSMOS_PATH


@dataclass
class NodeConfig:
    """Node endpoint and transport retry policy."""
    url: str = "http://127.0.0.1:1317"
    timeout: float = 10.0
    max_retries: int = 3
    backoff: float = 0.5          # first retry delay, doubled each attempt


@dataclass
class ChainConfig:
    """Target chain identity and transaction defaults."""
    chain_id: str = "cosmoshub-4"
    prefix: str = "cosmos"
    fee_denom: str = "uatom"
    fee_amount: int = 5_000
    gas_limit: int = 200_000
    derivation_path: str = COSMOS_PATH

    def default_fee(self) -> Fee:
        """Fee used when a send does not name one."""
        return Fee([Coin(self.fee_amount, self.fee_denom)], self.gas_limit)


@dataclass
class BroadcastConfig:
    """Submission and confirmation settings."""
    poll_interval: float = 1.0
    confirm_timeout: float = 60.0
    mempool_retries: int = 3


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class StarlaneConfig:
    """Top-level configuration container."""
    node: NodeConfig = field(default_factory=NodeConfig)
    chain: ChainConfig = field(default_factory=ChainConfig)
    broadcast: BroadcastConfig = field(default_factory=BroadcastConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def load_config(path: str | None = None) -> StarlaneConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        STARLANE_NODE_URL       -> node.url
        STARLANE_NODE_TIMEOUT   -> node.timeout
        STARLANE_MAX_RETRIES    -> node.max_retries
        STARLANE_CHAIN_ID       -> chain.chain_id
        STARLANE_PREFIX         -> chain.prefix
        STARLANE_FEE_DENOM      -> chain.fee_denom
        STARLANE_FEE_AMOUNT     -> chain.fee_amount
        STARLANE_GAS_LIMIT      -> chain.gas_limit
        STARLANE_HD_PATH        -> chain.derivation_path
        STARLANE_POLL_INTERVAL  -> broadcast.poll_interval
        STARLANE_CONFIRM_TIMEOUT -> broadcast.confirm_timeout
        STARLANE_LOG_LEVEL      -> logging.level
        STARLANE_LOG_FMT        -> logging.format
        STARLANE_LOG_FILE       -> logging.file
    """
    cfg = StarlaneConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("node", cfg.node),
                ("chain", cfg.chain),
                ("broadcast", cfg.broadcast),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("STARLANE_NODE_URL"):
        cfg.node.url = v
    if v := os.environ.get("STARLANE_NODE_TIMEOUT"):
        cfg.node.timeout = float(v)
    if v := os.environ.get("STARLANE_MAX_RETRIES"):
        cfg.node.max_retries = int(v)
    if v := os.environ.get("STARLANE_CHAIN_ID"):
        cfg.chain.chain_id = v
    if v := os.environ.get("STARLANE_PREFIX"):
        cfg.chain.prefix = v
    if v := os.environ.get("STARLANE_FEE_DENOM"):
        cfg.chain.fee_denom = v
    if v := os.environ.get("STARLANE_FEE_AMOUNT"):
        cfg.chain.fee_amount = int(v)
    if v := os.environ.get("STARLANE_GAS_LIMIT"):
        cfg.chain.gas_limit = int(v)
    if v := os.environ.get("STARLANE_HD_PATH"):
        cfg.chain.derivation_path = v
    if v := os.environ.get("STARLANE_POLL_INTERVAL"):
        cfg.broadcast.poll_interval = float(v)
    if v := os.environ.get("STARLANE_CONFIRM_TIMEOUT"):
        cfg.broadcast.confirm_timeout = float(v)
    if v := os.environ.get("STARLANE_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("STARLANE_LOG_FMT"):
        cfg.logging.format = v
    if v := os.environ.get("STARLANE_LOG_FILE"):
        cfg.logging.file = v

    return cfg
