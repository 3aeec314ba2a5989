"""Configuration loader — reads config.yaml, validates with Pydantic.

Two sections: ``ledger`` (the fetch contract served by the RPC service) and
``relayer`` (the off-ledger worker). The relayer can also be configured
purely from environment variables, see ``RelayerConfig.from_env``.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 300_000
MAX_ARGUMENT_BYTES = 4 * 1024 * 1024


class LedgerConfig(BaseModel):
    """The fetch contract. ``trusted_relayer`` is fixed for the life of the ledger."""

    contract_id: str = "fetcher.local"
    trusted_relayer: str
    continuation_timeout_secs: float = 200.0
    max_argument_bytes: int = MAX_ARGUMENT_BYTES
    event_log_size: int = 1000

    # Auth & CORS
    access_keys: dict[str, str] = {}  # account id -> access key; empty = dev mode
    allowed_origins: list[str] = ["*"]

    @field_validator("trusted_relayer", "contract_id")
    @classmethod
    def must_not_be_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("account ids must not be empty")
        return v

    @field_validator("continuation_timeout_secs", "max_argument_bytes", "event_log_size")
    @classmethod
    def must_be_positive(cls, v):
        if v <= 0:
            raise ValueError("must be positive")
        return v


class RelayerConfig(BaseModel):
    """Off-ledger worker settings."""

    rpc_url: str
    contract_id: str
    relayer_id: str
    secret_key: str
    poll_interval_secs: int = 5
    chunk_size: int = DEFAULT_CHUNK_SIZE
    http_timeout_secs: float = 30.0

    @field_validator("rpc_url")
    @classmethod
    def must_be_http_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"invalid RPC_URL '{v}': expected an http(s) URL")
        return v.rstrip("/")

    @field_validator("poll_interval_secs")
    @classmethod
    def at_least_one_second(cls, v: int) -> int:
        return max(v, 1)

    @field_validator("chunk_size")
    @classmethod
    def chunk_size_in_range(cls, v: int) -> int:
        if not 0 < v <= MAX_ARGUMENT_BYTES:
            raise ValueError(f"chunk_size must be between 1 and {MAX_ARGUMENT_BYTES}")
        return v

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> RelayerConfig:
        """Build the relayer config from RPC_URL, CONTRACT_ID, RELAYER_ACCOUNT_ID,
        RELAYER_PRIVATE_KEY and the optional POLL_INTERVAL_SECS / CHUNK_SIZE.

        An unparseable POLL_INTERVAL_SECS falls back to the default.
        """
        env = os.environ if environ is None else environ

        def required(name: str) -> str:
            value = env.get(name)
            if not value:
                raise ValueError(f"{name} env var missing")
            return value

        values: dict = {
            "rpc_url": required("RPC_URL"),
            "contract_id": required("CONTRACT_ID"),
            "relayer_id": required("RELAYER_ACCOUNT_ID"),
            "secret_key": required("RELAYER_PRIVATE_KEY"),
        }

        poll = env.get("POLL_INTERVAL_SECS")
        if poll is not None:
            try:
                values["poll_interval_secs"] = int(poll)
            except ValueError:
                logger.warning(f"Ignoring unparseable POLL_INTERVAL_SECS={poll!r}")

        chunk_size = env.get("CHUNK_SIZE")
        if chunk_size is not None:
            values["chunk_size"] = int(chunk_size)

        return cls(**values)


class AppConfig(BaseModel):
    """Top-level configuration file."""

    ledger: LedgerConfig
    relayer: RelayerConfig | None = None


# ---------------------------------------------------------------------------
# Module-level config cache
# ---------------------------------------------------------------------------

_config: AppConfig | None = None


def default_config_path() -> str:
    return os.environ.get("FETCHBRIDGE_CONFIG", "config.yaml")


def load_config(path: str | None = None) -> AppConfig:
    """Read config.yaml from disk, validate, and cache."""
    global _config

    config_file = Path(path or default_config_path())
    if not config_file.exists():
        raise FileNotFoundError(f"Config file not found: {config_file.resolve()}")

    raw = yaml.safe_load(config_file.read_text()) or {}
    _config = AppConfig(**raw)

    logger.info(
        f"Loaded config: contract={_config.ledger.contract_id}, "
        f"trusted_relayer={_config.ledger.trusted_relayer}"
    )
    return _config


def get_config() -> AppConfig:
    """Return cached config. Raises if not yet loaded."""
    if _config is None:
        raise RuntimeError("Config not loaded — call load_config() first")
    return _config
