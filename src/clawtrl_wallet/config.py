"""Configuration system for the clawtrl signing proxy.

Settings come from an optional ``config.yaml`` (``~/.clawtrl/config.yaml``
by default) with environment variable expansion. The private key itself is
never stored here; it is resolved from ``.env`` files or the environment by
:mod:`clawtrl_wallet.wallet.keystore`.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from clawtrl_wallet.wallet.chains import list_chain_names
from clawtrl_wallet.wallet.keystore import DEFAULT_ENV_FILES, DEFAULT_KEY_ENV_VAR


# ---------------------------------------------------------------------------
# Environment-variable expansion helper
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")


def _expand_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with their environment values.

    If the variable is not set the placeholder is left as-is so that
    validation can catch it later.
    """

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))

    return _ENV_VAR_RE.sub(_replace, value)


def _expand_env_recursive(obj: object) -> object:
    """Walk an arbitrary nested structure and expand env vars in strings."""
    if isinstance(obj, str):
        return _expand_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _expand_env_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# Pydantic v2 models
# ---------------------------------------------------------------------------


class ServerConfig(BaseModel):
    """Where the proxy listens. Keep it on loopback."""

    host: str = "127.0.0.1"
    port: int = 8128


class PaymentConfig(BaseModel):
    """x402 payment settings."""

    protocols: list[str] = Field(default_factory=lambda: ["v2", "v1"])  # priority order
    max_amount: int = 100_000       # base units per payment (0.10 USDC)
    validity_seconds: int = 600     # used when the server gives no maxTimeoutSeconds

    @field_validator("protocols")
    @classmethod
    def _known_protocols(cls, value: list[str]) -> list[str]:
        unknown = [p for p in value if p not in ("v2", "v1")]
        if unknown:
            raise ValueError(f"Unknown payment protocols {unknown}; use 'v2' and/or 'v1'")
        if len(set(value)) != len(value):
            raise ValueError("Payment protocols must not repeat")
        return value


class FetchConfig(BaseModel):
    """Outbound HTTP client settings for /fetch."""

    timeout_seconds: float = 30.0
    user_agent: str = "clawtrl-wallet/0.1"


class ProxyConfig(BaseModel):
    """Root configuration for one proxy instance (one account, one chain)."""

    chain: str = "base"
    rpc_url: Optional[str] = None  # overrides the chain's default endpoint
    key_env_var: str = DEFAULT_KEY_ENV_VAR
    env_files: list[str] = Field(default_factory=lambda: list(DEFAULT_ENV_FILES))
    server: ServerConfig = Field(default_factory=ServerConfig)
    payments: PaymentConfig = Field(default_factory=PaymentConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)

    @field_validator("chain")
    @classmethod
    def _known_chain(cls, value: str) -> str:
        if value not in list_chain_names():
            raise ValueError(f"Unknown chain '{value}'. Available: {list_chain_names()}")
        return value


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------

CONFIG_ENV_VAR = "CLAWTRL_CONFIG"


def default_config_path() -> Path:
    """Return ``~/.clawtrl/config.yaml`` (which may not exist)."""
    return Path.home() / ".clawtrl" / "config.yaml"


def load_config(path: Path) -> ProxyConfig:
    """Load and validate a proxy configuration from a YAML file.

    Environment variable placeholders (``${VAR}``) are expanded before
    validation.
    """
    raw_text = path.read_text(encoding="utf-8")
    raw_data = yaml.safe_load(raw_text) or {}
    expanded = _expand_env_recursive(raw_data)
    return ProxyConfig.model_validate(expanded)


def resolve_config(path: Path | None = None) -> ProxyConfig:
    """Load the config from *path*, ``$CLAWTRL_CONFIG``, or the default location.

    An explicitly given path must exist. The default location is optional;
    when it is absent the built-in defaults are used.
    """
    if path is None and os.environ.get(CONFIG_ENV_VAR):
        path = Path(os.environ[CONFIG_ENV_VAR])
    if path is not None:
        path = path.expanduser()
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        return load_config(path)

    default = default_config_path()
    if default.exists():
        return load_config(default)
    return ProxyConfig()


def save_config(config: ProxyConfig, path: Path) -> None:
    """Serialize a :class:`ProxyConfig` to a YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="python", exclude_none=True)
    with open(path, "w", encoding="utf-8") as fh:
        yaml.dump(data, fh, default_flow_style=False, sort_keys=False)
