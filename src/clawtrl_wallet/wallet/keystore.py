"""Private key resolution from ``.env`` files and the process environment."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Mapping

from dotenv import dotenv_values

from clawtrl_wallet.errors import KeyResolutionError

logger = logging.getLogger("clawtrl_wallet.wallet.keystore")

DEFAULT_KEY_ENV_VAR = "AGENT_WALLET_PRIVATE_KEY"

# Searched in order; root installs first, then per-user, then the cwd.
DEFAULT_ENV_FILES: list[str] = [
    "/opt/openclaw/.env",
    "~/.clawtrl/.env",
    "~/.env",
    ".env",
]

_PRIVATE_KEY_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


def load_env_file(path: Path) -> dict[str, str]:
    """Read a ``.env`` file with python-dotenv.

    Keys without a value are dropped. An unreadable or missing file yields
    an empty dict.
    """
    try:
        values = dotenv_values(path)
    except OSError:
        return {}
    return {key: value.strip() for key, value in values.items() if value is not None}


def resolve_private_key(
    env_files: list[str] | None = None,
    env_var: str = DEFAULT_KEY_ENV_VAR,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Find the account private key.

    Parameters
    ----------
    env_files:
        Candidate ``.env`` paths, tried in order. ``~`` is expanded.
        Defaults to :data:`DEFAULT_ENV_FILES`.
    env_var:
        Variable name to look up, both inside the files and in *environ*.
    environ:
        Process environment fallback. Defaults to ``os.environ``.

    Returns
    -------
    str
        The ``0x``-prefixed 32-byte hex key.

    Raises
    ------
    KeyResolutionError
        If no location provides the key, or the value found is malformed.
        The error lists every location that was searched.
    """
    if env_files is None:
        env_files = DEFAULT_ENV_FILES
    if environ is None:
        environ = os.environ

    searched = [*env_files, f"${env_var}"]
    key: str | None = None
    source = ""
    for candidate in env_files:
        path = Path(candidate).expanduser()
        value = load_env_file(path).get(env_var)
        if value:
            key, source = value, str(path)
            break

    if key is None and environ.get(env_var):
        key, source = environ[env_var], f"${env_var}"

    if key is None:
        raise KeyResolutionError(
            f"{env_var} not found. Searched: {', '.join(searched)}",
            searched=searched,
        )
    if not _PRIVATE_KEY_RE.match(key):
        raise KeyResolutionError(
            f"{env_var} from {source} is invalid: expected 0x followed by 64 hex "
            f"characters. Searched: {', '.join(searched)}",
            searched=searched,
        )

    logger.info(f"Loaded {env_var} from {source}")
    return key
