"""Configuration system for wallet-core.

Loads wallet config from `.wallet-core/<wallet>/config.yaml`, supports
environment variable expansion, and merges configured networks over the
built-in chain table.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from wallet_core.errors import ValidationError
from wallet_core.wallet.chains import CHAINS, Chain, Token


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


class TokenConfig(BaseModel):
    """An ERC-20 token the wallet knows about."""

    symbol: str
    address: str
    decimals: int = 18


class NetworkConfig(BaseModel):
    """Overrides (or additions) for one EVM network."""

    chain_id: Optional[int] = None
    rpc_url: Optional[str] = None
    native_symbol: Optional[str] = None
    decimals: Optional[int] = None
    explorer_url: Optional[str] = None
    explorer_api_url: Optional[str] = None
    entry_point: Optional[str] = None  # ERC-4337 EntryPoint, optional
    testnet: Optional[bool] = None
    tokens: list[TokenConfig] = Field(default_factory=list)


class RpcConfig(BaseModel):
    """Node connection behaviour."""

    timeout_seconds: float = 15.0
    transport_retries: int = 1  # extra attempts after a transport failure


class SessionConfig(BaseModel):
    """Per-user session lifetime."""

    idle_timeout_seconds: int = 1800


class ExplorerConfig(BaseModel):
    """Block-explorer (Etherscan-compatible) settings."""

    api_key: str = ""  # ${ETHERSCAN_API_KEY}
    page_size: int = 50


class ApiConfig(BaseModel):
    """HTTP API server settings."""

    host: str = "127.0.0.1"
    port: int = 3001


class WalletCoreConfig(BaseModel):
    """Root configuration object for one wallet identity."""

    name: str = "default"
    default_chain: str = "sepolia"
    required_chains: list[str] = Field(default_factory=lambda: ["sepolia"])
    networks: dict[str, NetworkConfig] = Field(default_factory=dict)
    rpc: RpcConfig = Field(default_factory=RpcConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    explorer: ExplorerConfig = Field(default_factory=ExplorerConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)


# ---------------------------------------------------------------------------
# Chain resolution
# ---------------------------------------------------------------------------


def resolve_chain(config: WalletCoreConfig, name: str) -> Chain:
    """Return the effective :class:`Chain` for ``name``.

    Built-in chains are overlaid with any ``networks`` entry of the same
    name; a network that is not built in must at least give ``chain_id``
    and ``rpc_url``.
    """
    key = name.strip().lower()
    base = CHAINS.get(key)
    override = config.networks.get(key)

    if base is None and override is None:
        raise ValidationError(
            f"Unknown chain '{name}'. Available: {list_configured_chains(config)}"
        )
    if override is None:
        return base

    if base is None:
        if override.chain_id is None or not override.rpc_url:
            raise ValidationError(
                f"Network '{key}' needs at least chain_id and rpc_url in config.yaml"
            )
        base = Chain(
            name=key,
            chain_id=override.chain_id,
            rpc_url=override.rpc_url,
            native_symbol=override.native_symbol or "ETH",
            explorer_url=override.explorer_url or "",
        )

    tokens = tuple(
        Token(symbol=t.symbol, address=t.address, decimals=t.decimals)
        for t in override.tokens
    )
    return Chain(
        name=key,
        chain_id=override.chain_id if override.chain_id is not None else base.chain_id,
        rpc_url=override.rpc_url or base.rpc_url,
        native_symbol=override.native_symbol or base.native_symbol,
        explorer_url=override.explorer_url or base.explorer_url,
        explorer_api_url=override.explorer_api_url or base.explorer_api_url,
        decimals=override.decimals if override.decimals is not None else base.decimals,
        tokens=tokens or base.tokens,
        entry_point=override.entry_point or base.entry_point,
        testnet=override.testnet if override.testnet is not None else base.testnet,
    )


def list_configured_chains(config: WalletCoreConfig) -> list[str]:
    """Built-in chain names plus any extra configured networks."""
    names = list(CHAINS.keys())
    names.extend(n for n in config.networks if n not in CHAINS)
    return names


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def slugify(name: str) -> str:
    """Convert a wallet name to a filesystem-safe slug.

    ``"My Wallet"`` → ``"my-wallet"``, ``""`` → ``"default"``.
    """
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "default"


def get_root_dir(base: Path | None = None) -> Path:
    """Return the ``.wallet-core/`` root directory (no auto-create)."""
    if base is None:
        base = Path.cwd()
    return base / ".wallet-core"


def get_wallet_dir(
    wallet: str = "default",
    base: Path | None = None,
    *,
    create: bool = True,
) -> Path:
    """Return the directory for one wallet identity, e.g. ``.wallet-core/<slug>/``.

    Parameters
    ----------
    wallet:
        Wallet slug (e.g. ``"default"``, ``"savings"``).
    base:
        Parent directory that contains (or will contain) the
        ``.wallet-core/`` folder.  Defaults to the current working
        directory.
    create:
        If *True* (default), create the directory tree if it doesn't exist.
        Pass *False* for read-only lookups.
    """
    wallet_dir = get_root_dir(base) / slugify(wallet)
    if create:
        wallet_dir.mkdir(parents=True, exist_ok=True)
    return wallet_dir


def list_wallets(base: Path | None = None) -> list[str]:
    """Return slugs of all wallets (subdirs containing ``config.yaml``)."""
    root = get_root_dir(base)
    if not root.is_dir():
        return []
    return sorted(
        d.name
        for d in root.iterdir()
        if d.is_dir() and (d / "config.yaml").exists()
    )


def load_config(path: Path) -> WalletCoreConfig:
    """Load and validate a wallet configuration from a YAML file.

    Environment variable placeholders (``${VAR}``) are expanded before
    validation. A missing file yields the defaults.
    """
    if not path.exists():
        return WalletCoreConfig()
    raw_text = path.read_text(encoding="utf-8")
    raw_data = yaml.safe_load(raw_text) or {}
    expanded = _expand_env_recursive(raw_data)
    return WalletCoreConfig.model_validate(expanded)


def save_config(config: WalletCoreConfig, path: Path) -> None:
    """Serialize a :class:`WalletCoreConfig` to a YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="python", exclude_none=True)
    with open(path, "w", encoding="utf-8") as fh:
        yaml.dump(data, fh, default_flow_style=False, sort_keys=False)
