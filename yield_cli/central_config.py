"""
Project Configuration — version, constants, settings loader
===========================================================

Settings come from an optional YAML file (``yield.yaml`` in the working
directory or ``$YIELD_CLI_CONFIG``) with ``${ENV}`` interpolation after
loading ``.env``. Everything has a working default so the CLI runs with no
file at all.

Example yield.yaml:

    network: megaeth
    eth_price_usd: 3100
    log_from_block: 0
    rpc_urls:
      megaeth: ${MEGAETH_RPC_URL}
    anchors:
      "0xfafddbb3fc7688494971a79cc65dca3ef82079e7": 1.0
    protocols:
      - name: MyVault
        kind: erc4626
        vault: "0x..."
        apy_estimate: 6
        underlying: {address: "0x...", symbol: USDC, decimals: 6, price_usd: 1.0}
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from importlib.metadata import version, PackageNotFoundError
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import load_dotenv

from yield_cli.anchors import DEFAULT_ETH_PRICE_USD, default_anchors
from yield_cli.protocol_registry import (
    BUILTIN_PROTOCOLS,
    ProtocolConfig,
    parse_protocol,
)
from yield_cli.rpc_helpers import RPC_URLS

logger = logging.getLogger(__name__)

# Version — single source of truth is pyproject.toml
try:
    PROJECT_VERSION = version("yield-cli")
except PackageNotFoundError:
    # Dev / CI: package not installed — read pyproject.toml directly
    _toml = Path(__file__).resolve().parent.parent / "pyproject.toml"
    _m = (
        re.search(r'version\s*=\s*"([^"]+)"', _toml.read_text())
        if _toml.exists()
        else None
    )
    PROJECT_VERSION = _m.group(1) if _m else "0.0.0-dev"
PROJECT_NAME = "Yield CLI"

# ── Named Constants ──────────────────────────────────────────────────────

SECONDS_PER_DAY = 86_400
DAYS_PER_YEAR = 365

# Entry timestamp when no mint event is discoverable: one day ago
ENTRY_FALLBACK_SECONDS = SECONDS_PER_DAY

# Balance probe target; a healthy contract answers balanceOf for it
PROBE_ADDRESS = "0x0000000000000000000000000000000000000001"

DEFAULT_CONFIG_FILE = "yield.yaml"


# ── Settings ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Settings:
    """Resolved runtime settings shared by readers, scanner and CLI."""

    network: str = "megaeth"
    rpc_urls: Dict[str, str] = field(default_factory=lambda: dict(RPC_URLS))
    protocols: Tuple[ProtocolConfig, ...] = BUILTIN_PROTOCOLS
    anchors: Dict[str, float] = field(default_factory=default_anchors)
    eth_price_usd: float = DEFAULT_ETH_PRICE_USD
    log_from_block: int = 0
    timeout: int = 20

    def rpc_url_for(self, network: str) -> str:
        if network not in self.rpc_urls:
            raise ValueError(
                f"Unsupported network: {network}. "
                f"Available: {list(self.rpc_urls.keys())}"
            )
        return self.rpc_urls[network]

    def enabled_protocols(self) -> Tuple[ProtocolConfig, ...]:
        return tuple(p for p in self.protocols if p.enabled)


# ── Env interpolation ────────────────────────────────────────────────────

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


def _build_settings(raw: Dict[str, Any], eth_price_usd: Optional[float]) -> Settings:
    eth_price = float(
        eth_price_usd if eth_price_usd is not None
        else raw.get("eth_price_usd", DEFAULT_ETH_PRICE_USD)
    )

    rpc_urls = dict(RPC_URLS)
    # Empty values (unset env vars) keep the public default
    rpc_urls.update({k: v for k, v in (raw.get("rpc_urls") or {}).items() if v})

    anchors = default_anchors(eth_price)
    for addr, price in (raw.get("anchors") or {}).items():
        anchors[str(addr).lower()] = float(price)

    user_protocols = tuple(parse_protocol(p) for p in raw.get("protocols") or [])
    builtin_names = {p.name for p in user_protocols}
    # A user entry with a built-in's name replaces it
    protocols = tuple(
        p for p in BUILTIN_PROTOCOLS if p.name not in builtin_names
    ) + user_protocols

    return Settings(
        network=raw.get("network", "megaeth"),
        rpc_urls=rpc_urls,
        protocols=protocols,
        anchors=anchors,
        eth_price_usd=eth_price,
        log_from_block=int(raw.get("log_from_block", 0)),
        timeout=int(raw.get("timeout", 20)),
    )


def _validate(settings: Settings) -> None:
    """Raise on invalid settings."""
    if settings.eth_price_usd < 0:
        raise ValueError("eth_price_usd must be non-negative")
    if settings.log_from_block < 0:
        raise ValueError("log_from_block must be non-negative")
    for proto in settings.protocols:
        if proto.network not in settings.rpc_urls:
            raise ValueError(
                f"Protocol '{proto.name}' references unknown network '{proto.network}'"
            )


def load_settings(
    config_path: str | Path | None = None,
    eth_price_usd: Optional[float] = None,
) -> Settings:
    """Load settings from YAML + .env, falling back to built-in defaults.

    Args:
        config_path: Explicit YAML path. A missing explicit path raises
            FileNotFoundError; the implicit default file is optional.
        eth_price_usd: Overrides the file's ETH anchor price.
    """
    load_dotenv()

    explicit = config_path is not None or "YIELD_CLI_CONFIG" in os.environ
    if config_path is None:
        config_path = os.environ.get("YIELD_CLI_CONFIG", DEFAULT_CONFIG_FILE)
    config_path = Path(config_path)

    raw: Dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            try:
                raw = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ValueError(f"{config_path} must contain a mapping at the top level")
        raw = _interpolate_env(raw)
        logger.info("Settings loaded from %s", config_path)
    elif explicit:
        raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        logger.debug("No %s found, using built-in settings", config_path)

    settings = _build_settings(raw, eth_price_usd)
    _validate(settings)
    return settings


def configure_logging(verbose: bool = False) -> None:
    """Basic stderr logging for the CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)
