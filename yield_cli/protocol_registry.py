#!/usr/bin/env python3
"""
Protocol Registry — Vault and V3-Fork Contract Configuration
=============================================================

Every protocol the dashboard reads is one of three shapes:

  erc4626 — a share vault (balanceOf + convertToAssets), e.g. Avon
  univ3   — a Uniswap V3 fork (NonfungiblePositionManager + Factory),
            e.g. Prism, Kumbaya
  aave_v3 — an Aave V3 market read through its PoolDataProvider

The shape is a tagged union resolved once at load time: a raw entry
(from the built-in table or a user's YAML file) becomes a
VaultProtocolConfig, UniV3ProtocolConfig or AaveProtocolConfig, and
portfolio.reader_for() maps that type onto its reader. Nothing downstream
dispatches on strings.

Contract Address Sources (MegaETH mainnet):
  Avon vault          : 0x2eA493384F42d7Ea78564F3EF4C86986eAB4a890
  Prism PositionMgr   : 0xcb91c75a6b29700756d4411495be696c4e9a576e
  Kumbaya PositionMgr : 0x2b781C57e6358f64864Ff8EC464a03Fdaf9974bA

Sepolia:
  Aave V3 PoolDataProvider : 0x3e9708d80f7B3e43118013075F7e95CE3AB31F31
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Tuple, Union

from yield_cli.models import POSITION_TYPES

# Estimated LP APY (percent) by Uniswap V3 fee tier (hundredths of a bip).
# Ref: https://docs.uniswap.org/concepts/protocol/fees
FEE_TIER_APY: Mapping[int, float] = MappingProxyType({
    100: 2.0,
    500: 8.0,
    3000: 15.0,
    10000: 20.0,
})
DEFAULT_LP_APY = 10.0


class ProtocolKind(str, Enum):
    ERC4626 = "erc4626"
    UNIV3 = "univ3"
    AAVE_V3 = "aave_v3"


@dataclass(frozen=True)
class UnderlyingToken:
    """A priced ERC-20: what vault shares redeem into, or an Aave reserve."""

    address: str
    symbol: str
    decimals: int
    price_usd: float


@dataclass(frozen=True)
class VaultProtocolConfig:
    """ERC-4626 share vault."""

    name: str
    vault: str
    underlying: UnderlyingToken
    apy_estimate: float
    network: str = "megaeth"
    position_type: str = "lending"
    # Symbol of the vault share token, and other names it trades under
    share_symbol: str = ""
    output_aliases: Tuple[str, ...] = ()
    enabled: bool = True

    kind = ProtocolKind.ERC4626


@dataclass(frozen=True)
class UniV3ProtocolConfig:
    """Uniswap V3 fork (NonfungiblePositionManager + Factory)."""

    name: str
    position_manager: str
    factory: str
    apy_estimate: float = DEFAULT_LP_APY
    network: str = "megaeth"
    position_type: str = "lp"
    fee_tier_apy: Mapping[int, float] = field(default_factory=lambda: FEE_TIER_APY)
    enabled: bool = True

    kind = ProtocolKind.UNIV3


@dataclass(frozen=True)
class AaveProtocolConfig:
    """Aave V3 lending market, read through its PoolDataProvider."""

    name: str
    data_provider: str
    # Reserves with known decimals and price; any other listed reserve is skipped
    reserves: Tuple[UnderlyingToken, ...]
    network: str = "sepolia"
    position_type: str = "lending"
    # The data provider has no supply timestamp; positions are dated this far back
    assumed_age_days: int = 90
    enabled: bool = True

    kind = ProtocolKind.AAVE_V3


ProtocolConfig = Union[VaultProtocolConfig, UniV3ProtocolConfig, AaveProtocolConfig]


# ── Built-in Protocols ──────────────────────────────────────────────────

AVON = VaultProtocolConfig(
    name="Avon",
    vault="0x2ea493384f42d7ea78564f3ef4c86986eab4a890",
    underlying=UnderlyingToken(
        address="0xfafddbb3fc7688494971a79cc65dca3ef82079e7",
        symbol="USDM",
        decimals=18,
        price_usd=1.0,
    ),
    # Avon exposes no on-chain APY getter; typical stablecoin vault yield
    apy_estimate=8.0,
    share_symbol="USDMy",
    output_aliases=("usdm", "usdmy", "avon-usdm", "ausm"),
)

PRISM = UniV3ProtocolConfig(
    name="Prism",
    position_manager="0xcb91c75a6b29700756d4411495be696c4e9a576e",
    factory="0x1adb8f973373505bb206e0e5d87af8fb1f5514ef",
    apy_estimate=15.0,
)

KUMBAYA = UniV3ProtocolConfig(
    name="Kumbaya",
    position_manager="0x2b781c57e6358f64864ff8ec464a03fdaf9974ba",
    factory="0x68b34591f662508076927803c567cc8006988a09",
    apy_estimate=10.0,
)

# Aave V3 on Sepolia. Testnet faucet tokens carry no market price, so
# each reserve is priced at its mainnet reference value.
AAVE_V3 = AaveProtocolConfig(
    name="Aave V3",
    data_provider="0x3e9708d80f7b3e43118013075f7e95ce3ab31f31",
    reserves=(
        UnderlyingToken("0xff34b3d4aee8ddcd6f9afffb6fe49bd371b8a357", "DAI", 18, 1.0),
        UnderlyingToken("0xf8fb3713d459d7c1018bd0a49d19b4c44290ebe5", "LINK", 18, 14.0),
        UnderlyingToken("0x94a9d9ac8a22534e3faca9f4e7f2e2cf85d5e4c8", "USDC", 6, 1.0),
        UnderlyingToken("0x29f2d40b0605204364af54ec677bd022da425d03", "WBTC", 8, 63000.0),
        UnderlyingToken("0xc558dbdd856501fcd9aaf1e62eae57a9f0629a3c", "WETH", 18, 2900.0),
        UnderlyingToken("0xaa8e23fb1079ea71e0a56f48a2aa51851d8433d0", "USDT", 6, 1.0),
        UnderlyingToken("0x88541670e55cc00beefd87eb59edd1b7c511ac9a", "AAVE", 18, 100.0),
        UnderlyingToken("0x6d906e526a4e2ca02097ba9d0caa3c382f52278e", "EURS", 2, 1.08),
        UnderlyingToken("0xc4bf5cbdabe595361438f8c6a187bdc330539c60", "GHO", 18, 1.0),
    ),
)

BUILTIN_PROTOCOLS: Tuple[ProtocolConfig, ...] = (AVON, PRISM, KUMBAYA, AAVE_V3)


# ── Parsing ─────────────────────────────────────────────────────────────


def _require_address(raw: Dict[str, Any], key: str, name: str) -> str:
    addr = str(raw.get(key) or "").strip().lower()
    if not addr.startswith("0x") or len(addr) != 42:
        raise ValueError(f"Protocol '{name}': invalid or missing '{key}' address")
    return addr


def _position_type(raw: Dict[str, Any], default: str, name: str) -> str:
    ptype = raw.get("position_type", default)
    if ptype not in POSITION_TYPES:
        raise ValueError(f"Protocol '{name}': unknown position_type '{ptype}'")
    return ptype


def _underlying(raw: Dict[str, Any], name: str) -> UnderlyingToken:
    return UnderlyingToken(
        address=_require_address(raw, "address", name),
        symbol=str(raw.get("symbol", "???")),
        decimals=int(raw.get("decimals", 18)),
        price_usd=float(raw.get("price_usd", raw.get("priceUSD", 0.0))),
    )


def parse_protocol(raw: Dict[str, Any]) -> ProtocolConfig:
    """
    Resolve one raw registry entry into its typed config.

    Accepts ``kind`` (or the older ``template`` key) of "erc4626" / "univ3" /
    "aave_v3".

    Raises:
        ValueError: unknown kind, missing name, or missing contract addresses.
    """
    name = str(raw.get("name") or "").strip()
    if not name:
        raise ValueError("Protocol entry has no name")

    kind_raw = raw.get("kind", raw.get("template"))
    try:
        kind = ProtocolKind(kind_raw)
    except ValueError:
        raise ValueError(f"Protocol '{name}': unknown kind '{kind_raw}'") from None

    network = raw.get("network", raw.get("chain", "megaeth"))
    enabled = bool(raw.get("enabled", True))
    contracts = raw.get("contracts") or {}
    merged = {**contracts, **raw}

    if kind is ProtocolKind.ERC4626:
        und = raw.get("underlying") or raw.get("underlying_token") or {}
        return VaultProtocolConfig(
            name=name,
            vault=_require_address(merged, "vault", name),
            underlying=_underlying(und, name),
            apy_estimate=float(raw.get("apy_estimate", 0.0)),
            network=network,
            position_type=_position_type(raw, "lending", name),
            share_symbol=str(raw.get("share_symbol", "")),
            output_aliases=tuple(str(a).lower() for a in raw.get("output_aliases", ())),
            enabled=enabled,
        )

    if kind is ProtocolKind.AAVE_V3:
        reserves = tuple(_underlying(r, name) for r in raw.get("reserves") or ())
        if not reserves:
            raise ValueError(f"Protocol '{name}': aave_v3 needs at least one reserve")
        return AaveProtocolConfig(
            name=name,
            data_provider=_require_address(merged, "data_provider", name),
            reserves=reserves,
            network=network,
            position_type=_position_type(raw, "lending", name),
            assumed_age_days=int(raw.get("assumed_age_days", 90)),
            enabled=enabled,
        )

    fee_apy = raw.get("fee_tier_apy")
    return UniV3ProtocolConfig(
        name=name,
        position_manager=_require_address(merged, "position_manager", name),
        factory=_require_address(merged, "factory", name),
        apy_estimate=float(raw.get("apy_estimate", DEFAULT_LP_APY)),
        network=network,
        position_type=_position_type(raw, "lp", name),
        fee_tier_apy=(
            MappingProxyType({int(k): float(v) for k, v in fee_apy.items()})
            if fee_apy else FEE_TIER_APY
        ),
        enabled=enabled,
    )


def vault_protocols(protocols: Tuple[ProtocolConfig, ...]) -> Tuple[VaultProtocolConfig, ...]:
    return tuple(p for p in protocols if isinstance(p, VaultProtocolConfig))


def univ3_protocols(protocols: Tuple[ProtocolConfig, ...]) -> Tuple[UniV3ProtocolConfig, ...]:
    return tuple(p for p in protocols if isinstance(p, UniV3ProtocolConfig))
