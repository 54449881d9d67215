#!/usr/bin/env python3
"""
Strategy Detector — classify a wallet's positions into one strategy
===================================================================

Looks for the yield loop this dashboard was built around:

  1. deposit USDM into the Avon vault, receive USDMy (vault share)
  2. provide USDMy / USDM liquidity on a V3 fork (Prism, Kumbaya)
     → LP fees stacked on top of the vault yield

Positions are sorted into roles (vault, LP, other) and turned into an
ordered list of steps:

    vault (first position) → loop LPs → other LPs → other protocols

Deterministic and side-effect free: the scanner uses it as a filter.
"""

from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional, Sequence, Tuple

from yield_cli.models import DetectedStrategy, Position, StrategyStep, complexity_for
from yield_cli.protocol_registry import (
    AVON,
    BUILTIN_PROTOCOLS,
    ProtocolConfig,
    univ3_protocols,
    vault_protocols,
)

LP_OUTPUT = "LP Fees"


@dataclass(frozen=True)
class StrategyRoles:
    """Which protocol plays which part in a loop."""

    vault_protocol: str = AVON.name
    vault_input: str = AVON.underlying.symbol
    vault_output: str = AVON.share_symbol
    output_aliases: Tuple[str, ...] = AVON.output_aliases
    # Vault share token + its underlying
    output_addresses: FrozenSet[str] = frozenset({AVON.vault, AVON.underlying.address})
    lp_protocols: Tuple[str, ...] = ("Prism", "Kumbaya")

    @classmethod
    def from_protocols(cls, protocols: Iterable[ProtocolConfig]) -> "StrategyRoles":
        """Roles from a registry: its first vault and every V3 fork."""
        protocols = tuple(protocols)
        vaults = vault_protocols(protocols)
        if not vaults:
            return cls(lp_protocols=tuple(p.name for p in univ3_protocols(protocols)))
        vault = vaults[0]
        return cls(
            vault_protocol=vault.name,
            vault_input=vault.underlying.symbol,
            vault_output=vault.share_symbol or vault.underlying.symbol,
            output_aliases=vault.output_aliases or (vault.underlying.symbol.lower(),),
            output_addresses=frozenset({vault.vault, vault.underlying.address}),
            lp_protocols=tuple(p.name for p in univ3_protocols(protocols)),
        )

    def is_vault(self, position: Position) -> bool:
        return position.protocol == self.vault_protocol

    def is_lp(self, position: Position) -> bool:
        return position.protocol in self.lp_protocols or position.position_type == "lp"

    def is_loop_lp(self, position: Position) -> bool:
        """Does this LP hold the vault's output token?"""
        pair = {a for a in (position.token0_address, position.token1_address) if a}
        if pair:
            return bool(pair & self.output_addresses)
        asset = position.asset.lower()
        return any(alias in asset for alias in self.output_aliases)


DEFAULT_ROLES = StrategyRoles.from_protocols(BUILTIN_PROTOCOLS)


def _distinct(names: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for name in names:
        if name not in seen:
            seen.append(name)
    return seen


def _describe(roles: StrategyRoles, is_loop: bool, loop_lps: List[Position], lps: List[Position]) -> str:
    if is_loop:
        venues = " and ".join(_distinct(p.protocol for p in loop_lps))
        return (
            f"Deposits {roles.vault_input} into {roles.vault_protocol} to earn vault yield "
            f"and receive {roles.vault_output}, then re-deploys {roles.vault_output} as "
            f"liquidity in {venues} to stack LP fees on top."
        )
    if lps:
        venues = " and ".join(_distinct(p.protocol for p in lps))
        return f"Provides concentrated liquidity across {venues} to capture trading fees."
    return f"Earns yield via the {roles.vault_protocol} {roles.vault_input} vault."


def detect_strategy(
    positions: Sequence[Position],
    roles: StrategyRoles = DEFAULT_ROLES,
) -> Optional[DetectedStrategy]:
    """
    Classify positions into a DetectedStrategy, or None for an empty list.

    is_loop requires a vault position and at least one LP holding the
    vault's output token.
    """
    if not positions:
        return None

    vaults = [p for p in positions if roles.is_vault(p)]
    lps = [p for p in positions if not roles.is_vault(p) and roles.is_lp(p)]
    others = [p for p in positions if not roles.is_vault(p) and not roles.is_lp(p)]

    loop_lps = [p for p in lps if roles.is_loop_lp(p)]
    plain_lps = [p for p in lps if not roles.is_loop_lp(p)]
    is_loop = bool(vaults) and bool(loop_lps)

    # (protocol, action, input, output, apy, value); numbered afterwards
    drafts = []
    if vaults:
        vault = vaults[0]
        drafts.append((
            vault.protocol,
            f"Deposit {roles.vault_input}, receive {roles.vault_output}",
            roles.vault_input, roles.vault_output,
            vault.current_apy, vault.deposited_usd,
        ))
    for pos in loop_lps:
        drafts.append((
            pos.protocol, f"Provide {pos.asset} liquidity",
            roles.vault_output if is_loop else pos.asset.split("/")[0], LP_OUTPUT,
            pos.current_apy, pos.deposited_usd,
        ))
    for pos in plain_lps:
        drafts.append((
            pos.protocol, f"Provide {pos.asset} liquidity",
            pos.asset.split("/")[0], LP_OUTPUT,
            pos.current_apy, pos.deposited_usd,
        ))
    for pos in others:
        # Receipt token named Aave-style: a<asset>
        drafts.append((
            pos.protocol, f"Deposit {pos.asset}",
            pos.asset, f"a{pos.asset}",
            pos.current_apy, pos.deposited_usd,
        ))

    if not drafts:
        return None

    steps = tuple(
        StrategyStep(
            step_number=i,
            protocol=protocol,
            action=action,
            input_token=input_token,
            output_token=output_token,
            apy=apy,
            position_value=value,
        )
        for i, (protocol, action, input_token, output_token, apy, value) in enumerate(drafts, start=1)
    )

    base_apy = steps[0].apy
    bonus_apy = sum(s.apy for s in steps[1:])

    if is_loop:
        chain = _distinct([vaults[0].protocol] + [p.protocol for p in loop_lps])
        name = "Yield Loop: " + " → ".join(chain)
    elif len(steps) > 1:
        name = "Multi-Protocol: " + " → ".join(_distinct(s.protocol for s in steps))
    else:
        name = f"{steps[0].protocol} Vault"

    tags = []
    if is_loop:
        tags.append("Yield Loop")
    if vaults:
        tags.append("Stablecoin")
    if lps:
        tags.append("LP")
    tags.extend(_distinct(p.protocol for p in lps))

    return DetectedStrategy(
        name=name,
        description=_describe(roles, is_loop, loop_lps, lps),
        steps=steps,
        base_apy=base_apy,
        bonus_apy=bonus_apy,
        total_apy=base_apy + bonus_apy,
        total_value=sum(s.position_value for s in steps),
        complexity=complexity_for(len(steps)),
        is_loop=is_loop,
        tags=tuple(_distinct(tags)),
    )
