"""
Yield CLI — Command Implementations
===================================

All CLI command handlers live here, keeping run.py as a thin argparse
dispatcher. Each public function corresponds to a subcommand
(positions, score, strategy, activity, scan, probe, info) and returns a
process exit code. These are the only functions in the project that print.
"""

from __future__ import annotations

import re
import time
from datetime import datetime, timezone

from yield_cli.central_config import PROJECT_NAME, PROJECT_VERSION, Settings
from yield_cli.models import Position
from yield_cli.protocol_registry import AaveProtocolConfig, UniV3ProtocolConfig, VaultProtocolConfig

_ADDRESS_RE = re.compile(r"0x[0-9a-fA-F]{40}")

ACTIVITY_LABELS = {
    "lp_open": "Opened LP",
    "lp_close": "Closed LP",
    "vault_deposit": "Deposit",
    "vault_withdraw": "Withdraw",
}


# ── Helpers ──────────────────────────────────────────────────────────────


def _valid_wallet(wallet: str) -> bool:
    if _ADDRESS_RE.fullmatch(wallet or ""):
        return True
    print(f"❌ Not a wallet address: {wallet!r} (expected 0x + 40 hex chars)")
    return False


def _short(addr: str) -> str:
    return f"{addr[:6]}…{addr[-4:]}" if len(addr) > 10 else addr


def _usd(value: float) -> str:
    return f"${value:,.2f}"


def _header(title: str) -> None:
    print(f"\n{'=' * 65}")
    print(f"  {title}")
    print(f"{'=' * 65}")


def _format_position(i: int, pos: Position, now: int) -> None:
    from yield_score import position_age_days

    print(f"\n    {i}. {pos.protocol} — {pos.asset}")
    print(f"       Type     : {pos.position_type}")
    print(f"       Value    : {_usd(pos.deposited_usd)}")
    print(f"       APY      : {pos.current_apy:.2f}%")
    print(f"       Earned   : {_usd(pos.yield_earned)}")
    print(f"       Age      : {position_age_days(pos.entry_timestamp, now)} days")
    if pos.is_lp_shaped:
        status = "✅ In Range" if pos.in_range else "⚠️  OUT OF RANGE"
        print(f"       Position : #{pos.position_id}  ({status})")
        print(
            f"       Amounts  : {pos.token0_amount:,.6f} {pos.token0_symbol}"
            f" + {pos.token1_amount:,.6f} {pos.token1_symbol}"
        )
        if pos.deposited_usd == 0 and (pos.token0_amount or pos.token1_amount):
            print("       Price    : no USD anchor for this pair")


# ── Commands ─────────────────────────────────────────────────────────────


async def cmd_positions(wallet: str, settings: Settings) -> int:
    from portfolio import get_all_positions
    from yield_score import summarize_wallet

    if not _valid_wallet(wallet):
        return 1
    positions = await get_all_positions(wallet, settings)

    _header(f"Positions — 👛 {_short(wallet)}")
    if not positions:
        print("  No positions found.")
        return 0

    now = int(time.time())
    for i, pos in enumerate(positions, 1):
        _format_position(i, pos, now)

    summary = summarize_wallet(positions, now)
    print(f"\n{'=' * 65}")
    print(
        f"  Total: {_usd(summary.total_deposited)} across {summary.position_count} "
        f"position(s) | Earned {_usd(summary.total_yield_earned)}"
    )
    print(f"{'=' * 65}")
    return 0


async def cmd_score(wallet: str, settings: Settings) -> int:
    from portfolio import get_all_positions
    from yield_score import summarize_wallet

    if not _valid_wallet(wallet):
        return 1
    positions = await get_all_positions(wallet, settings)
    summary = summarize_wallet(positions)

    _header(f"Yield Score — 👛 {_short(wallet)}")
    print(f"  Score         : {summary.yield_score} / 100")
    print(f"  Deposited     : {_usd(summary.total_deposited)}")
    print(f"  Earned        : {_usd(summary.total_yield_earned)}")
    print(f"  Weighted APY  : {summary.weighted_apy:.2f}%")
    print(f"  Top protocol  : {summary.top_protocol or '—'}")
    print(f"  Tags          : {', '.join(summary.strategy_tags) or '—'}")
    return 0


async def cmd_strategy(wallet: str, settings: Settings) -> int:
    from portfolio import get_all_positions
    from strategy_detector import StrategyRoles, detect_strategy

    if not _valid_wallet(wallet):
        return 1
    positions = await get_all_positions(wallet, settings)
    roles = StrategyRoles.from_protocols(settings.enabled_protocols())
    strategy = detect_strategy(positions, roles)

    _header(f"Strategy — 👛 {_short(wallet)}")
    if strategy is None:
        print("  No positions, no strategy.")
        return 0

    loop_mark = " 🔁" if strategy.is_loop else ""
    print(f"  {strategy.name}{loop_mark}  [{strategy.complexity}]")
    print(f"  {strategy.description}")
    for step in strategy.steps:
        print(
            f"\n    {step.step_number}. {step.protocol}: {step.action}"
            f"\n       {step.input_token} → {step.output_token}"
            f"  |  {step.apy:.2f}% APY  |  {_usd(step.position_value)}"
        )
    print(
        f"\n  Base {strategy.base_apy:.2f}% + bonus {strategy.bonus_apy:.2f}%"
        f" = {strategy.total_apy:.2f}% on {_usd(strategy.total_value)}"
    )
    print(f"  Tags: {', '.join(strategy.tags)}")
    return 0


async def cmd_activity(wallet: str, settings: Settings, limit: int = 15) -> int:
    from wallet_activity import get_wallet_activity

    if not _valid_wallet(wallet):
        return 1
    events = await get_wallet_activity(wallet, settings, limit=limit)

    _header(f"Activity — 👛 {_short(wallet)}")
    if not events:
        print("  No activity found.")
        return 0
    for ev in events:
        when = (
            datetime.fromtimestamp(ev.timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")
            if ev.timestamp else "unknown"
        )
        token = f" #{ev.token_id}" if ev.token_id is not None else ""
        print(f"  {when}  {ACTIVITY_LABELS.get(ev.type, ev.type):<10} {ev.protocol}{token}  (block {ev.block_number})")
    return 0


async def cmd_scan(limit: int, settings: Settings) -> int:
    from loop_scanner import scan_for_loop_strategists

    _header(f"Loop Scan — top {limit}")
    found = await scan_for_loop_strategists(limit=limit, settings=settings)
    if not found:
        print("  No loop strategists found.")
        return 0
    for i, item in enumerate(found, 1):
        s = item.strategy
        print(f"  {i:>2}. {item.address}  {s.total_apy:6.2f}%  {_usd(s.total_value):>14}  {s.name}")
    return 0


async def cmd_probe(settings: Settings) -> int:
    from portfolio import probe_all

    _header(f"Protocol Probe — {settings.network}")
    results = await probe_all(settings)
    for proto in settings.enabled_protocols():
        ok = results.get(proto.name, False)
        print(f"  {'✅' if ok else '❌'} {proto.name:<12} {proto.kind.value:<8} {proto.network}")
    return 0 if all(results.values()) else 1


def cmd_info(settings: Settings) -> int:
    print(f"\n  {PROJECT_NAME} v{PROJECT_VERSION}")
    print(f"  Network       : {settings.network}")
    print(f"  ETH anchor    : {_usd(settings.eth_price_usd)}")
    print(f"  Log cursor    : block {settings.log_from_block}")
    print("\n  Protocols:")
    for proto in settings.protocols:
        state = "" if proto.enabled else "  (disabled)"
        if isinstance(proto, VaultProtocolConfig):
            print(
                f"    • {proto.name:<10} ERC-4626  vault {_short(proto.vault)}"
                f"  {proto.underlying.symbol}  ~{proto.apy_estimate:g}% APY{state}"
            )
        elif isinstance(proto, UniV3ProtocolConfig):
            print(
                f"    • {proto.name:<10} UniV3     manager {_short(proto.position_manager)}"
                f"  ~{proto.apy_estimate:g}% APY{state}"
            )
        elif isinstance(proto, AaveProtocolConfig):
            print(
                f"    • {proto.name:<10} Aave V3   provider {_short(proto.data_provider)}"
                f"  {len(proto.reserves)} reserves on {proto.network}{state}"
            )
    return 0
