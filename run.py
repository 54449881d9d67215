#!/usr/bin/env python3
"""
Yield CLI -- DeFi Wallet Yield Engine
=====================================

Reads a wallet's ERC-4626 vault and Uniswap-V3-fork LP positions on
MegaETH, values them in USD, scores the wallet 0-100 and detects yield
loops (vault receipt token re-deployed as LP liquidity).

Usage:
  python run.py positions <wallet>          Every position across protocols
  python run.py score     <wallet>          Yield score, weighted APY, tags
  python run.py strategy  <wallet>          Detected strategy (loop / multi-protocol)
  python run.py activity  <wallet>          Recent opens, closes, deposits, withdrawals
  python run.py scan      [--limit N]       Find wallets running the yield loop
  python run.py probe                       Check every protocol contract answers
  python run.py info                        Version, settings and protocol registry

Common options:
  --config PATH     YAML settings file (default: ./yield.yaml if present)
  --eth-price USD   ETH anchor price for WETH pairs (default 2500)
  --verbose         DEBUG logging to stderr

Sources:
  Uniswap V3 Whitepaper : https://uniswap.org/whitepaper-v3.pdf
  ERC-4626              : https://eips.ethereum.org/EIPS/eip-4626
"""

import sys
import asyncio
import argparse
from pathlib import Path

# ── Imports ───────────────────────────────────────────────────────────────

project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from yield_cli.central_config import (  # noqa: E402
    PROJECT_NAME,
    PROJECT_VERSION,
    configure_logging,
    load_settings,
)
from yield_cli.commands import (  # noqa: E402
    cmd_activity,
    cmd_info,
    cmd_positions,
    cmd_probe,
    cmd_scan,
    cmd_score,
    cmd_strategy,
)


# ── CLI Parser ────────────────────────────────────────────────────────────


def _common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", type=str, default=None, help="YAML settings file")
    p.add_argument(
        "--eth-price",
        type=float,
        default=None,
        help="ETH/USD anchor price for WETH pairs (default: settings or 2500)",
    )
    p.add_argument("--verbose", "-v", action="store_true", help="DEBUG logging")


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="yield-cli",
        description=f"{PROJECT_NAME} v{PROJECT_VERSION} — DeFi Wallet Yield Engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run.py positions 0xWALLET                  All positions (Avon, Prism, Kumbaya, Aave)
  python run.py score     0xWALLET --eth-price 3100 Score with a custom ETH anchor
  python run.py strategy  0xWALLET                  Yield Loop / Multi-Protocol detection
  python run.py scan      --limit 5                 Top 5 loop strategists on-chain
  python run.py probe     --config yield.yaml       Probe user-added protocols too
""",
    )
    parser.add_argument(
        "--version", action="version", version=f"{PROJECT_NAME} v{PROJECT_VERSION}"
    )

    sub = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (
        ("positions", "List a wallet's positions across protocols"),
        ("score", "Yield score (0-100) and strategy tags"),
        ("strategy", "Detect the wallet's strategy / yield loop"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("wallet", help="Wallet address (0x…)")
        _common(p)

    activity_p = sub.add_parser("activity", help="Recent LP and vault activity")
    activity_p.add_argument("wallet", help="Wallet address (0x…)")
    activity_p.add_argument("--limit", type=int, default=15, help="Max events (default: 15)")
    _common(activity_p)

    scan_p = sub.add_parser("scan", help="Find wallets running the yield loop")
    scan_p.add_argument("--limit", type=int, default=8, help="Max results (default: 8)")
    _common(scan_p)

    _common(sub.add_parser("probe", help="Check protocol contracts are reachable"))
    _common(sub.add_parser("info", help="Version, settings and protocols"))

    return parser


# ── Main ──────────────────────────────────────────────────────────────────


def main() -> int:
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 0

    configure_logging(args.verbose)
    try:
        settings = load_settings(args.config, eth_price_usd=args.eth_price)
    except (FileNotFoundError, ValueError) as exc:
        print(f"❌ Settings error: {exc}")
        return 2

    if args.command == "info":
        return cmd_info(settings)
    if args.command == "positions":
        return asyncio.run(cmd_positions(args.wallet, settings))
    if args.command == "score":
        return asyncio.run(cmd_score(args.wallet, settings))
    if args.command == "strategy":
        return asyncio.run(cmd_strategy(args.wallet, settings))
    if args.command == "activity":
        return asyncio.run(cmd_activity(args.wallet, settings, limit=args.limit))
    if args.command == "scan":
        return asyncio.run(cmd_scan(args.limit, settings))
    if args.command == "probe":
        return asyncio.run(cmd_probe(settings))

    parser.print_help()
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n❌ Cancelled.")
        sys.exit(130)
