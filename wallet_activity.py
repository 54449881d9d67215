#!/usr/bin/env python3
"""
Wallet Activity — recent opens, closes, deposits and withdrawals
================================================================

Built from Transfer logs only (no indexer):

  lp_open         ERC-721 Transfer 0x0 → wallet on a position manager
  lp_close        ERC-721 Transfer wallet → 0x0 (NFT burned)
  vault_deposit   ERC-20 share Transfer 0x0 → wallet on a vault
  vault_withdraw  ERC-20 share Transfer wallet → 0x0

Newest first, capped at `limit`. Block timestamps are fetched once per
unique block among the kept events.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

from yield_cli.central_config import Settings, load_settings
from yield_cli.protocol_registry import univ3_protocols, vault_protocols
from yield_cli.rpc_helpers import (
    TRANSFER_TOPIC, ZERO_ADDRESS,
    address_topic as _address_topic,
    log_block_number as _log_block_number,
    eth_get_logs as _eth_get_logs,
    eth_get_block_timestamp as _eth_get_block_timestamp,
)

logger = logging.getLogger(__name__)

DEFAULT_ACTIVITY_LIMIT = 15


@dataclass(frozen=True)
class ActivityEvent:
    type: str
    protocol: str
    block_number: int
    timestamp: int = 0
    token_id: Optional[int] = None
    tx_hash: Optional[str] = None


def _events_from_logs(logs: List[dict], event_type: str, protocol: str, rpc_url: str) -> List[Tuple[str, ActivityEvent]]:
    events = []
    for log in logs:
        block = _log_block_number(log)
        if block is None:
            continue
        topics = log.get("topics") or []
        # ERC-721 indexes tokenId as the fourth topic
        token_id = int(topics[3], 16) if event_type.startswith("lp_") and len(topics) > 3 else None
        events.append((rpc_url, ActivityEvent(
            type=event_type,
            protocol=protocol,
            block_number=block,
            token_id=token_id,
            tx_hash=log.get("transactionHash"),
        )))
    return events


async def get_wallet_activity(
    wallet: str,
    settings: Optional[Settings] = None,
    limit: int = DEFAULT_ACTIVITY_LIMIT,
) -> List[ActivityEvent]:
    """Most recent LP and vault events for a wallet; [] on failure."""
    try:
        settings = settings or load_settings()
        protocols = settings.enabled_protocols()
        zero, me = _address_topic(ZERO_ADDRESS), _address_topic(wallet)

        queries = []  # (rpc_url, contract, topics, event_type, protocol)
        for pm in univ3_protocols(protocols):
            url = settings.rpc_url_for(pm.network)
            queries.append((url, pm.position_manager, [TRANSFER_TOPIC, zero, me], "lp_open", pm.name))
            queries.append((url, pm.position_manager, [TRANSFER_TOPIC, me, zero], "lp_close", pm.name))
        for vault in vault_protocols(protocols):
            url = settings.rpc_url_for(vault.network)
            queries.append((url, vault.vault, [TRANSFER_TOPIC, zero, me], "vault_deposit", vault.name))
            queries.append((url, vault.vault, [TRANSFER_TOPIC, me, zero], "vault_withdraw", vault.name))

        log_sets = await asyncio.gather(*[
            _eth_get_logs(url, contract, topics, from_block=settings.log_from_block, timeout=settings.timeout)
            for url, contract, topics, _, _ in queries
        ])

        tagged: List[Tuple[str, ActivityEvent]] = []
        for (url, _, _, event_type, protocol), logs in zip(queries, log_sets):
            tagged.extend(_events_from_logs(logs, event_type, protocol, url))

        tagged.sort(key=lambda item: item[1].block_number, reverse=True)
        top = tagged[:limit]

        unique_blocks = sorted({(url, ev.block_number) for url, ev in top})
        stamps = await asyncio.gather(*[
            _eth_get_block_timestamp(url, block, timeout=settings.timeout)
            for url, block in unique_blocks
        ])
        ts_by_block: Dict[Tuple[str, int], int] = dict(zip(unique_blocks, stamps))
    except Exception as exc:  # noqa: BLE001
        logger.warning("Wallet activity for %s failed: %s", wallet, exc)
        return []

    return [replace(ev, timestamp=ts_by_block.get((url, ev.block_number), 0)) for url, ev in top]
