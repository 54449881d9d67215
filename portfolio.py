#!/usr/bin/env python3
"""
Portfolio — every enabled protocol, one wallet
==============================================

Resolves each ProtocolConfig to its reader once, then fans the reads out
concurrently. A protocol that fails contributes nothing; the rest still
come back, flattened in registry order and de-duplicated by
(protocol, asset_address, position_id).
"""

import asyncio
import logging
from typing import Dict, List, Mapping, Optional, Union

from aave_reader import AaveReader
from lp_reader import LPPositionReader
from vault_reader import VaultReader
from yield_cli.central_config import Settings, load_settings
from yield_cli.models import Position
from yield_cli.protocol_registry import (
    AaveProtocolConfig,
    ProtocolConfig,
    UniV3ProtocolConfig,
    VaultProtocolConfig,
)

logger = logging.getLogger(__name__)

Reader = Union[VaultReader, LPPositionReader, AaveReader]


def reader_for(
    config: ProtocolConfig,
    anchors: Mapping[str, float],
    rpc_url: Optional[str] = None,
    timeout: int = 20,
    log_from_block: int = 0,
) -> Reader:
    """Map a protocol config onto the reader for its kind."""
    if isinstance(config, VaultProtocolConfig):
        return VaultReader(config, rpc_url=rpc_url, timeout=timeout, log_from_block=log_from_block)
    if isinstance(config, UniV3ProtocolConfig):
        return LPPositionReader(
            config, anchors, rpc_url=rpc_url, timeout=timeout, log_from_block=log_from_block,
        )
    if isinstance(config, AaveProtocolConfig):
        return AaveReader(config, rpc_url=rpc_url, timeout=timeout)
    raise TypeError(f"No reader for protocol config {type(config).__name__}")


def readers_for_settings(settings: Settings) -> List[Reader]:
    return [
        reader_for(
            proto,
            settings.anchors,
            rpc_url=settings.rpc_url_for(proto.network),
            timeout=settings.timeout,
            log_from_block=settings.log_from_block,
        )
        for proto in settings.enabled_protocols()
    ]


def dedupe_positions(positions: List[Position]) -> List[Position]:
    """Keep the first position per (protocol, asset_address, position_id)."""
    seen = set()
    unique = []
    for pos in positions:
        if pos.dedupe_key in seen:
            continue
        seen.add(pos.dedupe_key)
        unique.append(pos)
    return unique


async def get_all_positions(wallet: str, settings: Optional[Settings] = None) -> List[Position]:
    """All of a wallet's positions across enabled protocols."""
    settings = settings or load_settings()
    readers = readers_for_settings(settings)

    results = await asyncio.gather(
        *[r.read_positions(wallet) for r in readers],
        return_exceptions=True,
    )

    flat: List[Position] = []
    for reader, result in zip(readers, results):
        if isinstance(result, BaseException):
            logger.warning("[%s] read raised: %s", reader.protocol, result)
            continue
        flat.extend(result)
    return dedupe_positions(flat)


async def probe_all(settings: Optional[Settings] = None) -> Dict[str, bool]:
    """{protocol name: reachable} for every enabled protocol."""
    settings = settings or load_settings()
    readers = readers_for_settings(settings)
    results = await asyncio.gather(*[r.probe() for r in readers], return_exceptions=True)
    return {
        reader.protocol: result is True
        for reader, result in zip(readers, results)
    }
