from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncEngine

from chain_indexer.app.application.handlers import EventHandlerRegistry, TransferEventHandler
from chain_indexer.app.application.services.block_range_synchronizer import BlockRangeSynchronizer
from chain_indexer.app.application.services.indexer_job_runner import IndexerJobRunner
from chain_indexer.app.application.services.scheduler import IndexerScheduler
from chain_indexer.app.config import Settings, settings as default_settings
from chain_indexer.app.domain.ports.out import ChainClient, PersistenceGateway
from chain_indexer.app.infrastructure.chain.web3_chain_client import Web3ChainClient
from chain_indexer.app.infrastructure.decoders.abi_event_decoder import AbiEventDecoder
from chain_indexer.app.infrastructure.factories.lease_manager_factory import lease_manager_factory
from chain_indexer.app.infrastructure.factories.persistence_gateway_factory import (
    persistence_gateway_factory,
)

logger = logging.getLogger(__name__)

# Resolve ABI path relative to the package, not the current working dir
_ERC20_ABI_PATH = (
    Path(__file__).resolve().parents[2]  # .../chain_indexer/app
    / "registry"
    / "abi"
    / "ERC20.json"
)


@dataclass(frozen=True)
class IndexerRuntime:
    gateway: PersistenceGateway
    chain: ChainClient
    decoder: AbiEventDecoder
    handlers: EventHandlerRegistry
    synchronizer: BlockRangeSynchronizer
    runner: IndexerJobRunner
    scheduler: IndexerScheduler


def build_event_decoder(cfg: Settings) -> AbiEventDecoder:
    """
    Decoder with the bundled ERC20 ABI attached to every ERC20_TOKENS address,
    plus every `<address>.json` under ABI_DIR.
    """
    decoder = AbiEventDecoder()
    for address in cfg.erc20_token_addresses:
        decoder.register_abi_file(address, _ERC20_ABI_PATH)
    if cfg.abi_dir is not None:
        loaded = decoder.register_abi_dir(cfg.abi_dir)
        logger.info("Loaded %s ABI file(s) from %s", loaded, cfg.abi_dir)
    return decoder


def build_indexer_runtime(
    *,
    backend: str | None = None,
    engine: AsyncEngine | None = None,
    chain: ChainClient | None = None,
    cfg: Settings | None = None,
) -> IndexerRuntime:
    """
    Wire the full indexing stack for a persistence backend.

    `chain` defaults to a Web3ChainClient on the configured RPC endpoint.
    """
    cfg = cfg or default_settings
    backend = backend or cfg.persistence_backend

    gateway = persistence_gateway_factory(backend=backend, engine=engine)
    leases = lease_manager_factory(backend=backend, engine=engine)

    if chain is None:
        chain = Web3ChainClient.from_url(
            cfg.rpc_url(),
            timeout=cfg.rpc_timeout,
            retry_attempts=cfg.retry_attempts,
            retry_delay=cfg.retry_delay,
        )

    decoder = build_event_decoder(cfg)
    handlers = EventHandlerRegistry([TransferEventHandler(gateway=gateway)])

    synchronizer = BlockRangeSynchronizer(
        chain=chain,
        gateway=gateway,
        decoder=decoder,
        handlers=handlers,
        concurrency=cfg.concurrency,
        retry_attempts=cfg.retry_attempts,
        retry_delay=cfg.retry_delay,
    )
    runner = IndexerJobRunner(
        gateway=gateway,
        chain=chain,
        synchronizer=synchronizer,
        leases=leases,
        default_start_block=cfg.start_block,
        default_batch_size=cfg.batch_size,
    )
    scheduler = IndexerScheduler(
        gateway=gateway,
        runner=runner,
        cooldown=timedelta(seconds=cfg.scheduler_cooldown),
        concurrency=cfg.concurrency,
        retry_errored=cfg.scheduler_retry_errored,
    )
    return IndexerRuntime(
        gateway=gateway,
        chain=chain,
        decoder=decoder,
        handlers=handlers,
        synchronizer=synchronizer,
        runner=runner,
        scheduler=scheduler,
    )
