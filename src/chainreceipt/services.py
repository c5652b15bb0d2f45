from __future__ import annotations

from dataclasses import dataclass

import httpx

from .adapters.ads_json import JsonFileAdvisoryConfig
from .adapters.internal_alchemy import AlchemyInternalTransfers
from .adapters.jobs_jsonl import JSONLJobStore
from .adapters.names_rpc import EnsNameResolver
from .adapters.prices_httpx import default_providers, make_client
from .adapters.renderer_json import JsonDocumentRenderer
from .adapters.rpc_httpx import rpc_for_chain
from .application.fetcher import ChainDataFetcher, RPCRegistry
from .application.pipeline import ReceiptPipeline
from .application.prices import PriceService
from .application.queue import JobQueue
from .application.worker import WorkerPool
from .config import Settings
from .domain.chains import REFERENCE_CHAIN_ID, get_chain


@dataclass(slots=True)
class Services:
    settings: Settings
    store: JSONLJobStore
    queue: JobQueue
    pipeline: ReceiptPipeline
    workers: WorkerPool
    rpcs: RPCRegistry
    http: httpx.AsyncClient

    async def aclose(self) -> None:
        await self.rpcs.aclose()
        await self.http.aclose()


def build_store(settings: Settings) -> JSONLJobStore:
    return JSONLJobStore(settings.jobs_path, settings.keep_completed, settings.keep_failed)


def build_services(settings: Settings, store: JSONLJobStore | None = None) -> Services:
    """Production wiring: httpx-backed RPC and price providers, JSON documents, JSON ads."""
    store = store or build_store(settings)
    rpcs = RPCRegistry(lambda chain: rpc_for_chain(chain, settings.alchemy_api_key, settings.http_timeout_s))
    names = EnsNameResolver(rpcs.get(get_chain(REFERENCE_CHAIN_ID)))
    http = make_client(settings.http_timeout_s)
    internal = AlchemyInternalTransfers(settings.alchemy_api_key, http) if settings.alchemy_api_key else None
    pipeline = ReceiptPipeline(
        fetcher=ChainDataFetcher(rpcs, names, internal),
        prices=PriceService(default_providers(http, settings.alchemy_api_key, settings.coingecko_api_key)),
        renderer=JsonDocumentRenderer(settings.documents_dir),
        advisory=JsonFileAdvisoryConfig(settings.ads_file),
        template_id=settings.template_id,
        ad_placement=settings.ad_placement,
    )
    return Services(settings, store, JobQueue(store, settings), pipeline,
                    WorkerPool(store, pipeline, settings), rpcs, http)
