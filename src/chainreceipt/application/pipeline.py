from __future__ import annotations

import logging
from dataclasses import dataclass

from ..domain.assembly import ReceiptAssembler, fee_wei, priced_assets
from ..domain.chains import get_chain
from ..domain.classification import Classifier
from ..domain.decoding import decode_transfers, native_transfer, scope_to_user
from ..domain.models import AdRef, JobInput, Receipt, TransferEvent
from ..ports.collaborators import AdvisoryConfig, Renderer
from .fetcher import ChainDataFetcher
from .prices import PriceService
from .tasks import gather_or_cancel

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class PipelineResult:
    receipt: Receipt
    document_ref: str | None


class ReceiptPipeline:
    """
    One generation run: fetch -> decode -> classify -> price -> assemble -> render.
    Collaborators are injected so each can be swapped in tests.
    """

    def __init__(
        self,
        fetcher: ChainDataFetcher,
        prices: PriceService,
        classifier: Classifier | None = None,
        assembler: ReceiptAssembler | None = None,
        renderer: Renderer | None = None,
        advisory: AdvisoryConfig | None = None,
        template_id: str = "default",
        ad_placement: str = "receipt_footer",
    ) -> None:
        self.fetcher = fetcher
        self.prices = prices
        self.classifier = classifier or Classifier()
        self.assembler = assembler or ReceiptAssembler()
        self.renderer = renderer
        self.advisory = advisory
        self.template_id = template_id
        self.ad_placement = ad_placement

    async def run(self, job_input: JobInput) -> PipelineResult:
        chain = get_chain(job_input.chain_id)
        chain_tx = await self.fetcher.fetch(chain, job_input.tx_hash)
        tx, rcpt = chain_tx.tx, chain_tx.receipt
        user = (job_input.connected_wallet or tx.from_address).lower()

        events: list[TransferEvent] = decode_transfers(rcpt.logs, involved={user})
        if rcpt.status != 0:
            native = native_transfer(tx, rcpt.contract_address)
            if native is not None:
                events.insert(0, native)

        classification = self.classifier.classify(chain_tx, events, user)
        scoped = scope_to_user(events, user)

        fungible = [str(e.contract) for e in scoped if e.standard == "erc20"]
        nfts = [str(e.contract) for e in scoped if e.standard in ("erc721", "erc1155")]
        tokens, quotes, names, ad, internal = await gather_or_cancel(
            self.fetcher.token_meta(chain, fungible, nfts),
            self.prices.get_prices(chain.chain_id, priced_assets(scoped, fee_wei(chain_tx)),
                                   chain_tx.block.timestamp),
            self.fetcher.resolve_names([tx.from_address, tx.to_address]),
            self._pick_ad(),
            self.fetcher.internal_transfers(chain, chain_tx),
        )

        receipt = self.assembler.assemble(chain, chain_tx, scoped, classification, user,
                                          tokens=tokens, quotes=quotes, names=names, ad=ad,
                                          internal=internal)
        logger.info("assembled %s: %s (%s), %d line items, net %s",
                    receipt.bill_id, receipt.type_label, receipt.confidence_label,
                    len(receipt.items), receipt.totals.net_change_usd)

        document_ref = None
        if self.renderer is not None:
            document_ref = await self.renderer.render(receipt, self.template_id)
        return PipelineResult(receipt, document_ref)

    async def _pick_ad(self) -> AdRef | None:
        if self.advisory is None:
            return None
        try:
            return await self.advisory.pick_ad(self.ad_placement)
        except Exception as e:  # advisory only
            logger.debug("ad lookup failed: %s", e)
            return None
