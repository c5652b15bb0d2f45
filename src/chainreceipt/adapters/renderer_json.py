from __future__ import annotations
import os, json, asyncio, logging
from ..domain.assembly import receipt_to_dict
from ..domain.models import Receipt
from ..ports.collaborators import Renderer

logger = logging.getLogger(__name__)


class JsonDocumentRenderer(Renderer):
    """Writes `<bill_id>.json` under `out_dir` and returns its path as the document reference."""

    def __init__(self, out_dir: str) -> None:
        self.out_dir = out_dir

    def _write(self, receipt: Receipt, template_id: str) -> str:
        os.makedirs(self.out_dir, exist_ok=True)
        path = os.path.join(self.out_dir, f"{receipt.bill_id}.json")
        doc = {"template": template_id, "receipt": receipt_to_dict(receipt)}
        tmp = path + ".tmp"
        with open(tmp, "w") as f:
            json.dump(doc, f, indent=2, sort_keys=False)
            f.flush(); os.fsync(f.fileno())
        os.replace(tmp, path)
        return path

    async def render(self, receipt: Receipt, template_id: str) -> str:
        path = await asyncio.to_thread(self._write, receipt, template_id)
        logger.debug("rendered %s with template %s -> %s", receipt.bill_id, template_id, path)
        return path
