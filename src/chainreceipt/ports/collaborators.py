# chainreceipt/ports/collaborators.py
from __future__ import annotations

from typing import Protocol
from ..domain.models import AdRef, Receipt


class Renderer(Protocol):
    """Port for the document-rendering collaborator."""

    async def render(self, receipt: Receipt, template_id: str) -> str:
        """Produce the document for `receipt`; return a reference to it."""


class AdvisoryConfig(Protocol):
    """Port for the key-value store holding pricing plans and ads."""

    async def pick_ad(self, placement: str) -> AdRef | None:
        """Return an ad for `placement`, or None."""
