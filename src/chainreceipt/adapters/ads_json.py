from __future__ import annotations
import json, random, logging
from ..domain.models import AdRef
from ..ports.collaborators import AdvisoryConfig

logger = logging.getLogger(__name__)


class JsonFileAdvisoryConfig(AdvisoryConfig):
    """
    Ads from a JSON file: {"ads": [{"id", "link", "content", "placement"?, "active"?}]}.
    The file is re-read on every pick so edits apply without a restart.
    Any failure means "no ad".
    """

    def __init__(self, path: str | None, rng: random.Random | None = None) -> None:
        self.path = path
        self.rng = rng or random.Random()

    async def pick_ad(self, placement: str) -> AdRef | None:
        if not self.path:
            return None
        try:
            with open(self.path, "r") as f:
                ads = json.load(f).get("ads", [])
            eligible = [a for a in ads if a.get("active", True) and a.get("placement", placement) == placement]
            if not eligible:
                return None
            a = self.rng.choice(eligible)
            return AdRef(str(a["id"]), str(a.get("link", "")), str(a.get("content", "")))
        except Exception as e:  # advisory only
            logger.debug("ad lookup for %s failed: %s", placement, e)
            return None
