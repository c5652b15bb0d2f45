from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

# chatty third-party loggers
QUIET = ("httpx", "httpcore", "hpack")


def configure_logging(level: str = "INFO", console: Console | None = None) -> None:
    handler = RichHandler(console=console or Console(stderr=True), rich_tracebacks=True,
                          show_path=False, markup=False)
    logging.basicConfig(level=level.upper(), format="%(name)s: %(message)s",
                        datefmt="[%X]", handlers=[handler], force=True)
    for name in QUIET:
        logging.getLogger(name).setLevel(max(logging.WARNING, logging.getLogger().level))
