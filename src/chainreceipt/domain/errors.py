from __future__ import annotations


class ReceiptError(Exception):
    """Base class for every failure the generation pipeline knows how to classify."""

    retryable: bool = False

    def reason(self) -> str:
        return f"{type(self).__name__}: {self}"


class ValidationError(ReceiptError):
    """Malformed input or unsupported chain. Never retried."""


class TransientError(ReceiptError):
    """Timeouts, rate limits, 5xx. Retried per the worker's backoff policy."""

    retryable = True


class TransactionNotFound(TransientError):
    """Transaction, receipt or block missing (mempool race / reorg). Retried, then surfaced."""


class DataIntegrityError(ReceiptError):
    """A financial figure cannot be established. Terminal, never defaulted."""


class PriceUnavailable(DataIntegrityError):
    def __init__(self, asset: str, outcomes: list[str]) -> None:
        self.asset = asset
        self.outcomes = list(outcomes)
        detail = "; ".join(outcomes) if outcomes else "no providers configured"
        super().__init__(f"no price for {asset}: {detail}")


def failure_reason(exc: BaseException) -> str:
    if isinstance(exc, ReceiptError):
        return exc.reason()
    msg = str(exc) or repr(exc)
    return f"{type(exc).__name__}: {msg}"


def is_retryable(exc: BaseException) -> bool:
    # unknown exceptions are treated as transient
    if isinstance(exc, ReceiptError):
        return exc.retryable
    return True


class JsonRpcError(DataIntegrityError):
    """A reachable node answered with a JSON-RPC error object."""

    def __init__(self, method: str, code: int | None, message: str) -> None:
        self.method, self.code = method, code
        super().__init__(f"{method} failed (code={code}): {message}")
