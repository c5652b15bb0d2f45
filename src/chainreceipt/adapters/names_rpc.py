from __future__ import annotations
import logging
from eth_utils import keccak
from ..domain.decoding import decode_address, decode_string
from ..ports.rpc import ChainRPC, NameResolver

logger = logging.getLogger(__name__)

ENS_REGISTRY = "0x00000000000c2e074ec69a0dfb2997ba6c7d2e1e"
RESOLVER_SELECTOR = "0x0178b8bf"   # resolver(bytes32)
NAME_SELECTOR = "0x691f3431"       # name(bytes32)
ADDR_SELECTOR = "0x3b3b57de"       # addr(bytes32)
_EMPTY = "0x" + "0" * 40


def namehash(name: str) -> bytes:
    node = b"\x00" * 32
    if name:
        for label in reversed(name.lower().split(".")):
            node = keccak(node + keccak(text=label))
    return node


class EnsNameResolver(NameResolver):
    """
    Reverse ENS lookup against the mainnet registry. The reverse record is only
    trusted when the name resolves forward to the same address.
    """

    def __init__(self, rpc: ChainRPC) -> None:
        self.rpc = rpc

    async def _resolver(self, node: bytes) -> str | None:
        res = await self.rpc.call(ENS_REGISTRY, RESOLVER_SELECTOR + node.hex())
        addr = decode_address(res)
        return None if addr == _EMPTY else addr

    async def lookup(self, address: str) -> str | None:
        addr = address.lower()
        try:
            node = namehash(f"{addr[2:]}.addr.reverse")
            resolver = await self._resolver(node)
            if resolver is None:
                return None
            name = decode_string(await self.rpc.call(resolver, NAME_SELECTOR + node.hex()))
            if not name:
                return None

            fwd_node = namehash(name)
            fwd_resolver = await self._resolver(fwd_node)
            if fwd_resolver is None:
                return None
            fwd = decode_address(await self.rpc.call(fwd_resolver, ADDR_SELECTOR + fwd_node.hex()))
            if fwd != addr:
                logger.debug("ens reverse record %s for %s does not resolve back (got %s)", name, addr, fwd)
                return None
            return name
        except Exception as e:  # advisory only
            logger.debug("ens lookup failed for %s: %s", addr, e)
            return None
