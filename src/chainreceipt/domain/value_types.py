from __future__ import annotations
from typing import NewType, Literal

Address  = NewType("Address", str)   # 0x-prefixed, lowercase
TxHash   = NewType("TxHash", str)    # 66-char 0x-hash, lowercase
Topic0   = NewType("Topic0", str)    # 66-char 0x-hash
JobState = Literal["waiting", "active", "completed", "failed"]
Standard = Literal["erc20", "erc721", "erc1155", "native"]
Direction = Literal["in", "out"]
