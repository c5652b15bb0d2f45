"""
Tests for transfer-log decoding, user scoping and eth_call return values.
"""
import pytest

from chainreceipt.domain.decoding import (
    TRANSFER_T0, decode_address, decode_string, decode_transfers, decode_uint, event_topic,
    native_transfer, scope_to_user, swap_protocols,
)
from chainreceipt.domain.errors import DataIntegrityError
from chainreceipt.domain.models import LogRecord

from helpers import (
    NFT, OTHER, PAIR, TOKEN, USER, abi_string, addr_word, erc1155_batch_log, erc1155_single_log,
    erc20_log, erc721_log, make_tx, swap_log, topic_addr, word,
)


class TestSignatures:

    def test_transfer_topic(self):
        assert TRANSFER_T0 == "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
        assert event_topic("Transfer(address,address,uint256)") == TRANSFER_T0


class TestDecodeTransfers:

    def test_erc20(self):
        [ev] = decode_transfers([erc20_log(TOKEN, USER, OTHER, 5_000, index=3)])
        assert ev.standard == "erc20"
        assert (ev.from_address, ev.to_address, ev.contract) == (USER, OTHER, TOKEN)
        assert ev.amount == 5_000
        assert ev.token_id is None
        assert ev.log_index == 3

    def test_erc721_by_topic_count(self):
        [ev] = decode_transfers([erc721_log(NFT, OTHER, USER, 42)])
        assert ev.standard == "erc721"
        assert ev.token_id == 42
        assert ev.amount == 1

    def test_erc1155_single(self):
        [ev] = decode_transfers([erc1155_single_log(NFT, OTHER, USER, token_id=7, value=3)])
        assert ev.standard == "erc1155"
        assert (ev.from_address, ev.to_address) == (OTHER, USER)
        assert (ev.token_id, ev.amount) == (7, 3)

    def test_erc1155_batch_expands_per_id(self):
        evs = decode_transfers([erc1155_batch_log(NFT, OTHER, USER, [1, 2, 3], [10, 20, 30])])
        assert [(e.token_id, e.amount) for e in evs] == [(1, 10), (2, 20), (3, 30)]
        assert all(e.to_address == USER for e in evs)

    def test_unrelated_events_are_ignored(self):
        assert decode_transfers([swap_log(PAIR), LogRecord(TOKEN, (), "0x", 0)]) == []

    def test_malformed_log_involving_user_is_an_error(self):
        bad = LogRecord(TOKEN, (TRANSFER_T0, topic_addr(USER), topic_addr(OTHER)), "0x", 0)
        with pytest.raises(DataIntegrityError):
            decode_transfers([bad], involved={USER})

    def test_malformed_log_between_strangers_is_skipped(self):
        bad = LogRecord(TOKEN, (TRANSFER_T0, topic_addr(OTHER), topic_addr(PAIR)), "0x", 0)
        good = erc20_log(TOKEN, OTHER, USER, 1, index=1)
        evs = decode_transfers([bad, good], involved={USER})
        assert [e.log_index for e in evs] == [1]

    def test_batch_length_mismatch_is_malformed(self):
        log = erc1155_batch_log(NFT, OTHER, USER, [1, 2], [10])
        with pytest.raises(DataIntegrityError):
            decode_transfers([log], involved={USER})


class TestNativeAndScope:

    def test_native_transfer_synthesized(self):
        ev = native_transfer(make_tx(value=10**15))
        assert ev.standard == "native"
        assert ev.contract is None
        assert (ev.from_address, ev.to_address, ev.amount) == (USER, OTHER, 10**15)

    def test_no_value_no_native_transfer(self):
        assert native_transfer(make_tx(value=0)) is None

    def test_contract_creation_value_goes_to_created_contract(self):
        ev = native_transfer(make_tx(to=None, value=5), created=PAIR)
        assert ev.to_address == PAIR

    def test_scope_sets_direction_and_drops_strangers(self):
        evs = decode_transfers([
            erc20_log(TOKEN, USER, PAIR, 1, index=0),
            erc20_log(TOKEN, PAIR, USER, 2, index=1),
            erc20_log(TOKEN, PAIR, OTHER, 3, index=2),
        ])
        scoped = scope_to_user(evs, USER)
        assert [(e.amount, e.direction) for e in scoped] == [(1, "out"), (2, "in")]

    def test_swap_protocols(self):
        assert swap_protocols([swap_log(PAIR)]) == ["Uniswap V2"]


class TestCallResults:

    def test_uint(self):
        assert decode_uint("0x" + word(18)) == 18

    def test_uint_rejects_empty(self):
        with pytest.raises(ValueError):
            decode_uint("0x")

    def test_address(self):
        assert decode_address(addr_word(TOKEN)) == TOKEN

    def test_abi_string(self):
        assert decode_string(abi_string("USDC")) == "USDC"

    def test_bytes32_string(self):
        assert decode_string("0x" + b"MKR".hex().ljust(64, "0")) == "MKR"
