import pytest

from rewards_indexer.models.types import EventRecord, block_number_of

RPC_LOG = {
    "address": "0x00000000000000000000000000000000000000aa",
    "topics": ["0xfeed", "0x01"],
    "data": "0x",
    "blockNumber": "0x64",
    "transactionHash": "0xabc",
    "logIndex": "0x2",
    "removed": False,
}


def test_from_rpc_log_parses_hex_quantities():
    rec = EventRecord.from_rpc_log(RPC_LOG)
    assert rec.block_number == 100
    assert rec.log_index == 2
    assert rec.topics == ("0xfeed", "0x01")
    assert rec.data == "0x"
    assert rec.removed is False


def test_from_rpc_log_accepts_int_block():
    assert EventRecord.from_rpc_log({"blockNumber": 101}).block_number == 101


@pytest.mark.parametrize("bad", [{}, {"blockNumber": None}, {"blockNumber": "zz"}, ["0x1"]])
def test_from_rpc_log_rejects_missing_block(bad):
    with pytest.raises(ValueError):
        EventRecord.from_rpc_log(bad)


def test_block_number_of_variants():
    assert block_number_of(EventRecord(block_number=5)) == 5
    assert block_number_of({"blockNumber": "0x10"}) == 16
    assert block_number_of({"block_number": 9}) == 9
    with pytest.raises(ValueError):
        block_number_of({"number": 1})
    with pytest.raises(ValueError):
        block_number_of(object())
