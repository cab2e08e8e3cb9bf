import pytest
from eth_abi import encode
from hexbytes import HexBytes

from proposal_notis.api.abi import PROPOSAL_CREATED_TOPIC, PROPOSAL_EXECUTED_TOPIC
from proposal_notis.api.client import ChainLogClient, is_range_error
from proposal_notis.api.models import (
    ClockMode,
    MalformedEventError,
    ProposalCreatedEvent,
    ProposalExecutedEvent,
    RangeTooLargeError,
    TransportError,
    parse_event,
)

PROPOSER = "0x00000000000000000000000000000000000000Aa"
TARGET = "0x00000000000000000000000000000000000000bB"


@pytest.fixture
def client():
    return ChainLogClient(http_url="", wss_url="")


def raw_log(topic, data, removed=False):
    return {
        "address": "0xed9cd49bd29f43a6cb74f780ba3aef0fbf1a8a2a",
        "topics": [HexBytes(topic)],
        "data": HexBytes(data),
        "blockNumber": 123,
        "blockHash": HexBytes(b"\x11" * 32),
        "transactionHash": HexBytes(b"\x22" * 32),
        "transactionIndex": 0,
        "logIndex": 3,
        "removed": removed,
    }


def created_data(proposal_id=42, start=100, end=200):
    return encode(
        ["uint256", "address", "address", "bytes", "uint256", "uint256", "string"],
        [proposal_id, PROPOSER, TARGET, b"\x01\x02", start, end, "Raise the cap"],
    )


def test_decode_proposal_created(client):
    event = client.decode_log(raw_log(PROPOSAL_CREATED_TOPIC, created_data()))

    assert isinstance(event, ProposalCreatedEvent)
    assert event.proposal_id == 42
    assert event.proposer.lower() == PROPOSER.lower()
    assert event.calldata == "0x0102"
    assert (event.vote_start, event.vote_end) == (100, 200)
    assert event.description == "Raise the cap"
    assert event.block_number == 123
    assert event.log_index == 3
    assert event.transaction_hash == "0x" + "22" * 32
    assert not event.removed


def test_decode_proposal_executed_marks_removed(client):
    event = client.decode_log(raw_log(PROPOSAL_EXECUTED_TOPIC, encode(["uint256"], [7]), removed=True))

    assert isinstance(event, ProposalExecutedEvent)
    assert event.proposal_id == 7
    assert event.removed


@pytest.mark.parametrize("log", [
    {"topics": []},
    raw_log("0x" + "ab" * 32, b""),
    raw_log(PROPOSAL_CREATED_TOPIC, b"\x00" * 8),
])
def test_decode_rejects_bad_logs(client, log):
    with pytest.raises(MalformedEventError):
        client.decode_log(log)


def test_log_filter_covers_both_events(client):
    assert client.log_filter["topics"] == [[PROPOSAL_CREATED_TOPIC, PROPOSAL_EXECUTED_TOPIC]]


async def test_unconfigured_endpoints_raise_transport_errors(client):
    with pytest.raises(TransportError):
        await client.query_range(0, 10)
    with pytest.raises(TransportError):
        await client.subscribe()
    assert await client.get_clock_mode() == ClockMode.BLOCKNUMBER


def test_parse_event_from_raw_json_values():
    event = parse_event({
        "event": "ProposalCreated",
        "args": {
            "proposalId": "0x2a",
            "proposer": PROPOSER,
            "target": TARGET,
            "data": b"",
            "start": "0x64",
            "end": 200,
        },
        "blockNumber": "0x10",
        "logIndex": "0x1",
    })

    assert event.proposal_id == 42
    assert event.vote_start == 100
    assert event.block_number == 16
    assert event.calldata == "0x"
    assert event.sort_key == (16, 1)


@pytest.mark.parametrize("payload", [
    {},
    {"event": "ProposalQueued", "args": {"proposalId": 1}},
    {"event": "ProposalExecuted", "args": {}},
    {"event": "ProposalCreated", "args": {"proposalId": 1, "proposer": PROPOSER, "target": TARGET,
                                          "start": 200, "end": 100}},
])
def test_parse_event_rejects_invalid_payloads(payload):
    with pytest.raises(MalformedEventError):
        parse_event(payload)


@pytest.mark.parametrize("value, expected", [
    ("mode=timestamp", ClockMode.TIMESTAMP),
    ("mode=blocknumber&from=default", ClockMode.BLOCKNUMBER),
    ("from=default&mode=timestamp", ClockMode.TIMESTAMP),
    ("", ClockMode.BLOCKNUMBER),
])
def test_clock_mode_string(value, expected):
    assert ClockMode.from_clock_mode_string(value) == expected


@pytest.mark.parametrize("message, expected", [
    ("query returned more than 10000 results", True),
    ("eth_getLogs block range is too wide", True),
    ("Log response size exceeded", True),
    ("connection reset by peer", False),
])
def test_range_error_classification(message, expected):
    assert is_range_error(Exception(message)) is expected


def test_range_too_large_is_a_transport_error():
    error = RangeTooLargeError(0, 99_999)
    assert isinstance(error, TransportError)
    assert "0-99999" in str(error)
