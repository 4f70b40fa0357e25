import pytest

from lpledger.clients.rpc import encode_address, encode_uint, pad_topic
from lpledger.core.models import EventLog, RawEventPayloads, utc_from_timestamp
from lpledger.decoding.decoder import decode_log, parse_data_word, to_raw_position_event
from lpledger.decoding.registry import event_spec_from_signature, make_nfpm_registry, make_registry
from lpledger.decoding.specs import registry_topic0s

INCREASE_TOPIC0 = "0x3067048beee31b25b2f1681f88dac838c8bba36af25bfb2b7cf7473a5847e35f"
RECIPIENT = "0x1234567890123456789012345678901234567890"


@pytest.fixture
def registry():
    return make_nfpm_registry()


def _topic0(registry, name: str) -> str:
    return next(spec.topic0 for spec in registry.values() if spec.name == name)


def _log(topics, data_words, *, block=1_000, tx_index=3, log_index=7) -> EventLog:
    return EventLog(
        address="0xc36442b4a4522e871399cd717abdd847ab11fe88",
        topics=tuple(topics),
        data_hex="0x" + "".join(data_words),
        block_number=block,
        tx_hash="0x" + "ab" * 32,
        tx_index=tx_index,
        log_index=log_index,
    )


def test_nfpm_registry_topic0s(registry) -> None:
    assert INCREASE_TOPIC0 in registry
    assert len(registry_topic0s(registry)) == 3
    assert {spec.name for spec in registry.values()} == {"IncreaseLiquidity", "DecreaseLiquidity", "Collect"}


def test_event_spec_from_signature_layout() -> None:
    spec = event_spec_from_signature(
        "Collect(uint256 indexed tokenId, address recipient, uint256 amount0, uint256 amount1)"
    )

    assert spec.signature == "Collect(uint256,address,uint256,uint256)"
    assert [(f.name, f.index) for f in spec.topic_fields] == [("tokenId", 1)]
    assert [(f.name, f.word_index, f.type) for f in spec.data_fields] == [
        ("recipient", 0, "address"),
        ("amount0", 1, "uint256"),
        ("amount1", 2, "uint256"),
    ]
    assert spec.field_names == ("tokenId", "recipient", "amount0", "amount1")


def test_invalid_signature_rejected() -> None:
    with pytest.raises(ValueError):
        make_registry("not an event")


def test_decode_increase_liquidity(registry) -> None:
    log = _log([INCREASE_TOPIC0, pad_topic(4242)], [encode_uint(1_000), encode_uint(5), encode_uint(6)])

    decoded = decode_log(log, registry)
    assert decoded is not None
    raw = to_raw_position_event(decoded, chain_id=1, block_timestamp=utc_from_timestamp(1_700_000_000))

    assert raw is not None
    assert raw.nft_id == 4242
    assert raw.coordinates == (1_000, 3, 7)
    assert raw.payload == RawEventPayloads.IncreaseLiquidity(liquidity=1_000, amount0=5, amount1=6)


def test_decode_collect(registry) -> None:
    log = _log(
        [_topic0(registry, "Collect"), pad_topic(7)],
        [encode_address(RECIPIENT), encode_uint(10**18), encode_uint(0)],
    )

    decoded = decode_log(log, registry)
    raw = to_raw_position_event(decoded, chain_id=1, block_timestamp=utc_from_timestamp(0))

    assert raw.event_type == "COLLECT"
    assert raw.payload.recipient.lower() == RECIPIENT
    assert raw.payload.amount0 == 10**18


def test_decode_unknown_topic(registry) -> None:
    assert decode_log(_log(["0x" + "99" * 32], []), registry) is None


def test_decode_truncated_data(registry) -> None:
    log = _log([INCREASE_TOPIC0, pad_topic(1)], [encode_uint(1)])
    assert decode_log(log, registry) is None


def test_parse_signed_word() -> None:
    word = bytes.fromhex("f" * 64)
    assert parse_data_word(word, "int24") == -1
    assert parse_data_word(word, "uint8") == 2**256 - 1
