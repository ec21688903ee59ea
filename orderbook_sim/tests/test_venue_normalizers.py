"""Normalizer behaviour for the three venues: books, control frames and bad input."""
import json

import pytest

from orderbook_sim.core.events import BookLevel, Venue, validate_snapshot
from orderbook_sim.venues import NormalizeOutcome, build_subscription, get_adapter, normalize
from orderbook_sim.venues import bybit, deribit, okx
from conftest import okx_book_frame

CLOCK = lambda: 1_700_000_000_123  # noqa: E731


# ---------------- Subscriptions ----------------

def test_okx_subscription():
    assert okx.build_subscription("BTC-USDT") == {
        "op": "subscribe",
        "args": [{"channel": "books5", "instId": "BTC-USDT"}],
    }


def test_bybit_subscription():
    assert build_subscription("bybit", "BTCUSDT") == {"op": "subscribe", "args": ["orderbook.50.BTCUSDT"]}


def test_deribit_subscription_is_stateless():
    first = deribit.build_subscription("BTC-PERPETUAL")
    assert first == deribit.build_subscription("BTC-PERPETUAL")
    assert first["method"] == "public/subscribe"
    assert first["params"] == {"channels": ["book.BTC-PERPETUAL.100ms"]}
    assert first["id"] == 1
    assert deribit.build_subscription("BTC-PERPETUAL", request_id=9)["id"] == 9


def test_unknown_venue_rejected():
    with pytest.raises(ValueError):
        get_adapter("binance")


# ---------------- OKX ----------------

def test_okx_book_is_normalized_sorted_and_stamped():
    frame = okx_book_frame(bids=[("99", "2"), ("100", "1"), ("98", "0")], asks=[("102", "3"), ("101", "1")])
    res = normalize(Venue.OKX, json.dumps(frame), "BTC-USDT", CLOCK)
    assert res.outcome is NormalizeOutcome.BOOK
    snap = res.snapshot
    assert snap.venue is Venue.OKX and snap.symbol == "BTC-USDT"
    assert snap.bids == (BookLevel(100.0, 1.0), BookLevel(99.0, 2.0))
    assert snap.asks == (BookLevel(101.0, 1.0), BookLevel(102.0, 3.0))
    assert snap.observed_at == 1_700_000_000_123
    assert validate_snapshot(snap) == []


def test_okx_accepts_bytes_frames():
    raw = json.dumps(okx_book_frame()).encode()
    assert okx.normalize(raw, "BTC-USDT", CLOCK).is_book


@pytest.mark.parametrize(
    "raw",
    [
        "pong",
        {"event": "subscribe", "arg": {"channel": "books5", "instId": "BTC-USDT"}, "connId": "a1"},
        {"event": "error", "code": "60012", "msg": "Invalid request"},
        {"arg": {"channel": "tickers", "instId": "BTC-USDT"}, "data": [{}]},
        okx_book_frame(symbol="ETH-USDT"),
    ],
)
def test_okx_control_and_foreign_frames_not_applicable(raw):
    res = okx.normalize(raw if isinstance(raw, str) else json.dumps(raw), "BTC-USDT", CLOCK)
    assert res.outcome is NormalizeOutcome.NOT_APPLICABLE
    assert res.snapshot is None


@pytest.mark.parametrize("raw", ["{not json", "[1, 2, 3]", json.dumps({"foo": 1}), 42])
def test_okx_decode_failures(raw):
    assert okx.normalize(raw, "BTC-USDT", CLOCK).outcome is NormalizeOutcome.DECODE_FAILED


@pytest.mark.parametrize(
    "frame",
    [
        {"arg": {"channel": "books5", "instId": "BTC-USDT"}, "data": []},
        {"arg": {"channel": "books5", "instId": "BTC-USDT"}, "data": [{"bids": [["100", "1"]]}]},
        okx_book_frame(bids=[("abc", "1")]),
        okx_book_frame(asks=[("101", "-1")]),
        okx_book_frame(asks=[("101", "inf")]),
        okx_book_frame(bids=[("0", "1")]),
    ],
)
def test_okx_parse_failures(frame):
    res = okx.normalize(json.dumps(frame), "BTC-USDT", CLOCK)
    assert res.outcome is NormalizeOutcome.PARSE_FAILED
    assert res.error


# ---------------- Bybit ----------------

def _bybit_frame(symbol="BTCUSDT", b=(("100", "1"),), a=(("101", "2"),), kind="snapshot"):
    return {
        "topic": f"orderbook.50.{symbol}",
        "type": kind,
        "ts": 1700000000000,
        "data": {"s": symbol, "b": [list(x) for x in b], "a": [list(x) for x in a], "u": 1, "seq": 7},
    }


def test_bybit_book_is_normalized():
    res = bybit.normalize(json.dumps(_bybit_frame(b=[("99.5", "3"), ("100", "1")])), "BTCUSDT", CLOCK)
    assert res.is_book
    assert [l.price for l in res.snapshot.bids] == [100.0, 99.5]
    assert res.snapshot.asks == (BookLevel(101.0, 2.0),)


def test_bybit_delta_treated_as_full_book():
    res = bybit.normalize(json.dumps(_bybit_frame(kind="delta", a=[("101", "0"), ("102", "4")])), "BTCUSDT", CLOCK)
    assert res.is_book
    assert res.snapshot.asks == (BookLevel(102.0, 4.0),)


@pytest.mark.parametrize(
    "frame",
    [
        {"success": True, "ret_msg": "", "op": "subscribe", "conn_id": "x"},
        {"success": True, "ret_msg": "pong", "op": "ping"},
        {"topic": "publicTrade.BTCUSDT", "data": []},
        _bybit_frame(symbol="ETHUSDT"),
        {**_bybit_frame(), "topic": "orderbook.1.BTCUSDT"},
        {**_bybit_frame(), "topic": "orderbook.200.BTCUSDT"},
        {**_bybit_frame(), "topic": "orderbook.50.BTCUSDT.extra"},
    ],
)
def test_bybit_not_applicable(frame):
    assert bybit.normalize(json.dumps(frame), "BTCUSDT", CLOCK).outcome is NormalizeOutcome.NOT_APPLICABLE


@pytest.mark.parametrize(
    "frame",
    [
        {"topic": "orderbook.50.BTCUSDT", "data": None},
        {"topic": "orderbook.50.BTCUSDT", "data": {"s": "BTCUSDT", "b": []}},
        _bybit_frame(b=[("100", "1", "extra")]),
        _bybit_frame(a=[("x", "1")]),
        _bybit_frame(a=[("101", "nan")]),
    ],
)
def test_bybit_parse_failures(frame):
    assert bybit.normalize(json.dumps(frame), "BTCUSDT", CLOCK).outcome is NormalizeOutcome.PARSE_FAILED


def test_bybit_unknown_kind_decode_failed():
    assert bybit.normalize('{"hello": "world"}', "BTCUSDT", CLOCK).outcome is NormalizeOutcome.DECODE_FAILED


# ---------------- Deribit ----------------

def _deribit_frame(symbol="BTC-PERPETUAL", bids=((100.0, 10.0),), asks=((101.0, 20.0),)):
    return {
        "jsonrpc": "2.0",
        "method": "subscription",
        "params": {
            "channel": f"book.{symbol}.100ms",
            "data": {"instrument_name": symbol, "bids": [list(x) for x in bids], "asks": [list(x) for x in asks]},
        },
    }


def test_deribit_pairs_normalized():
    res = deribit.normalize(json.dumps(_deribit_frame(bids=[(99.0, 5), (100.0, 10)])), "BTC-PERPETUAL", CLOCK)
    assert res.is_book
    assert res.snapshot.bids == (BookLevel(100.0, 10.0), BookLevel(99.0, 5.0))
    assert res.snapshot.observed_at == 1_700_000_000_123


def test_deribit_action_triples_with_delete():
    frame = _deribit_frame(bids=[("new", 100.0, 10.0), ("delete", 99.0, 0)], asks=[("change", 101.0, 2.0)])
    res = deribit.normalize(json.dumps(frame), "BTC-PERPETUAL", CLOCK)
    assert res.is_book
    assert res.snapshot.bids == (BookLevel(100.0, 10.0),)
    assert res.snapshot.asks == (BookLevel(101.0, 2.0),)


@pytest.mark.parametrize(
    "frame",
    [
        {"jsonrpc": "2.0", "id": 1, "result": ["book.BTC-PERPETUAL.100ms"]},
        {"jsonrpc": "2.0", "id": 2, "error": {"code": 11050, "message": "bad_request"}},
        {"jsonrpc": "2.0", "method": "heartbeat", "params": {"type": "test_request"}},
        {"jsonrpc": "2.0", "method": "subscription", "params": {"channel": "trades.BTC-PERPETUAL.100ms", "data": []}},
        _deribit_frame(symbol="ETH-PERPETUAL"),
        {"jsonrpc": "2.0", "method": "subscription",
         "params": {**_deribit_frame()["params"], "channel": "book.BTC-PERPETUAL.raw"}},
        {"jsonrpc": "2.0", "method": "subscription",
         "params": {**_deribit_frame()["params"], "channel": "book.BTC-PERPETUAL.none.10.100ms"}},
    ],
)
def test_deribit_not_applicable(frame):
    assert deribit.normalize(json.dumps(frame), "BTC-PERPETUAL", CLOCK).outcome is NormalizeOutcome.NOT_APPLICABLE


@pytest.mark.parametrize(
    "frame",
    [
        _deribit_frame(bids=[("100", "1")]),
        _deribit_frame(asks=[(101.0, True)]),
        _deribit_frame(asks=[(101.0,)]),
        {"jsonrpc": "2.0", "method": "subscription", "params": {"channel": "book.BTC-PERPETUAL.100ms"}},
    ],
)
def test_deribit_parse_failures(frame):
    assert deribit.normalize(json.dumps(frame), "BTC-PERPETUAL", CLOCK).outcome is NormalizeOutcome.PARSE_FAILED


def test_normalizers_never_raise_on_garbage():
    for venue in Venue:
        for raw in (b"\xff\xfe", None, "", "null", "{}", "[]", 3.14):
            res = normalize(venue, raw, "X", CLOCK)
            assert res.outcome is NormalizeOutcome.DECODE_FAILED
