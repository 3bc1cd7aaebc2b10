import json

import pytest

from flow_seal.config import GENESIS_HASH
from flow_seal.journal import (
    ChainedJournal,
    HashChain,
    PlainJournal,
    chain_hash,
    open_journal,
    read_chain,
    verify_chain,
)


def _stamp():
    return "2026-01-02T03:04:05.000Z"


def _build(n=3):
    chain = HashChain(GENESIS_HASH)
    return chain, [chain.append({"event": f"step.{i}", "i": i}) for i in range(n)]


# ---------------------------------------------------------------------------
# HashChain
# ---------------------------------------------------------------------------


def test_first_entry_links_to_seed():
    _, entries = _build(1)
    assert entries[0].prev_hash == GENESIS_HASH
    assert entries[0].hash == chain_hash(GENESIS_HASH, {"event": "step.0", "i": 0})


def test_chain_hash_ignores_key_order():
    assert chain_hash(GENESIS_HASH, {"a": 1, "b": 2}) == chain_hash(GENESIS_HASH, {"b": 2, "a": 1})


def test_seed_must_be_a_sha256_hex_length():
    with pytest.raises(ValueError):
        HashChain("abc")


def test_verify_intact_chain():
    chain, entries = _build()
    check = verify_chain(entries, GENESIS_HASH, expected_head=chain.head, expected_length=chain.length)
    assert check.ok
    assert check.head == chain.head
    assert check.length == 3


def test_verify_detects_tampered_data():
    chain, entries = _build()
    entries[1] = entries[1].model_copy(update={"data": {"event": "step.1", "i": 99}})
    check = verify_chain(entries, GENESIS_HASH, expected_head=chain.head)
    assert not check.ok
    assert check.broken_at == 1


def test_verify_detects_reordering():
    _, entries = _build()
    entries[1], entries[2] = entries[2], entries[1]
    check = verify_chain(entries, GENESIS_HASH)
    assert not check.ok
    assert check.broken_at == 1


def test_verify_detects_truncation_against_recorded_head():
    chain, entries = _build()
    check = verify_chain(entries[:-1], GENESIS_HASH, expected_head=chain.head, expected_length=chain.length)
    assert not check.ok
    assert "count" in check.reason


def test_verify_detects_wrong_seed():
    _, entries = _build()
    assert not verify_chain(entries, "f" * 64).ok


# ---------------------------------------------------------------------------
# Journals on disk
# ---------------------------------------------------------------------------


def test_chained_journal_round_trips_through_read_chain(tmp_path):
    path = tmp_path / "journal.ndjson"
    journal = ChainedJournal(path, "run-1", _stamp, GENESIS_HASH)
    journal.emit("run.start", flow_id="checkout")
    journal.emit("step.end", step_index=1, result="success")
    described = journal.describe()
    journal.close()

    entries = read_chain(path)
    assert [e.data["event"] for e in entries] == ["run.start", "step.end"]
    assert entries[0].data == {
        "timestamp_utc": _stamp(),
        "run_id": "run-1",
        "event": "run.start",
        "flow_id": "checkout",
    }
    check = verify_chain(entries, described["seed"], described["head"], described["length"])
    assert check.ok
    assert described == {
        "strategy": "hash_chain",
        "path": "journal.ndjson",
        "seed": GENESIS_HASH,
        "head": entries[-1].hash,
        "length": 2,
    }


def test_editing_a_journal_line_breaks_verification(tmp_path):
    path = tmp_path / "journal.ndjson"
    journal = ChainedJournal(path, "run-1", _stamp, GENESIS_HASH)
    journal.emit("step.end", result="error")
    journal.emit("run.end", status="error")
    described = journal.describe()
    journal.close()

    path.write_text(path.read_text(encoding="utf-8").replace('"error"', '"success"', 1), encoding="utf-8")
    check = verify_chain(read_chain(path), GENESIS_HASH, described["head"], described["length"])
    assert not check.ok


def test_plain_journal_writes_canonical_lines(tmp_path):
    path = tmp_path / "journal.ndjson"
    journal = PlainJournal(path, "run-1", _stamp)
    journal.emit("run.start", b=2, a=1)
    journal.close()

    line = path.read_text(encoding="utf-8").splitlines()[0]
    assert line == '{"a":1,"b":2,"event":"run.start","run_id":"run-1","timestamp_utc":"2026-01-02T03:04:05.000Z"}'
    assert json.loads(line)["event"] == "run.start"
    assert journal.describe() == {"strategy": "plain", "path": "journal.ndjson"}


def test_emit_after_close_is_ignored(tmp_path):
    path = tmp_path / "journal.ndjson"
    journal = open_journal(path, "run-1", _stamp, chained=False, seed=GENESIS_HASH)
    journal.emit("run.start")
    journal.close()
    journal.emit("late")
    assert journal.closed
    assert len(path.read_text(encoding="utf-8").splitlines()) == 1


def test_open_journal_selects_strategy(tmp_path):
    chained = open_journal(tmp_path / "a.ndjson", "r", _stamp, chained=True, seed=GENESIS_HASH)
    plain = open_journal(tmp_path / "b.ndjson", "r", _stamp, chained=False, seed=GENESIS_HASH)
    try:
        assert isinstance(chained, ChainedJournal)
        assert isinstance(plain, PlainJournal)
    finally:
        chained.close()
        plain.close()
