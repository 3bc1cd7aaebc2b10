import json
from pathlib import Path
from unittest.mock import patch

from conftest import plan_dict
from flow_seal.config import Settings
from flow_seal.engine import EXIT_OK, EXIT_RUN_ERROR, EXIT_UNSEALED
from flow_seal.errors import SealingError
from flow_seal.journal import Journal, read_chain, verify_chain
from flow_seal.layout import MANIFEST_REL, PACKET_HASH_REL, write_json
from flow_seal.redaction import REDACTION_PLACEHOLDER
from flow_seal.sealing import verify_packet

CHECKOUT = [
    {"type": "wait_selector", "selector": "#cart"},
    {"type": "click_selector", "selector": "#checkout", "note": "Open checkout"},
    {"type": "type_selector", "selector": "#email", "text": "a@example.com"},
]
COUNTS = {"#cart": 1, "#checkout": 1, "#email": 1}


def _load(result, rel):
    return json.loads((Path(result.deliverable_dir) / rel).read_text(encoding="utf-8"))


# ---------------------------------------------------------------------------
# Successful runs
# ---------------------------------------------------------------------------


def test_successful_run_produces_verifiable_packet(make_engine):
    engine, provider = make_engine(plan_dict(CHECKOUT, goal={"selector": "#confirm"}), counts={**COUNTS, "#confirm": 1})
    result = engine.run()

    assert result.status == "success"
    assert result.exit_code == EXIT_OK
    assert result.run_id == "20260102T030405Z_checkout"
    assert provider.calls[0] == ("navigate", "https://shop.example/")
    assert provider.acted_on() == ["#checkout", "#email"]
    assert provider.closed

    report = verify_packet(result.deliverable_dir)
    assert report.ok, report.problems
    assert report.packet_hash == result.packet_hash


def test_successful_run_writes_all_deliverables(make_engine):
    engine, _ = make_engine(plan_dict(CHECKOUT), counts=COUNTS)
    result = engine.run()
    root = Path(result.deliverable_dir)

    for rel in (
        "report.txt",
        "logs/interaction_log.json",
        "logs/evidence_index.json",
        "logs/journal.ndjson",
        "verification/run_metadata.json",
        "verification/console.json",
        "verification/STATUS.txt",
        MANIFEST_REL,
        PACKET_HASH_REL,
    ):
        assert (root / rel).is_file(), rel
    assert (root / "verification" / "STATUS.txt").read_text(encoding="utf-8") == "SUCCESS\n"
    assert (Path(result.run_dir) / "raw" / "trace.zip").is_file()


def test_interaction_log_has_one_entry_per_step(make_engine):
    engine, _ = make_engine(plan_dict(CHECKOUT), counts=COUNTS)
    result = engine.run()

    log = _load(result, "logs/interaction_log.json")
    assert [e["step_index"] for e in log] == [1, 2, 3, 4]
    assert [e["action"] for e in log] == ["navigate", "wait_selector", "click_selector", "type_selector"]
    assert all(e["result"] == "success" for e in log)
    assert log[0]["screenshot"] == "deliverable/exhibits/screenshots/screenshot_checkout_step_001.png"


def test_evidence_index_carries_hashes(make_engine):
    engine, _ = make_engine(plan_dict(CHECKOUT), counts=COUNTS)
    result = engine.run()

    evidence = _load(result, "logs/evidence_index.json")
    assert len(evidence) == 4
    assert all(len(e["screenshot_sha256"]) == 64 for e in evidence)
    assert all(e["html"].startswith("raw/html/") for e in evidence)


def test_run_metadata_records_journal_head(make_engine):
    engine, _ = make_engine(plan_dict(CHECKOUT), counts=COUNTS)
    result = engine.run()

    metadata = _load(result, "verification/run_metadata.json")
    assert metadata["status"] == "success"
    assert metadata["error"] is None
    assert "packet_hash" not in metadata
    assert metadata["artifacts"]["recordings"]["trace"]["path"] == "raw/trace.zip"
    assert metadata["artifacts"]["step_states"] == {"1": "completed", "2": "completed", "3": "completed", "4": "completed"}

    journal = metadata["journal"]
    entries = read_chain(Path(result.deliverable_dir) / "logs" / "journal.ndjson")
    assert verify_chain(entries, journal["seed"], journal["head"], journal["length"]).ok
    assert entries[0].data["event"] == "run.start"
    assert entries[-1].data["event"] == "run.end"


def test_repeated_runs_seal_identically(tmp_path, make_engine):
    hashes = []
    for name in ("a", "b"):
        run_settings = Settings(runs_dir=str(tmp_path / name))
        engine, _ = make_engine(plan_dict(CHECKOUT), run_settings=run_settings, counts=COUNTS)
        result = engine.run()
        hashes.append((Path(result.deliverable_dir) / MANIFEST_REL).read_bytes())
    assert hashes[0] == hashes[1]


def test_plain_journal_strategy_still_verifies(tmp_path, make_engine):
    run_settings = Settings(runs_dir=str(tmp_path / "plain"), chain_journal=False)
    engine, _ = make_engine(plan_dict(CHECKOUT), run_settings=run_settings, counts=COUNTS)
    result = engine.run()

    assert _load(result, "verification/run_metadata.json")["journal"]["strategy"] == "plain"
    assert verify_packet(result.deliverable_dir).ok


def test_note_redaction_reaches_the_log(make_engine):
    steps = [{"type": "click_selector", "selector": "#checkout", "note": "Button is clearly inaccessible"}]
    engine, _ = make_engine(plan_dict(steps), counts=COUNTS)
    result = engine.run()

    log = _load(result, "logs/interaction_log.json")
    assert log[1]["note"] == f"Button is clearly {REDACTION_PLACEHOLDER}"
    console = _load(result, "verification/console.json")
    assert [e["type"] for e in console] == ["redaction"]
    assert "inaccessible" not in (Path(result.deliverable_dir) / "logs" / "journal.ndjson").read_text(encoding="utf-8")


def test_relaxed_wait_records_policy_override(make_engine):
    steps = [
        {"type": "wait_selector", "selector": ".product-card", "allow_multiple": True},
        {"type": "click_selector", "selector": "#checkout"},
    ]
    engine, _ = make_engine(plan_dict(steps), counts={".product-card": 3, "#checkout": 1})
    result = engine.run()

    assert result.status == "success"
    [override] = [e for e in _load(result, "verification/console.json") if e["type"] == "policy.override"]
    assert override["detail"]["observed_count"] == 3
    assert override["detail"]["stability"] == "stable"


# ---------------------------------------------------------------------------
# Failing runs
# ---------------------------------------------------------------------------


def test_ambiguity_halts_and_still_seals(make_engine):
    steps = [
        {"type": "click_selector", "selector": "#accept"},
        {"type": "click_selector", "selector": "button.submit"},
        {"type": "click_selector", "selector": "#next"},
    ]
    engine, provider = make_engine(plan_dict(steps), counts={"#accept": 1, "button.submit": 2, "#next": 1})
    result = engine.run()

    assert result.status == "error"
    assert result.error.kind == "AmbiguityError"
    assert result.exit_code == EXIT_RUN_ERROR
    assert provider.acted_on() == ["#accept"]

    log = _load(result, "logs/interaction_log.json")
    errors = [e for e in log if e["result"] == "error"]
    assert len(errors) == 1
    assert errors[0]["step_index"] == 3
    assert errors[0]["error_message"] == 'Ambiguity Error: selector "button.submit" matched 2 elements (expected 1).'
    assert len(log) == 3

    status = (Path(result.deliverable_dir) / "verification" / "STATUS.txt").read_text(encoding="utf-8")
    assert status.startswith("ERROR: AmbiguityError")
    assert verify_packet(result.deliverable_dir).ok


def test_missing_selector_is_not_found(make_engine):
    engine, provider = make_engine(plan_dict(CHECKOUT), counts={"#cart": 1, "#checkout": 0})
    result = engine.run()

    assert result.error.kind == "NotFoundError"
    assert provider.acted_on() == []
    states = _load(result, "verification/run_metadata.json")["artifacts"]["step_states"]
    assert states == {"1": "completed", "2": "completed", "3": "failed", "4": "pending"}


def test_provider_action_failure_becomes_action_error(make_engine):
    engine, _ = make_engine(plan_dict(CHECKOUT), counts=COUNTS, failing_selectors={"#checkout"})
    result = engine.run()

    assert result.error.kind == "ActionError"
    assert "detached from DOM" in result.error.message
    assert verify_packet(result.deliverable_dir).ok


def test_failed_text_assertion_is_action_error(make_engine):
    steps = [{"type": "click_selector", "selector": "#checkout"}, {"type": "assert_text_present", "text": "Thanks"}]
    engine, _ = make_engine(plan_dict(steps), counts=COUNTS, page_text="Sorry")
    result = engine.run()
    assert result.error.kind == "ActionError"


def test_goal_absent_but_present_fails_under_goal_index(make_engine):
    goal = {"selector": ".error-banner", "expect": "absent"}
    engine, _ = make_engine(plan_dict(CHECKOUT, goal=goal), counts={**COUNTS, ".error-banner": 1})
    result = engine.run()

    assert result.error.kind == "GoalError"
    last = _load(result, "logs/interaction_log.json")[-1]
    assert last["step_index"] == "goal"
    assert last["evidence_step"] == 5
    assert last["result"] == "error"


def test_goal_with_several_matches_is_ambiguous(make_engine):
    engine, _ = make_engine(plan_dict(CHECKOUT, goal={"selector": "#confirm"}), counts={**COUNTS, "#confirm": 2})
    result = engine.run()

    assert result.error.kind == "GoalError"
    assert result.error.message.startswith("Goal ambiguous")


def test_screenshot_failure_is_not_fatal(make_engine):
    engine, _ = make_engine(plan_dict(CHECKOUT), counts=COUNTS, failing_snapshots={"screenshot"})
    result = engine.run()

    assert result.status == "success"
    evidence = _load(result, "logs/evidence_index.json")
    assert all(e["screenshot_sha256"] is None and e["screenshot_size"] == 0 for e in evidence)
    console = _load(result, "verification/console.json")
    assert {e["type"] for e in console} == {"evidence_error"}
    assert verify_packet(result.deliverable_dir).ok


def test_provider_launch_failure_still_seals(make_engine):
    engine, _ = make_engine(plan_dict(CHECKOUT), counts=COUNTS, open_error=RuntimeError("browser crashed"))
    result = engine.run()

    assert result.error.kind == "ActionError"
    assert "browser crashed" in result.error.message
    assert _load(result, "logs/interaction_log.json") == []
    assert verify_packet(result.deliverable_dir).ok


def test_missing_recording_fails_artifact_gate(make_engine):
    engine, _ = make_engine(plan_dict(CHECKOUT), counts=COUNTS, skip_recordings={"video"})
    result = engine.run()

    assert result.status == "error"
    assert result.error.kind == "SealingError"
    assert "video.webm" in result.error.message
    assert result.exit_code == EXIT_RUN_ERROR
    assert verify_packet(result.deliverable_dir).ok


def test_first_error_wins_over_gate_failure(make_engine):
    engine, _ = make_engine(plan_dict(CHECKOUT), counts={"#cart": 0}, skip_recordings={"video"})
    result = engine.run()
    assert result.error.kind == "NotFoundError"


def test_tampered_journal_fails_verification(make_engine):
    engine, _ = make_engine(plan_dict(CHECKOUT), counts=COUNTS)
    result = engine.run()

    path = Path(result.deliverable_dir) / "logs" / "journal.ndjson"
    lines = path.read_text(encoding="utf-8").splitlines()
    path.write_text("\n".join(lines[:-1]) + "\n", encoding="utf-8")

    report = verify_packet(result.deliverable_dir)
    assert not report.ok
    assert "altered file: logs/journal.ndjson" in report.problems
    assert any(p.startswith("journal chain broken") for p in report.problems)


# ---------------------------------------------------------------------------
# Finalize phase
# ---------------------------------------------------------------------------


def _failing_write(name):
    def _write(path, value):
        if path.name == name:
            raise OSError("No space left on device")
        write_json(path, value)

    return _write


def test_log_write_failure_is_recorded_and_sealed(make_engine):
    engine, provider = make_engine(plan_dict(CHECKOUT), counts=COUNTS)
    with patch("flow_seal.engine.write_json", side_effect=_failing_write("interaction_log.json")):
        result = engine.run()

    assert result.status == "error"
    assert result.error.kind == "SealingError"
    assert "interaction log write failed" in result.error.message
    assert result.exit_code == EXIT_RUN_ERROR
    assert result.packet_hash is not None
    assert provider.closed
    assert not (Path(result.deliverable_dir) / "logs" / "interaction_log.json").exists()
    assert verify_packet(result.deliverable_dir).ok


def test_metadata_write_failure_still_seals(make_engine):
    engine, _ = make_engine(plan_dict(CHECKOUT), counts=COUNTS)
    with patch("flow_seal.engine.write_json", side_effect=_failing_write("run_metadata.json")):
        result = engine.run()

    assert result.error.kind == "SealingError"
    status = (Path(result.deliverable_dir) / "verification" / "STATUS.txt").read_text(encoding="utf-8")
    assert status.startswith("ERROR: SealingError: metadata write failed")
    assert verify_packet(result.deliverable_dir).ok


def test_journal_end_write_failure_still_seals(make_engine):
    engine, _ = make_engine(plan_dict(CHECKOUT), counts=COUNTS)
    original = Journal.emit

    def _emit(journal, event, **fields):
        if event == "run.end":
            raise OSError("disk detached")
        original(journal, event, **fields)

    with patch.object(Journal, "emit", autospec=True, side_effect=_emit):
        result = engine.run()

    assert result.error.kind == "SealingError"
    assert "journal close failed: disk detached" in result.error.message
    assert result.packet_hash is not None
    assert verify_packet(result.deliverable_dir).ok


def test_seal_failure_leaves_packet_unsealed(make_engine):
    engine, _ = make_engine(plan_dict(CHECKOUT), counts=COUNTS)
    with patch("flow_seal.engine.seal_packet", side_effect=SealingError("manifest write refused")):
        result = engine.run()

    assert result.exit_code == EXIT_UNSEALED
    assert result.packet_hash is None
    assert not (Path(result.deliverable_dir) / MANIFEST_REL).exists()
