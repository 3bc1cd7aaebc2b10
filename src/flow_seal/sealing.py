# sealing.py
# Deterministic evidence sealing and independent verification.
#
# Seal:   walk the deliverable tree → (path, sha256, size) per file, minus the
#         manifest and packet hash themselves → sort by path bytes →
#         canonical manifest bytes → packet hash = SHA256(those bytes).
# Verify: repeat the walk and compare. Any extra, missing, altered or
#         reordered entry is reported.
#
# A packet is sealed exactly once. Nothing may be written into the
# deliverable tree after seal_packet returns.

import json
from pathlib import Path

from pydantic import ValidationError

from flow_seal.canonical import canonical_bytes, sha256_hex
from flow_seal.config import Settings
from flow_seal.errors import SealingError
from flow_seal.journal import read_chain, verify_chain
from flow_seal.layout import (
    JOURNAL_REL,
    MANIFEST_REL,
    PACKET_HASH_REL,
    RUN_METADATA_REL,
    RunLayout,
    sha256_file,
)
from flow_seal.models import Manifest, ManifestEntry, PacketSeal, VerificationReport

SEAL_FILES = frozenset({MANIFEST_REL, PACKET_HASH_REL})


# ---------------------------------------------------------------------------
# Manifest construction
# ---------------------------------------------------------------------------


def collect_files(root: Path) -> list[ManifestEntry]:
    """Every regular file under `root` except the seal files, sorted by path bytes."""
    entries = []
    for path in root.rglob("*"):
        if not path.is_file():
            continue
        rel = path.relative_to(root).as_posix()
        if rel in SEAL_FILES:
            continue
        entries.append(ManifestEntry(path=rel, sha256=sha256_file(path), size_bytes=path.stat().st_size))
    entries.sort(key=lambda entry: entry.path.encode("utf-8"))
    return entries


def build_manifest(root: Path, run_id: str, created_at: str) -> Manifest:
    return Manifest(run_id=run_id, created_at=created_at, files=collect_files(root))


def seal_packet(root: Path, run_id: str, created_at: str) -> PacketSeal:
    """
    Write manifest.json and packet_hash.txt under `root`.

    Raises SealingError if the tree is already sealed or the manifest cannot
    be built; nothing is written in that case.
    """
    manifest_path = root / MANIFEST_REL
    packet_hash_path = root / PACKET_HASH_REL
    if manifest_path.exists() or packet_hash_path.exists():
        raise SealingError(f"Packet under {root} is already sealed; a seal is never recomputed.")

    try:
        manifest = build_manifest(root, run_id, created_at)
        manifest_bytes = canonical_bytes(manifest)
    except SealingError:
        raise
    except (OSError, TypeError, ValueError) as exc:
        raise SealingError(f"Manifest construction failed: {exc}") from exc

    packet_hash = sha256_hex(manifest_bytes)
    try:
        manifest_path.parent.mkdir(parents=True, exist_ok=True)
        manifest_path.write_bytes(manifest_bytes)
        packet_hash_path.write_text(packet_hash + "\n", encoding="utf-8")
    except OSError as exc:
        raise SealingError(f"Could not persist the seal: {exc}") from exc

    return PacketSeal(
        packet_hash=packet_hash,
        manifest_path=MANIFEST_REL,
        packet_hash_path=PACKET_HASH_REL,
        file_count=len(manifest.files),
    )


# ---------------------------------------------------------------------------
# Required artifact gate
# ---------------------------------------------------------------------------


def check_required_artifacts(layout: RunLayout, settings: Settings) -> list[str]:
    """Labels of required artifacts that are missing. Run before the final metadata write."""
    required = {
        "interaction_log.json": layout.interaction_log_path,
        "evidence_index.json": layout.evidence_index_path,
        "journal.ndjson": layout.journal_path,
        "console.json": layout.console_path,
        "exhibits/screenshots": layout.screenshots_dir,
    }
    if settings.record_trace:
        required["trace.zip"] = layout.trace_path
    if settings.record_har:
        required["network.har"] = layout.har_path
    if settings.record_video:
        required["video.webm"] = layout.video_path
    return [label for label, path in required.items() if not path.exists()]


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


def _verify_journal(root: Path, problems: list[str]) -> None:
    metadata_path = root / RUN_METADATA_REL
    journal_path = root / JOURNAL_REL
    if not metadata_path.exists() or not journal_path.exists():
        return
    journal_info = json.loads(metadata_path.read_text(encoding="utf-8")).get("journal") or {}
    if journal_info.get("strategy") != "hash_chain":
        return
    try:
        entries = read_chain(journal_path)
    except (OSError, ValidationError, ValueError) as exc:
        problems.append(f"journal chain unreadable: {exc}")
        return
    check = verify_chain(
        entries,
        journal_info.get("seed", ""),
        expected_head=journal_info.get("head"),
        expected_length=journal_info.get("length"),
    )
    if not check.ok:
        problems.append(f"journal chain broken at entry {check.broken_at}: {check.reason}")


def verify_packet(root: str | Path) -> VerificationReport:
    """Independently repeat the sealing walk over `root` and compare with the persisted seal."""
    root = Path(root)
    problems: list[str] = []

    manifest_path = root / MANIFEST_REL
    packet_hash_path = root / PACKET_HASH_REL
    if not manifest_path.exists():
        return VerificationReport(ok=False, problems=[f"{MANIFEST_REL} missing"])
    if not packet_hash_path.exists():
        return VerificationReport(ok=False, problems=[f"{PACKET_HASH_REL} missing"])

    manifest_bytes = manifest_path.read_bytes()
    actual_hash = sha256_hex(manifest_bytes)
    if packet_hash_path.read_text(encoding="utf-8") != actual_hash + "\n":
        problems.append("packet hash does not match the manifest bytes")

    try:
        manifest = Manifest.model_validate_json(manifest_bytes)
    except ValidationError as exc:
        problems.append(f"manifest unreadable: {exc}")
        return VerificationReport(ok=False, packet_hash=actual_hash, problems=problems)

    if canonical_bytes(manifest) != manifest_bytes:
        problems.append("manifest is not in canonical form")
    recorded_paths = [entry.path for entry in manifest.files]
    if recorded_paths != sorted(recorded_paths, key=lambda p: p.encode("utf-8")):
        problems.append("manifest files are not sorted by path")

    recorded = {entry.path: entry for entry in manifest.files}
    current = {entry.path: entry for entry in collect_files(root)}
    for path in sorted(recorded.keys() - current.keys()):
        problems.append(f"missing file: {path}")
    for path in sorted(current.keys() - recorded.keys()):
        problems.append(f"extra file: {path}")
    for path in sorted(recorded.keys() & current.keys()):
        if recorded[path] != current[path]:
            problems.append(f"altered file: {path}")

    _verify_journal(root, problems)
    return VerificationReport(ok=not problems, packet_hash=actual_hash, problems=problems)
