# layout.py
# On-disk layout of a run and the small file helpers every writer shares.
#
#   runs/<YYYYMMDDTHHMMSSZ>_<case>/
#     deliverable/                 ← sealed: everything here is in the manifest
#       report.txt
#       logs/{interaction_log.json, evidence_index.json, journal.ndjson}
#       exhibits/screenshots/screenshot_<flow>_step_<NNN>.png
#       verification/{run_metadata.json, console.json, STATUS.txt,
#                     manifest.json, packet_hash.txt}
#     raw/                         ← archive: bound through hashes in the logs
#       trace.zip  video.webm  network.har  html/  ax/

import hashlib
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from flow_seal.canonical import canonical_text

MANIFEST_REL = "verification/manifest.json"
PACKET_HASH_REL = "verification/packet_hash.txt"
RUN_METADATA_REL = "verification/run_metadata.json"
JOURNAL_REL = "logs/journal.ndjson"


def safe_token(value: str | None) -> str:
    token = re.sub(r"[^a-z0-9]+", "_", str(value or "").lower())
    return token.strip("_")


def make_run_id(moment: datetime, label: str) -> str:
    stamp = moment.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return f"{stamp}_{safe_token(label) or 'run'}"


def write_json(path: Path, value: Any) -> None:
    path.write_text(canonical_text(value), encoding="utf-8")


def sha256_file(path: Path) -> str | None:
    """Hex digest of a file, or None if it does not exist. Read errors propagate."""
    digest = hashlib.sha256()
    try:
        with path.open("rb") as fh:
            for chunk in iter(lambda: fh.read(65536), b""):
                digest.update(chunk)
    except FileNotFoundError:
        return None
    return digest.hexdigest()


def file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except FileNotFoundError:
        return 0


@dataclass(frozen=True)
class RunLayout:
    run_dir: Path

    @classmethod
    def create(cls, runs_dir: str | Path, run_id: str) -> "RunLayout":
        layout = cls(Path(runs_dir) / run_id)
        for directory in (
            layout.logs_dir,
            layout.screenshots_dir,
            layout.verification_dir,
            layout.raw_html_dir,
            layout.raw_ax_dir,
        ):
            directory.mkdir(parents=True, exist_ok=True)
        return layout

    def rel(self, path: Path) -> str:
        return path.relative_to(self.run_dir).as_posix()

    # ------------------------------------------------------------------
    # Deliverable
    # ------------------------------------------------------------------

    @property
    def deliverable_dir(self) -> Path:
        return self.run_dir / "deliverable"

    @property
    def logs_dir(self) -> Path:
        return self.deliverable_dir / "logs"

    @property
    def screenshots_dir(self) -> Path:
        return self.deliverable_dir / "exhibits" / "screenshots"

    @property
    def verification_dir(self) -> Path:
        return self.deliverable_dir / "verification"

    @property
    def report_path(self) -> Path:
        return self.deliverable_dir / "report.txt"

    @property
    def interaction_log_path(self) -> Path:
        return self.logs_dir / "interaction_log.json"

    @property
    def evidence_index_path(self) -> Path:
        return self.logs_dir / "evidence_index.json"

    @property
    def journal_path(self) -> Path:
        return self.deliverable_dir / JOURNAL_REL

    @property
    def run_metadata_path(self) -> Path:
        return self.deliverable_dir / RUN_METADATA_REL

    @property
    def console_path(self) -> Path:
        return self.verification_dir / "console.json"

    @property
    def status_path(self) -> Path:
        return self.verification_dir / "STATUS.txt"

    @property
    def manifest_path(self) -> Path:
        return self.deliverable_dir / MANIFEST_REL

    @property
    def packet_hash_path(self) -> Path:
        return self.deliverable_dir / PACKET_HASH_REL

    # ------------------------------------------------------------------
    # Raw archive
    # ------------------------------------------------------------------

    @property
    def raw_dir(self) -> Path:
        return self.run_dir / "raw"

    @property
    def raw_html_dir(self) -> Path:
        return self.raw_dir / "html"

    @property
    def raw_ax_dir(self) -> Path:
        return self.raw_dir / "ax"

    @property
    def video_temp_dir(self) -> Path:
        return self.raw_dir / "video_temp"

    @property
    def trace_path(self) -> Path:
        return self.raw_dir / "trace.zip"

    @property
    def video_path(self) -> Path:
        return self.raw_dir / "video.webm"

    @property
    def har_path(self) -> Path:
        return self.raw_dir / "network.har"
