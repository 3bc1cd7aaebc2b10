# capture.py
# Per-step evidence capture and post-run evidence hashing.
#
# A failed artifact is an audit event, never a run failure: the record still
# lists the path, the hash stays null and the size 0 so the gap is visible
# in the sealed index.

from pathlib import Path

from flow_seal import display
from flow_seal.context import RunContext
from flow_seal.errors import SealingError
from flow_seal.journal import Journal
from flow_seal.layout import RunLayout, file_size, safe_token, sha256_file, write_json
from flow_seal.models import EvidenceRecord
from flow_seal.provider import PageProvider
from flow_seal.redaction import minimize_tree


class EvidenceCapture:
    def __init__(
        self,
        provider: PageProvider,
        layout: RunLayout,
        journal: Journal,
        flow_id: str,
        minimize_ax: bool = False,
    ) -> None:
        self._provider = provider
        self._layout = layout
        self._journal = journal
        self._flow_token = safe_token(flow_id)
        self._minimize_ax = minimize_ax

    def _capture_failed(self, ctx: RunContext, artifact: str, exc: Exception) -> str:
        message = f"{artifact} capture failed: {exc}"
        ctx.audit("evidence_error", message, {"step_index": ctx.step_index, "artifact": artifact})
        self._journal.emit("capture.error", step_index=ctx.step_index, type=artifact, error=message)
        display.evidence_error(ctx.step_index, artifact, str(exc))
        return message

    def capture(self, ctx: RunContext, label: str | None) -> EvidenceRecord:
        """Capture screenshot, HTML and accessibility tree for the current step index."""
        base = f"{self._flow_token}_step_{ctx.step_index:03d}"
        screenshot = self._layout.screenshots_dir / f"screenshot_{base}.png"
        html = self._layout.raw_html_dir / f"page_{base}.html"
        ax = self._layout.raw_ax_dir / f"ax_{base}.json"

        try:
            screenshot.write_bytes(self._provider.snapshot("screenshot"))
        except Exception as exc:
            self._capture_failed(ctx, "screenshot", exc)

        try:
            content = self._provider.snapshot("html")
        except Exception as exc:
            self._capture_failed(ctx, "html", exc)
            content = ""
        html.write_text(content or "", encoding="utf-8")

        try:
            tree = self._provider.snapshot("accessibility-tree")
            if tree is None:
                tree = {"note": "AX snapshot returned null"}
            elif self._minimize_ax:
                tree = minimize_tree(tree)
            write_json(ax, tree)
        except Exception as exc:
            message = self._capture_failed(ctx, "ax", exc)
            write_json(ax, {"error": "AX snapshot failed", "message": message})

        record = EvidenceRecord(
            step_index=ctx.step_index,
            label=label,
            screenshot=self._layout.rel(screenshot),
            html=self._layout.rel(html),
            ax=self._layout.rel(ax),
        )
        ctx.add_evidence(record)
        self._journal.emit("evidence.captured", **record.model_dump(mode="json"))
        return record


# ---------------------------------------------------------------------------
# Post-run hashing
# ---------------------------------------------------------------------------


def _hash_artifact(ctx: RunContext, journal: Journal, path: Path, rel: str) -> tuple[str | None, int]:
    try:
        return sha256_file(path), file_size(path)
    except OSError as exc:
        journal.emit("hash.error", file=rel, error=str(exc))
        ctx.fail(SealingError(f"Hashing failed for {rel}: {exc}"))
        return None, 0


def finalize_evidence(ctx: RunContext, layout: RunLayout, journal: Journal) -> list[EvidenceRecord]:
    """Return the evidence index with content hashes and sizes filled in."""
    finalized = []
    for record in ctx.evidence_index:
        updates = {}
        for artifact in ("screenshot", "html", "ax"):
            rel = getattr(record, artifact)
            digest, size = _hash_artifact(ctx, journal, layout.run_dir / rel, rel)
            updates[f"{artifact}_sha256"] = digest
            updates[f"{artifact}_size"] = size
        finalized.append(record.model_copy(update=updates))
    return finalized
