# context.py
# Single-owner run state threaded through every engine call.
#
# Only the engine and its collaborators append here, one step at a time.
# Once sealing begins the context is frozen and every change is refused.

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from flow_seal.errors import CaptureError
from flow_seal.models import ConsoleEvent, ErrorInfo, EvidenceRecord, InteractionLogEntry, RunStatus


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class StepState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RunContext:
    run_id: str
    flow_id: str
    clock: Callable[[], datetime] = utc_now
    step_index: int = 0
    step_states: dict[int | str, StepState] = field(default_factory=dict)
    interaction_log: list[InteractionLogEntry] = field(default_factory=list)
    evidence_index: list[EvidenceRecord] = field(default_factory=list)
    console_events: list[ConsoleEvent] = field(default_factory=list)
    status: RunStatus = "running"
    error: ErrorInfo | None = None
    frozen: bool = False

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    def now(self) -> str:
        return iso(self.clock())

    # ------------------------------------------------------------------
    # Appends
    # ------------------------------------------------------------------

    def _check_open(self) -> None:
        if self.frozen:
            raise RuntimeError("RunContext is frozen; sealing has begun.")

    def next_step(self) -> int:
        self._check_open()
        self.step_index += 1
        return self.step_index

    def set_state(self, key: int | str, state: StepState) -> None:
        self._check_open()
        self.step_states[key] = state

    def log_interaction(self, entry: InteractionLogEntry) -> None:
        self._check_open()
        self.interaction_log.append(entry)

    def add_evidence(self, record: EvidenceRecord) -> None:
        self._check_open()
        self.evidence_index.append(record)

    def audit(self, event_type: str, text: str, detail: dict[str, Any] | None = None) -> ConsoleEvent:
        self._check_open()
        event = ConsoleEvent(timestamp_utc=self.now(), type=event_type, text=text, detail=detail)
        self.console_events.append(event)
        return event

    # ------------------------------------------------------------------
    # Terminal state
    # ------------------------------------------------------------------

    def fail(self, exc: BaseException) -> None:
        """Record a terminal error. The first error wins; later ones are ignored."""
        self._check_open()
        self.status = "error"
        if self.error is None:
            kind = exc.kind if isinstance(exc, CaptureError) else "ActionError"
            self.error = ErrorInfo(kind=kind, message=str(exc) or type(exc).__name__)

    def succeed(self) -> None:
        self._check_open()
        if self.status == "running":
            self.status = "success"

    def freeze(self) -> None:
        self.frozen = True
