# models.py
# Data contracts for the capture engine.
# No business logic lives here — pure schema and validation.
#
# Steps are a discriminated union on `type`. Only WaitSelectorStep carries
# the `allow_multiple` relaxation flag; every model forbids unknown fields,
# so the flag cannot ride along on any other step type.

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

CaptureMode = Literal["passive", "interactive"]
RunStatus = Literal["running", "success", "error"]
GOAL_STEP_INDEX = "goal"


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------


class _StepBase(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    note: str | None = Field(default=None, description="Free-text observation; redacted before persistence.")


class WaitSelectorStep(_StepBase):
    """Wait until a selector resolves to a single target (or several, when relaxed)."""

    type: Literal["wait_selector"] = "wait_selector"
    selector: str = Field(..., min_length=1)
    timeout_ms: int = Field(default=8000, gt=0)
    delay_ms: int = Field(default=0, ge=0)
    allow_multiple: bool = Field(
        default=False,
        description="Policy override: accept >1 stable match with at least one visible. Audited.",
    )


class ClickSelectorStep(_StepBase):
    type: Literal["click_selector"] = "click_selector"
    selector: str = Field(..., min_length=1)
    timeout_ms: int = Field(default=5000, gt=0)
    delay_ms: int = Field(default=500, ge=0)


class TypeSelectorStep(_StepBase):
    type: Literal["type_selector"] = "type_selector"
    selector: str = Field(..., min_length=1)
    text: str = Field(default="", description="Value filled into the target.")
    timeout_ms: int = Field(default=5000, gt=0)
    delay_ms: int = Field(default=250, ge=0)


class PressStep(_StepBase):
    type: Literal["press"] = "press"
    key: str = Field(default="Enter", min_length=1)
    delay_ms: int = Field(default=300, ge=0)


class TabStep(_StepBase):
    type: Literal["tab"] = "tab"
    count: int = Field(default=10, ge=1)
    delay_ms: int = Field(default=80, ge=0)


class ScrollStep(_StepBase):
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    type: Literal["scroll"] = "scroll"
    delta_y: int = Field(default=1200, alias="deltaY")
    delay_ms: int = Field(default=250, ge=0)


class AssertUrlContainsStep(_StepBase):
    type: Literal["assert_url_contains"] = "assert_url_contains"
    text: str = Field(..., min_length=1)


class AssertTextPresentStep(_StepBase):
    type: Literal["assert_text_present"] = "assert_text_present"
    text: str = Field(..., min_length=1)
    timeout_ms: int = Field(default=5000, gt=0)


Step = Annotated[
    Union[
        WaitSelectorStep,
        ClickSelectorStep,
        TypeSelectorStep,
        PressStep,
        TabStep,
        ScrollStep,
        AssertUrlContainsStep,
        AssertTextPresentStep,
    ],
    Field(discriminator="type"),
]


class GoalCheck(BaseModel):
    """Terminal presence/absence check, resolved with the strict policy."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    selector: str = Field(..., min_length=1)
    expect: Literal["present", "absent"] = "present"
    timeout_ms: int = Field(default=5000, gt=0)


class FlowPlan(BaseModel):
    """A validated, immutable flow plan."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    flow_id: str = Field(..., min_length=1)
    start_url: str = Field(..., min_length=1)
    capture_mode: CaptureMode
    case_label: str | None = None
    steps: tuple[Step, ...] = Field(default_factory=tuple)
    goal: GoalCheck | None = None


# ---------------------------------------------------------------------------
# Run records
# ---------------------------------------------------------------------------


class ErrorInfo(BaseModel):
    kind: str
    message: str


class InteractionLogEntry(BaseModel):
    """One entry per executed step, in execution order."""

    step_index: int | Literal["goal"]
    action: str
    result: Literal["success", "error"]
    error_kind: str | None = None
    error_message: str | None = None
    url: str | None = None
    note: str | None = None
    evidence_step: int | None = Field(default=None, description="Numeric index of the evidence captured.")
    screenshot: str | None = None
    html: str | None = None
    ax: str | None = None
    timestamp_utc: str


class EvidenceRecord(BaseModel):
    """Artifacts captured for one step. Paths are relative to the run directory."""

    step_index: int
    label: str | None = None
    screenshot: str
    html: str
    ax: str
    screenshot_sha256: str | None = None
    screenshot_size: int = 0
    html_sha256: str | None = None
    html_size: int = 0
    ax_sha256: str | None = None
    ax_size: int = 0


class ConsoleEvent(BaseModel):
    """Page console output and engine audit events, in arrival order."""

    timestamp_utc: str
    type: str
    text: str
    detail: dict[str, Any] | None = None


class ChainedJournalEntry(BaseModel):
    prev_hash: str
    data: dict[str, Any]
    hash: str


class RunMetadata(BaseModel):
    run_id: str
    flow_id: str
    case_label: str | None = None
    site: str
    capture_mode: CaptureMode
    started_at_utc: str
    finished_at_utc: str | None = None
    status: RunStatus = "running"
    error: ErrorInfo | None = None
    environment: dict[str, Any] = Field(default_factory=dict)
    artifacts: dict[str, Any] = Field(default_factory=dict)
    journal: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Sealing
# ---------------------------------------------------------------------------


class ManifestEntry(BaseModel):
    path: str
    sha256: str
    size_bytes: int


class Manifest(BaseModel):
    run_id: str
    created_at: str
    files: list[ManifestEntry]


class PacketSeal(BaseModel):
    """Computed exactly once, after every other artifact is final."""

    model_config = ConfigDict(frozen=True)

    packet_hash: str
    manifest_path: str
    packet_hash_path: str
    file_count: int


class VerificationReport(BaseModel):
    ok: bool
    packet_hash: str | None = None
    problems: list[str] = Field(default_factory=list)
