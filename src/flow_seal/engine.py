# engine.py
# Step execution engine.
#
# The engine is the kernel. The page provider is a passive responder — this
# class owns all control flow, state, evidence and sealing.
#
# Control flow:
#   validated plan → navigate (step 1) → one step at a time, strict
#   resolution, evidence per step → optional goal check
#   → finally: teardown → evidence hashing → artifact gate → metadata
#   → seal
#
# The first failure halts the run. Sealing runs in the finally phase, so a
# failed run still yields a complete, verifiable packet.
#
# All terminal output is delegated to display.py — no formatting here.

import platform
from datetime import datetime
from functools import partial
from typing import Any, Callable

from pydantic import BaseModel

from flow_seal import display
from flow_seal.capture import EvidenceCapture, finalize_evidence
from flow_seal.config import Settings
from flow_seal.context import RunContext, StepState, utc_now
from flow_seal.errors import ActionError, CaptureError, GoalError, SealingError
from flow_seal.journal import Journal, open_journal
from flow_seal.layout import RunLayout, file_size, make_run_id, sha256_file, write_json
from flow_seal.models import GOAL_STEP_INDEX, ErrorInfo, FlowPlan, InteractionLogEntry, RunMetadata
from flow_seal.provider import PageProvider, ProviderFactory
from flow_seal.redaction import apply_note_redaction
from flow_seal.sealing import check_required_artifacts, seal_packet
from flow_seal.stabilization import sample_count
from flow_seal.steps import STEP_HANDLERS

EXIT_OK = 0
EXIT_RUN_ERROR = 1
EXIT_REJECTED = 2
EXIT_UNSEALED = 3


class RunResult(BaseModel):
    """What the caller gets back once the finally phase has completed."""

    run_id: str
    status: str
    error: ErrorInfo | None = None
    run_dir: str
    deliverable_dir: str
    packet_hash: str | None = None
    exit_code: int


def _environment() -> dict[str, Any]:
    return {
        "python_version": platform.python_version(),
        "os_platform": platform.system(),
        "os_release": platform.release(),
        "os_arch": platform.machine(),
    }


def _step_detail(step: Any) -> str:
    return getattr(step, "selector", None) or getattr(step, "text", None) or getattr(step, "key", "") or ""


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class CaptureEngine:
    """
    Executes one validated FlowPlan and seals the result.

    Example:
        engine = CaptureEngine(plan, Settings.from_env(), playwright_provider)
        result = engine.run()
        sys.exit(result.exit_code)
    """

    def __init__(
        self,
        plan: FlowPlan,
        settings: Settings,
        provider_factory: ProviderFactory,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._plan = plan
        self._settings = settings
        self._provider_factory = provider_factory
        self._clock = clock

    # ------------------------------------------------------------------
    # Step execution
    # ------------------------------------------------------------------

    def _run_step(
        self,
        ctx: RunContext,
        key: int | str,
        action: str,
        note: str | None,
        operation: Callable[[], Any],
        provider: PageProvider,
        capture: EvidenceCapture,
        journal: Journal,
        detail: str = "",
    ) -> None:
        """
        Run one step: operate → capture evidence → log.

        Evidence and the log entry are written whether or not the operation
        failed. A failure is re-raised after logging, which halts the run.
        """
        ctx.set_state(key, StepState.RUNNING)
        journal.emit("step.start", step_index=key, action=action, detail=detail)
        display.step_start(key, action, detail)

        failure: CaptureError | None = None
        try:
            operation()
        except CaptureError as exc:
            failure = exc
        except Exception as exc:
            failure = ActionError(f"{action} failed: {exc}")

        note = apply_note_redaction(ctx, key, note)
        evidence = capture.capture(ctx, note or action)
        display.evidence_captured(evidence.step_index, evidence.screenshot)

        try:
            url = provider.current_url()
        except Exception:
            url = None

        ctx.log_interaction(
            InteractionLogEntry(
                step_index=key,
                action=action,
                result="error" if failure else "success",
                error_kind=failure.kind if failure else None,
                error_message=str(failure) if failure else None,
                url=url,
                note=note,
                evidence_step=evidence.step_index,
                screenshot=evidence.screenshot,
                html=evidence.html,
                ax=evidence.ax,
                timestamp_utc=ctx.now(),
            )
        )
        journal.emit(
            "step.end",
            step_index=key,
            status="error" if failure else "success",
            error=str(failure) if failure else None,
        )

        if failure is not None:
            ctx.set_state(key, StepState.FAILED)
            display.step_failed(key, failure.kind, str(failure))
            raise failure

        ctx.set_state(key, StepState.COMPLETED)
        display.step_success(key)

    def _check_goal(self, ctx: RunContext, provider: PageProvider) -> None:
        goal = self._plan.goal
        resolution = sample_count(
            provider,
            goal.selector,
            goal.timeout_ms,
            ctx,
            self._settings.stabilization_window_ms,
            wait_for_match=goal.expect == "present",
        )
        count = resolution.final_count
        met = count == 1 if goal.expect == "present" else count == 0
        display.goal_result(goal.expect, goal.selector, count, met)

        if count > 1:
            raise GoalError(
                f'Goal ambiguous: "{goal.selector}" matched {count} elements (expected at most 1).',
                reason="ambiguous",
            )
        if not met:
            raise GoalError(
                f'Goal unmet: expected "{goal.selector}" to be {goal.expect}, found {count} match(es).',
                reason="unmet",
            )

    def _execute(self, ctx: RunContext, provider: PageProvider, capture: EvidenceCapture, journal: Journal) -> None:
        plan = self._plan
        run = partial(self._run_step, ctx, provider=provider, capture=capture, journal=journal)

        display.execution_start(len(plan.steps) + 1)

        # ── Step 1: initial navigation ───────────────────────────────
        index = ctx.next_step()
        run(
            index,
            "navigate",
            "Initial page load",
            partial(provider.navigate, plan.start_url, self._settings.navigation_timeout_ms),
            detail=plan.start_url,
        )

        # ── Steps 2..n: plan steps, fail fast ────────────────────────
        for step in plan.steps:
            index = ctx.next_step()
            handler = STEP_HANDLERS[step.type]
            run(
                index,
                step.type,
                step.note,
                partial(handler, step, provider, ctx, self._settings),
                detail=_step_detail(step),
            )

        # ── Terminal goal check: logged as "goal", evidence stays numeric ──
        if plan.goal is not None:
            ctx.next_step()
            run(
                GOAL_STEP_INDEX,
                "goal_check",
                None,
                partial(self._check_goal, ctx, provider),
                detail=f"{plan.goal.expect} {plan.goal.selector}",
            )

    # ------------------------------------------------------------------
    # Teardown and sealing
    # ------------------------------------------------------------------

    def _start_recordings(self, ctx: RunContext, provider: PageProvider, journal: Journal) -> None:
        for kind in self._settings.recordings():
            try:
                provider.start_recording(kind)
            except Exception as exc:
                ctx.audit("recording_error", f"{kind} recording failed to start: {exc}", {"kind": kind})
                journal.emit("recording.error", kind=kind, phase="start", error=str(exc))
                display.recording_error(kind, str(exc))

    def _stop_recordings(
        self, ctx: RunContext, provider: PageProvider | None, layout: RunLayout, journal: Journal
    ) -> dict[str, Any]:
        artifacts: dict[str, Any] = {}
        if provider is None:
            return artifacts
        for kind in self._settings.recordings():
            try:
                path = provider.stop_recording(kind)
            except Exception as exc:
                path = None
                ctx.audit("recording_error", f"{kind} recording failed to stop: {exc}", {"kind": kind})
                journal.emit("recording.error", kind=kind, phase="stop", error=str(exc))
                display.recording_error(kind, str(exc))
            if path is None or not path.exists():
                artifacts[kind] = None
                journal.emit("recording.missing", kind=kind)
                continue
            artifacts[kind] = {
                "path": layout.rel(path),
                "sha256": sha256_file(path),
                "size_bytes": file_size(path),
            }
        try:
            provider.close()
        except Exception as exc:
            ctx.audit("teardown_error", f"Provider close failed: {exc}")
            journal.emit("teardown.error", error=str(exc))
        return artifacts

    def _write_report(self, ctx: RunContext, layout: RunLayout, metadata: RunMetadata) -> None:
        lines = [
            f"Run:        {ctx.run_id}",
            f"Flow:       {self._plan.flow_id}",
            f"Site:       {self._plan.start_url}",
            f"Mode:       {self._plan.capture_mode}",
            f"Started:    {metadata.started_at_utc}",
            f"Finished:   {metadata.finished_at_utc}",
            f"Status:     {ctx.status.upper()}",
        ]
        if ctx.error is not None:
            lines.append(f"Error:      {ctx.error.kind}: {ctx.error.message}")
        lines.append("")
        lines.append("Steps:")
        for entry in ctx.interaction_log:
            outcome = "ok" if entry.result == "success" else f"ERROR {entry.error_kind}"
            lines.append(f"  [{entry.step_index}] {entry.action}: {outcome}")
        lines.append("")
        lines.append("Integrity: verification/manifest.json, verification/packet_hash.txt")
        layout.report_path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    def _guarded(self, ctx: RunContext, journal: Journal, phase: str, operation: Callable[[], Any]) -> Any:
        """Run one finalize phase. A failure becomes the run's SealingError and the phase yields None."""
        try:
            return operation()
        except Exception as exc:
            ctx.fail(SealingError(f"{phase} failed: {exc}"))
            journal.emit("finalize.error", phase=phase, error=str(exc))
            display.finalize_error(phase, str(exc))
            return None

    def _write_metadata(self, ctx: RunContext, layout: RunLayout, journal: Journal, metadata: RunMetadata) -> None:
        metadata.finished_at_utc = ctx.now()
        metadata.status = ctx.status
        metadata.error = ctx.error
        metadata.journal = journal.describe()
        metadata.artifacts["step_states"] = {str(k): v.value for k, v in ctx.step_states.items()}
        write_json(layout.run_metadata_path, metadata)

    def _close_journal(self, ctx: RunContext, journal: Journal) -> None:
        try:
            journal.emit("run.end", status=ctx.status, error=ctx.error)
        finally:
            journal.close()

    def _write_status(self, ctx: RunContext, layout: RunLayout) -> None:
        banner = "SUCCESS" if ctx.status == "success" else f"ERROR: {ctx.error.kind}: {ctx.error.message}"
        layout.status_path.write_text(banner + "\n", encoding="utf-8")

    def _finalize(
        self,
        ctx: RunContext,
        layout: RunLayout,
        journal: Journal,
        provider: PageProvider | None,
        metadata: RunMetadata,
    ) -> RunResult:
        """
        Teardown, write every deliverable, then seal.

        Each phase is guarded: a failure is recorded (first error wins) and
        the next phase still runs, so every exit reaches seal_packet.
        """
        display.teardown_start()
        if ctx.status == "running":
            ctx.fail(ActionError("Run ended before completing."))
        guard = partial(self._guarded, ctx, journal)

        recordings = guard("recording teardown", partial(self._stop_recordings, ctx, provider, layout, journal))
        metadata.artifacts["recordings"] = recordings or {}

        evidence = guard("evidence hashing", partial(finalize_evidence, ctx, layout, journal))
        if evidence is None:
            evidence = list(ctx.evidence_index)

        guard("interaction log write", partial(write_json, layout.interaction_log_path, ctx.interaction_log))
        guard("evidence index write", partial(write_json, layout.evidence_index_path, evidence))
        guard("console log write", partial(write_json, layout.console_path, ctx.console_events))

        missing = guard("artifact gate", partial(check_required_artifacts, layout, self._settings))
        if missing:
            journal.emit("artifact.assertion_failed", missing=missing)
            ctx.fail(SealingError("Required artifacts missing: " + ", ".join(missing)))
            display.gate_failed(missing)

        guard("journal close", partial(self._close_journal, ctx, journal))

        guard("metadata write", partial(self._write_metadata, ctx, layout, journal, metadata))
        guard("status write", partial(self._write_status, ctx, layout))
        guard("report write", partial(self._write_report, ctx, layout, metadata))

        result = RunResult(
            run_id=ctx.run_id,
            status=ctx.status,
            error=ctx.error,
            run_dir=str(layout.run_dir),
            deliverable_dir=str(layout.deliverable_dir),
            exit_code=EXIT_OK if ctx.status == "success" else EXIT_RUN_ERROR,
        )

        # Sealing begins: the context accepts no further changes.
        ctx.freeze()
        try:
            seal = seal_packet(layout.deliverable_dir, ctx.run_id, ctx.now())
        except SealingError as exc:
            display.sealing_failed(str(exc))
            return result.model_copy(update={"exit_code": EXIT_UNSEALED})

        display.packet_sealed(seal, result.deliverable_dir)
        display.run_summary(ctx.interaction_log, ctx.status, ctx.error.kind if ctx.error else None)
        return result.model_copy(update={"packet_hash": seal.packet_hash})

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self) -> RunResult:
        """
        Full pipeline entry point.

        Returns a RunResult in all cases — the packet is sealed whether the
        run succeeded or failed, and only an unrecoverable sealing failure
        leaves it unsealed (exit code EXIT_UNSEALED).
        """
        plan = self._plan
        started = self._clock()
        run_id = make_run_id(started, plan.case_label or plan.flow_id)
        layout = RunLayout.create(self._settings.runs_dir, run_id)
        ctx = RunContext(run_id=run_id, flow_id=plan.flow_id, clock=self._clock)
        for key in range(1, len(plan.steps) + 2):
            ctx.set_state(key, StepState.PENDING)
        if plan.goal is not None:
            ctx.set_state(GOAL_STEP_INDEX, StepState.PENDING)

        journal = open_journal(
            layout.journal_path,
            run_id,
            ctx.now,
            chained=self._settings.chain_journal,
            seed=self._settings.chain_seed,
        )
        metadata = RunMetadata(
            run_id=run_id,
            flow_id=plan.flow_id,
            case_label=plan.case_label,
            site=plan.start_url,
            capture_mode=plan.capture_mode,
            started_at_utc=ctx.now(),
            environment=_environment(),
        )

        display.banner(run_id, str(layout.run_dir))
        display.plan_loaded(plan)

        def on_console(event_type: str, text: str) -> None:
            if not ctx.frozen:
                ctx.audit(event_type, text)

        provider: PageProvider | None = None
        try:
            journal.emit("run.start", flow_id=plan.flow_id, start_url=plan.start_url, capture_mode=plan.capture_mode)
            provider = self._provider_factory(self._settings, layout, on_console)
            metadata.environment.update(provider.open())
            self._start_recordings(ctx, provider, journal)
            capture = EvidenceCapture(provider, layout, journal, plan.flow_id, self._settings.minimize_ax)
            self._execute(ctx, provider, capture, journal)
            ctx.succeed()
        except CaptureError as exc:
            ctx.fail(exc)
        except Exception as exc:
            # Provider failure outside a step (launch, context creation).
            ctx.fail(ActionError(f"Provider failure: {exc}"))
            display.halt(f"Provider failure: {exc}")
        finally:
            result = self._finalize(ctx, layout, journal, provider, metadata)
        return result
