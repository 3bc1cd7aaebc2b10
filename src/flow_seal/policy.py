# policy.py
# Plan loading: one validation pass that turns raw JSON into a typed,
# already-validated FlowPlan, followed by the capture-mode gate.
#
# Everything here runs before a browser is launched. Downstream code works
# on the typed plan and never re-checks banned fields.

import json
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from flow_seal.errors import PolicyViolation, SchemaError
from flow_seal.models import FlowPlan

RELAXATION_FLAG = "allow_multiple"
RELAXABLE_STEP_TYPE = "wait_selector"
FORBIDDEN_GOAL_FIELDS = frozenset({"goal_text", "objective", "instructions"})

PASSIVE_STEP_TYPES = frozenset(
    {"wait_selector", "scroll", "assert_url_contains", "assert_text_present"}
)
STATE_CHANGING_STEP_TYPES = frozenset({"click_selector", "type_selector", "press", "tab"})


# ---------------------------------------------------------------------------
# Raw-document policy scan
# ---------------------------------------------------------------------------


def _scan_forbidden_fields(node: Any, path: str) -> None:
    if isinstance(node, dict):
        for key, value in node.items():
            if key in FORBIDDEN_GOAL_FIELDS:
                raise PolicyViolation(
                    f"Forbidden free-text goal field '{key}' present at {path}."
                )
            if key == "goal" and isinstance(value, str):
                raise PolicyViolation(
                    f"Free-text goal is forbidden at {path}.goal; use {{selector, expect, timeout_ms}}."
                )
            _scan_forbidden_fields(value, f"{path}.{key}")
    elif isinstance(node, list):
        for i, item in enumerate(node):
            _scan_forbidden_fields(item, f"{path}[{i}]")


def _scan_relaxation_flags(steps: Any) -> None:
    if not isinstance(steps, list):
        return
    for i, step in enumerate(steps):
        if not isinstance(step, dict) or RELAXATION_FLAG not in step:
            continue
        if step.get("type") != RELAXABLE_STEP_TYPE:
            raise PolicyViolation(
                f"steps[{i}]: '{RELAXATION_FLAG}' is only permitted on "
                f"'{RELAXABLE_STEP_TYPE}' steps, found on '{step.get('type')}'."
            )


# ---------------------------------------------------------------------------
# Capture mode gate
# ---------------------------------------------------------------------------


def enforce_capture_mode(plan: FlowPlan) -> None:
    """
    Reject plans whose step types contradict the declared capture mode.

    passive     — every step must be in PASSIVE_STEP_TYPES
    interactive — at least one step must change page state
    """
    if plan.capture_mode == "passive":
        offending = [
            f"steps[{i}]={step.type}"
            for i, step in enumerate(plan.steps)
            if step.type not in PASSIVE_STEP_TYPES
        ]
        if offending:
            raise PolicyViolation(
                "Passive capture mode forbids state-changing steps: " + ", ".join(offending)
            )
        return

    if not any(step.type in STATE_CHANGING_STEP_TYPES for step in plan.steps):
        raise PolicyViolation(
            "Interactive capture mode declared but the plan contains no state-changing steps."
        )


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def parse_plan(data: Any) -> FlowPlan:
    """
    Validate a decoded plan document.

    Raises PolicyViolation for forbidden fields, misplaced relaxation flags
    and mode-gate failures; SchemaError for anything structurally wrong.
    """
    if not isinstance(data, dict):
        raise SchemaError("Flow plan must be a JSON object.")

    _scan_forbidden_fields(data, "plan")
    _scan_relaxation_flags(data.get("steps"))

    try:
        plan = FlowPlan.model_validate(data)
    except ValidationError as exc:
        raise SchemaError(f"Flow plan is invalid: {exc}") from exc

    enforce_capture_mode(plan)
    return plan


def load_plan(path: str | Path) -> FlowPlan:
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise SchemaError(f"Could not read flow plan {path}: {exc}") from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise SchemaError(f"Could not parse flow JSON: {exc}") from exc
    return parse_plan(data)
