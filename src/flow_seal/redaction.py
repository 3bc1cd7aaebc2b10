# redaction.py
# Inference-term redaction for free-text notes, plus the data-minimisation
# pass applied to accessibility snapshots.
#
# The evidence record states what happened, never what it means. Any
# conclusion a note draws is replaced before it reaches disk, and the audit
# event records only that a redaction happened — never which term.

import re
from dataclasses import dataclass
from typing import Any

from flow_seal import display
from flow_seal.context import RunContext

REDACTION_PLACEHOLDER = "[REDACTED]"
MINIMIZATION_PLACEHOLDER = "[REDACTED_BY_MINIMIZATION_POLICY]"

BANNED_TERMS: tuple[str, ...] = (
    "violation",
    "violations",
    "violates",
    "violated",
    "non-compliant",
    "noncompliant",
    "non-compliance",
    "noncompliance",
    "inaccessible",
    "discriminatory",
    "discrimination",
    "illegal",
    "unlawful",
    "negligent",
    "negligence",
    "liable",
    "liability",
    "breach",
)

# Longest first so "non-compliance" is not split by a shorter alternative.
_BANNED_PATTERN = re.compile(
    r"\b(?:"
    + "|".join(re.escape(term) for term in sorted(BANNED_TERMS, key=len, reverse=True))
    + r")\b",
    re.IGNORECASE,
)

MINIMIZATION_DENYLIST = frozenset(
    {"name", "value", "description", "help", "url", "text", "title", "placeholder", "ariaLabel"}
)


@dataclass(frozen=True)
class RedactionResult:
    text: str
    count: int
    original_length: int


def redact_note(text: str) -> RedactionResult:
    redacted, count = _BANNED_PATTERN.subn(REDACTION_PLACEHOLDER, text)
    return RedactionResult(text=redacted, count=count, original_length=len(text))


def apply_note_redaction(ctx: RunContext, step_index: int | str, note: str | None) -> str | None:
    """Redact a step note and record an audit event if anything was replaced."""
    if note is None:
        return None
    result = redact_note(note)
    if result.count:
        ctx.audit(
            "redaction",
            f"Note redacted for step {step_index}.",
            {
                "step_index": step_index,
                "field": "note",
                "original_length": result.original_length,
                "redactions": result.count,
            },
        )
        display.redaction_applied(step_index, result.count)
    return result.text


def minimize_tree(node: Any) -> Any:
    """Return a copy of an accessibility payload with denylisted values replaced."""
    if isinstance(node, list):
        return [minimize_tree(item) for item in node]
    if isinstance(node, dict):
        return {
            key: MINIMIZATION_PLACEHOLDER if key in MINIMIZATION_DENYLIST else minimize_tree(value)
            for key, value in node.items()
        }
    return node
