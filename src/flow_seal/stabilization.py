# stabilization.py
# Selector resolution policy.
#
# A selector is sampled twice across a fixed stabilization window so that
# in-flight DOM changes are seen before ambiguity is decided. Instability is
# logged but is never, on its own, a strict-mode failure: decisions use the
# final sample. More than one match under strict mode is a hard stop; it is
# never resolved by position or heuristic.

from dataclasses import dataclass, replace
from enum import Enum

from flow_seal import display
from flow_seal.context import RunContext
from flow_seal.errors import AmbiguityError, NotFoundError, StabilityError
from flow_seal.provider import PageProvider


class ResolutionMode(str, Enum):
    STRICT = "strict"
    RELAXED = "relaxed"


@dataclass(frozen=True)
class Resolution:
    selector: str
    first_count: int
    final_count: int
    window_ms: int
    visible_index: int | None = None

    @property
    def stable(self) -> bool:
        return self.first_count == self.final_count


# ---------------------------------------------------------------------------
# Sampling
# ---------------------------------------------------------------------------


def sample_count(
    provider: PageProvider,
    selector: str,
    timeout_ms: int,
    ctx: RunContext,
    window_ms: int,
    wait_for_match: bool = True,
) -> Resolution:
    """Take two count samples `window_ms` apart, after a best-effort wait for a match."""
    if wait_for_match:
        provider.wait_attached(selector, timeout_ms)

    first = provider.count(selector)
    provider.wait_for_timeout(window_ms)
    final = provider.count(selector)

    resolution = Resolution(selector=selector, first_count=first, final_count=final, window_ms=window_ms)
    if not resolution.stable:
        ctx.audit(
            "selector.unstable",
            f'Selector "{selector}" count changed from {first} to {final} within {window_ms}ms.',
            {"selector": selector, "first_count": first, "final_count": final, "window_ms": window_ms},
        )
        display.selector_unstable(selector, first, final, window_ms)
    return resolution


def _first_visible(provider: PageProvider, selector: str, count: int, budget_ms: int) -> int | None:
    per_candidate = max(1, budget_ms // max(count, 1))
    for index in range(count):
        if provider.is_visible(selector, index, per_candidate):
            return index
    return None


def _record_override(ctx: RunContext, resolution: Resolution, classification: str) -> None:
    ctx.audit(
        "policy.override",
        f'Relaxed resolution used for "{resolution.selector}" ({classification}).',
        {
            "selector": resolution.selector,
            "observed_count": resolution.final_count,
            "first_count": resolution.first_count,
            "stability": classification,
        },
    )
    display.policy_override(resolution.selector, resolution.final_count, classification)


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


def resolve_target(
    provider: PageProvider,
    selector: str,
    timeout_ms: int,
    ctx: RunContext,
    window_ms: int,
    mode: ResolutionMode = ResolutionMode.STRICT,
    visibility_timeout_ms: int = 1000,
) -> Resolution:
    """
    Decide whether `selector` names an actionable target.

    STRICT  — exactly one match, else NotFoundError / AmbiguityError
    RELAXED — at least one match, stable across the window, one of them
              visible; every use is recorded as a policy.override event
    """
    resolution = sample_count(provider, selector, timeout_ms, ctx, window_ms)

    if resolution.final_count == 0:
        raise NotFoundError(f'Selector "{selector}" not found (0 matches).')

    if mode is ResolutionMode.STRICT:
        if resolution.final_count > 1:
            raise AmbiguityError(selector, resolution.final_count)
        return resolution

    if not resolution.stable:
        _record_override(ctx, resolution, "unstable")
        raise StabilityError(
            f'Selector "{selector}" count unstable ({resolution.first_count} → '
            f"{resolution.final_count}) under relaxed resolution."
        )

    visible = _first_visible(provider, selector, resolution.final_count, visibility_timeout_ms)
    if visible is None:
        _record_override(ctx, resolution, "no_visible_match")
        raise StabilityError(
            f'Selector "{selector}" matched {resolution.final_count} elements but none became visible.'
        )

    _record_override(ctx, resolution, "stable")
    return replace(resolution, visible_index=visible)
