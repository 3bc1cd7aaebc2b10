# steps.py
# Step handler registry — one implementation per plan step type.
# The engine looks handlers up in STEP_HANDLERS and never calls these
# functions directly. Handlers raise; they never swallow a failure.

from typing import Any, Callable

from flow_seal.config import Settings
from flow_seal.context import RunContext
from flow_seal.errors import ActionError
from flow_seal.models import (
    AssertTextPresentStep,
    AssertUrlContainsStep,
    ClickSelectorStep,
    PressStep,
    ScrollStep,
    TabStep,
    TypeSelectorStep,
    WaitSelectorStep,
)
from flow_seal.provider import PageProvider
from flow_seal.stabilization import ResolutionMode, resolve_target


def _settle(provider: PageProvider, delay_ms: int) -> None:
    if delay_ms > 0:
        provider.wait_for_timeout(delay_ms)


def _resolve_strict(step: Any, provider: PageProvider, ctx: RunContext, settings: Settings) -> None:
    resolve_target(
        provider,
        step.selector,
        step.timeout_ms,
        ctx,
        settings.stabilization_window_ms,
        ResolutionMode.STRICT,
    )


# ---------------------------------------------------------------------------
# Passive steps
# ---------------------------------------------------------------------------


def _step_wait_selector(step: WaitSelectorStep, provider: PageProvider, ctx: RunContext, settings: Settings) -> None:
    mode = ResolutionMode.RELAXED if step.allow_multiple else ResolutionMode.STRICT
    resolve_target(
        provider,
        step.selector,
        step.timeout_ms,
        ctx,
        settings.stabilization_window_ms,
        mode,
        settings.visibility_timeout_ms,
    )
    _settle(provider, step.delay_ms)


def _step_scroll(step: ScrollStep, provider: PageProvider, ctx: RunContext, settings: Settings) -> None:
    provider.act(None, "scroll", {"delta_y": step.delta_y}, 0)
    _settle(provider, step.delay_ms)


def _step_assert_url_contains(
    step: AssertUrlContainsStep, provider: PageProvider, ctx: RunContext, settings: Settings
) -> None:
    current = provider.current_url()
    if step.text not in current:
        raise ActionError(f'Assertion Failed: URL "{current}" does not contain "{step.text}".')


def _step_assert_text_present(
    step: AssertTextPresentStep, provider: PageProvider, ctx: RunContext, settings: Settings
) -> None:
    provider.wait_for_text(step.text, step.timeout_ms)


# ---------------------------------------------------------------------------
# State-changing steps (always strict)
# ---------------------------------------------------------------------------


def _step_click_selector(step: ClickSelectorStep, provider: PageProvider, ctx: RunContext, settings: Settings) -> None:
    _resolve_strict(step, provider, ctx, settings)
    provider.act(step.selector, "click", {}, step.timeout_ms)
    _settle(provider, step.delay_ms)


def _step_type_selector(step: TypeSelectorStep, provider: PageProvider, ctx: RunContext, settings: Settings) -> None:
    _resolve_strict(step, provider, ctx, settings)
    provider.act(step.selector, "fill", {"text": step.text}, step.timeout_ms)
    _settle(provider, step.delay_ms)


def _step_press(step: PressStep, provider: PageProvider, ctx: RunContext, settings: Settings) -> None:
    provider.act(None, "press", {"key": step.key}, 0)
    _settle(provider, step.delay_ms)


def _step_tab(step: TabStep, provider: PageProvider, ctx: RunContext, settings: Settings) -> None:
    for _ in range(step.count):
        provider.act(None, "press", {"key": "Tab"}, 0)
        _settle(provider, step.delay_ms)


StepHandler = Callable[[Any, PageProvider, RunContext, Settings], None]

STEP_HANDLERS: dict[str, StepHandler] = {
    "wait_selector":       _step_wait_selector,
    "scroll":              _step_scroll,
    "assert_url_contains": _step_assert_url_contains,
    "assert_text_present": _step_assert_text_present,
    "click_selector":      _step_click_selector,
    "type_selector":       _step_type_selector,
    "press":               _step_press,
    "tab":                 _step_tab,
}
