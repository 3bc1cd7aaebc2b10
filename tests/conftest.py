from datetime import datetime, timezone

import pytest

from flow_seal.config import Settings
from flow_seal.context import RunContext
from flow_seal.engine import CaptureEngine
from flow_seal.policy import parse_plan

FIXED_MOMENT = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_MOMENT


# ---------------------------------------------------------------------------
# In-memory page provider
# ---------------------------------------------------------------------------


class FakeProvider:
    """
    Scripted stand-in for the browser.

    counts:  selector → int, or a list of successive samples (last one repeats)
    visible: selector → indices that pass the visibility check (default: all)
    """

    def __init__(
        self,
        counts=None,
        visible=None,
        page_text="",
        failing_selectors=(),
        failing_snapshots=(),
        skip_recordings=(),
        open_error=None,
    ):
        self.counts = {k: list(v) if isinstance(v, list) else [v] for k, v in (counts or {}).items()}
        self.visible = visible or {}
        self.page_text = page_text
        self.failing_selectors = set(failing_selectors)
        self.failing_snapshots = set(failing_snapshots)
        self.skip_recordings = set(skip_recordings)
        self.open_error = open_error
        self.url = "about:blank"
        self.calls = []
        self.layout = None
        self.on_console = None
        self.closed = False

    def open(self):
        if self.open_error is not None:
            raise self.open_error
        return {"browser": "fake", "browser_version": "1.0"}

    def navigate(self, url, timeout_ms):
        self.calls.append(("navigate", url))
        self.url = url
        return url

    def current_url(self):
        return self.url

    def wait_attached(self, selector, timeout_ms):
        self.calls.append(("wait_attached", selector))
        return self._peek(selector) > 0

    def _peek(self, selector):
        samples = self.counts.get(selector, [0])
        return samples[0]

    def count(self, selector):
        self.calls.append(("count", selector))
        samples = self.counts.get(selector, [0])
        if len(samples) > 1:
            return samples.pop(0)
        return samples[0]

    def is_visible(self, selector, index, timeout_ms):
        allowed = self.visible.get(selector)
        return allowed is None or index in allowed

    def act(self, selector, kind, params, timeout_ms):
        self.calls.append(("act", kind, selector, dict(params)))
        if selector in self.failing_selectors:
            raise RuntimeError(f"element {selector} detached from DOM")

    def wait_for_text(self, text, timeout_ms):
        self.calls.append(("wait_for_text", text))
        if text not in self.page_text:
            raise TimeoutError(f"Timeout {timeout_ms}ms exceeded waiting for text")

    def wait_for_timeout(self, ms):
        self.calls.append(("wait", ms))

    def snapshot(self, kind):
        if kind in self.failing_snapshots:
            raise RuntimeError(f"{kind} unavailable")
        if kind == "screenshot":
            return b"\x89PNG fake " + self.url.encode("utf-8")
        if kind == "html":
            return f"<html><body>{self.page_text}</body></html>"
        return {"nodes": [{"role": "WebArea", "name": "Example Domain", "children": []}]}

    def start_recording(self, kind):
        self.calls.append(("start_recording", kind))

    def stop_recording(self, kind):
        self.calls.append(("stop_recording", kind))
        if kind in self.skip_recordings:
            return None
        path = {
            "trace": self.layout.trace_path,
            "network": self.layout.har_path,
            "video": self.layout.video_path,
        }[kind]
        path.write_bytes(f"fake {kind}".encode("utf-8"))
        return path

    def close(self):
        self.closed = True

    def acted_on(self):
        return [call[2] for call in self.calls if call[0] == "act"]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path):
    return Settings(runs_dir=str(tmp_path / "runs"))


@pytest.fixture
def ctx():
    return RunContext(run_id="20260102T030405Z_test", flow_id="test", clock=fixed_clock)


@pytest.fixture
def make_engine(settings):
    """Build (engine, provider) from a raw plan dict and FakeProvider options."""

    def _make(plan_data, run_settings=None, **provider_options):
        provider = FakeProvider(**provider_options)

        def factory(factory_settings, layout, on_console):
            provider.layout = layout
            provider.on_console = on_console
            return provider

        engine = CaptureEngine(parse_plan(plan_data), run_settings or settings, factory, clock=fixed_clock)
        return engine, provider

    return _make


def plan_dict(steps, mode="interactive", goal=None, **extra):
    data = {
        "flow_id": "checkout",
        "start_url": "https://shop.example/",
        "capture_mode": mode,
        "steps": steps,
    }
    if goal is not None:
        data["goal"] = goal
    data.update(extra)
    return data
