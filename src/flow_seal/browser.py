# browser.py
# Playwright implementation of the PageProvider contract.
#
# Chromium only. HAR and video recording are fixed at context creation, so
# Settings decides them up front; stop_recording("network") closes the
# context to flush both, after which stop_recording("video") collects the
# single video file.

import shutil
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Any

from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from flow_seal.config import Settings
from flow_seal.errors import ActionError
from flow_seal.layout import RunLayout
from flow_seal.provider import ActionKind, ConsoleSink, PageProvider, RecordingKind, SnapshotKind


def _playwright_version() -> str:
    try:
        return version("playwright")
    except PackageNotFoundError:
        return "unknown"


class PlaywrightProvider:
    def __init__(self, settings: Settings, layout: RunLayout, on_console: ConsoleSink) -> None:
        self._settings = settings
        self._layout = layout
        self._on_console = on_console
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None
        self._context_closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> dict[str, Any]:
        self._playwright = sync_playwright().start()
        self._browser = self._playwright.chromium.launch(headless=self._settings.headless)

        options: dict[str, Any] = {
            "viewport": {"width": self._settings.viewport_width, "height": self._settings.viewport_height},
            "locale": "en-US",
            "timezone_id": "UTC",
        }
        if self._settings.record_har:
            options["record_har_path"] = str(self._layout.har_path)
        if self._settings.record_video:
            options["record_video_dir"] = str(self._layout.video_temp_dir)

        self._context = self._browser.new_context(**options)
        self._page = self._context.new_page()
        self._page.on("console", lambda msg: self._on_console(msg.type, msg.text))
        self._page.on("pageerror", lambda err: self._on_console("pageerror", str(err)))

        return {
            "browser": "chromium",
            "browser_version": self._browser.version,
            "playwright_version": _playwright_version(),
        }

    def _close_context(self) -> None:
        # Closing the context is what flushes the HAR and the video to disk.
        if self._context is not None and not self._context_closed:
            self._context.close()
            self._context_closed = True

    def close(self) -> None:
        self._close_context()
        if self._browser is not None:
            self._browser.close()
        if self._playwright is not None:
            self._playwright.stop()

    # ------------------------------------------------------------------
    # Navigation and lookup
    # ------------------------------------------------------------------

    def navigate(self, url: str, timeout_ms: int) -> str:
        self._page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        return self._page.url

    def current_url(self) -> str:
        return self._page.url

    def wait_attached(self, selector: str, timeout_ms: int) -> bool:
        try:
            self._page.wait_for_selector(selector, state="attached", timeout=timeout_ms)
        except PlaywrightTimeoutError:
            return False
        return True

    def count(self, selector: str) -> int:
        return self._page.locator(selector).count()

    def is_visible(self, selector: str, index: int, timeout_ms: int) -> bool:
        try:
            self._page.locator(selector).nth(index).wait_for(state="visible", timeout=timeout_ms)
        except PlaywrightTimeoutError:
            return False
        return True

    def wait_for_text(self, text: str, timeout_ms: int) -> None:
        self._page.wait_for_function(
            "(txt) => document.body && document.body.innerText && document.body.innerText.includes(txt)",
            arg=text,
            timeout=timeout_ms,
        )

    def wait_for_timeout(self, ms: int) -> None:
        self._page.wait_for_timeout(ms)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def act(self, selector: str | None, kind: ActionKind, params: dict[str, Any], timeout_ms: int) -> None:
        if kind == "click":
            self._page.locator(selector).click(timeout=timeout_ms)
        elif kind == "fill":
            self._page.locator(selector).fill(params.get("text", ""), timeout=timeout_ms)
        elif kind == "press":
            self._page.keyboard.press(params["key"])
        elif kind == "scroll":
            self._page.mouse.wheel(0, params.get("delta_y", 0))
        else:
            raise ValueError(f"Unknown action kind: {kind!r}")

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self, kind: SnapshotKind) -> Any:
        if kind == "screenshot":
            return self._page.screenshot(full_page=False)
        if kind == "html":
            return self._page.content()
        if kind == "accessibility-tree":
            session = self._context.new_cdp_session(self._page)
            try:
                return session.send("Accessibility.getFullAXTree")
            finally:
                session.detach()
        raise ValueError(f"Unknown snapshot kind: {kind!r}")

    # ------------------------------------------------------------------
    # Recordings
    # ------------------------------------------------------------------

    def start_recording(self, kind: RecordingKind) -> None:
        if kind == "trace":
            self._context.tracing.start(screenshots=True, snapshots=True, sources=True)
        elif kind == "video" and not self._settings.record_video:
            raise ValueError("Video recording is disabled for this session.")
        elif kind == "network" and not self._settings.record_har:
            raise ValueError("Network recording is disabled for this session.")

    def stop_recording(self, kind: RecordingKind) -> Path | None:
        if kind == "trace":
            self._context.tracing.stop(path=str(self._layout.trace_path))
            return self._layout.trace_path

        if kind == "network":
            self._close_context()
            return self._layout.har_path if self._layout.har_path.exists() else None

        if kind == "video":
            self._close_context()
            temp_dir = self._layout.video_temp_dir
            if not temp_dir.exists():
                return None
            videos = sorted(temp_dir.glob("*.webm"))
            try:
                if len(videos) > 1:
                    names = ", ".join(v.name for v in videos)
                    raise ActionError(f"Multiple video files found, cannot identify the run video: {names}")
                if not videos:
                    return None
                shutil.move(str(videos[0]), str(self._layout.video_path))
            finally:
                shutil.rmtree(temp_dir, ignore_errors=True)
            return self._layout.video_path

        raise ValueError(f"Unknown recording kind: {kind!r}")


def playwright_provider(settings: Settings, layout: RunLayout, on_console: ConsoleSink) -> PageProvider:
    return PlaywrightProvider(settings, layout, on_console)
