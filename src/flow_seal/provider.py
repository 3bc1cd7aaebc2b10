# provider.py
# Capability contract consumed from the page-automation provider.
#
# The engine only ever talks to PageProvider. The Playwright implementation
# lives in browser.py; tests drive the engine with an in-memory fake.

from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Literal, Protocol

if TYPE_CHECKING:
    from flow_seal.config import Settings
    from flow_seal.layout import RunLayout

ActionKind = Literal["click", "fill", "press", "scroll"]
SnapshotKind = Literal["screenshot", "html", "accessibility-tree"]
RecordingKind = Literal["trace", "video", "network"]

ConsoleSink = Callable[[str, str], None]


class PageProvider(Protocol):
    def open(self) -> dict[str, Any]:
        """Launch the session; returns environment facts for run metadata."""

    def navigate(self, url: str, timeout_ms: int) -> str:
        """Load `url` and return the final URL after redirects."""

    def current_url(self) -> str: ...

    def wait_attached(self, selector: str, timeout_ms: int) -> bool:
        """Best-effort wait for one attached match. False on timeout, never raises for it."""

    def count(self, selector: str) -> int: ...

    def is_visible(self, selector: str, index: int, timeout_ms: int) -> bool: ...

    def act(self, selector: str | None, kind: ActionKind, params: dict[str, Any], timeout_ms: int) -> None: ...

    def wait_for_text(self, text: str, timeout_ms: int) -> None: ...

    def wait_for_timeout(self, ms: int) -> None: ...

    def snapshot(self, kind: SnapshotKind) -> Any:
        """bytes for screenshots, str for html, a JSON-like object for the accessibility tree."""

    def start_recording(self, kind: RecordingKind) -> None: ...

    def stop_recording(self, kind: RecordingKind) -> Path | None: ...

    def close(self) -> None: ...


ProviderFactory = Callable[["Settings", "RunLayout", ConsoleSink], PageProvider]
