# config.py
# Runtime settings, read from the environment (and a local .env file).

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

GENESIS_HASH = "0" * 64


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class Settings(BaseModel):
    """Engine configuration. Every field has a FLOW_SEAL_* environment override."""

    runs_dir: str = Field(default="runs", description="Parent directory for run folders.")
    headless: bool = True
    viewport_width: int = 1366
    viewport_height: int = 768
    navigation_timeout_ms: int = Field(default=30000, gt=0)
    stabilization_window_ms: int = Field(default=250, ge=0, description="Delay between the two count samples.")
    visibility_timeout_ms: int = Field(default=1000, ge=0, description="Bound on the relaxed-mode visibility check.")
    chain_journal: bool = Field(default=True, description="Hash-chain every journal event.")
    chain_seed: str = Field(default=GENESIS_HASH, pattern=r"^[0-9a-f]{64}$")
    record_trace: bool = True
    record_video: bool = True
    record_har: bool = True
    minimize_ax: bool = Field(default=False, description="Apply the minimisation denylist to AX snapshots.")

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        return cls(
            runs_dir=os.getenv("FLOW_SEAL_RUNS_DIR", "runs"),
            headless=_env_bool("FLOW_SEAL_HEADLESS", True),
            viewport_width=_env_int("FLOW_SEAL_VIEWPORT_WIDTH", 1366),
            viewport_height=_env_int("FLOW_SEAL_VIEWPORT_HEIGHT", 768),
            navigation_timeout_ms=_env_int("FLOW_SEAL_NAVIGATION_TIMEOUT_MS", 30000),
            stabilization_window_ms=_env_int("FLOW_SEAL_STABILIZATION_WINDOW_MS", 250),
            visibility_timeout_ms=_env_int("FLOW_SEAL_VISIBILITY_TIMEOUT_MS", 1000),
            chain_journal=_env_bool("FLOW_SEAL_CHAIN_JOURNAL", True),
            chain_seed=os.getenv("FLOW_SEAL_CHAIN_SEED", GENESIS_HASH),
            record_trace=_env_bool("FLOW_SEAL_RECORD_TRACE", True),
            record_video=_env_bool("FLOW_SEAL_RECORD_VIDEO", True),
            record_har=_env_bool("FLOW_SEAL_RECORD_HAR", True),
            minimize_ax=_env_bool("FLOW_SEAL_MINIMIZE_AX", False),
        )

    def recordings(self) -> list[str]:
        """Enabled recording kinds, in the order they must be stopped."""
        enabled = []
        if self.record_trace:
            enabled.append("trace")
        if self.record_har:
            enabled.append("network")
        if self.record_video:
            enabled.append("video")
        return enabled
