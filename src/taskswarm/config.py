"""Runtime configuration for the dispatch system."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from taskswarm.errors import ConfigError

DEFAULT_QUOTA_FRACTIONS: dict[str, float] = {
    "system-architect": 0.25,
    "frontend-developer": 0.20,
    "backend-developer": 0.20,
    "devops-engineer": 0.15,
    "qa-engineer": 0.10,
    "code-reviewer": 0.05,
    "project-manager": 0.05,
}


@dataclass(slots=True)
class LoopSettings:
    """Polling intervals, in seconds."""

    main_interval: float = 5.0
    agent_interval: float = 10.0
    coordinator_interval: float = 15.0
    consistency_interval: float = 30.0
    initial_sync_delay: float = 1.0
    main_batch: int = 10
    coordinator_batch: int = 5


@dataclass(slots=True)
class QuotaSettings:
    """Sliding-window quota and adaptive throttling settings."""

    requests_per_hour: int = 100
    window_seconds: int = 3_600
    entry_ttl_seconds: int = 3_600
    fractions: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_QUOTA_FRACTIONS))
    default_fraction: float = 0.10
    urgent_overdraft: float = 1.2
    high_latency_ms: float = 5_000.0
    low_latency_ms: float = 2_000.0
    max_fraction: float = 0.30
    initial_latency_ms: float = 1_000.0


@dataclass(slots=True)
class ReasonerSettings:
    """Reasoning capability backend selection."""

    backend: str = "cli"
    cli_bin: str = str(Path.home() / ".local" / "bin" / "claude")
    model: str = "sonnet"
    timeout_seconds: float = 600.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    data_dir: Path = field(default_factory=lambda: Path.home() / ".taskswarm")
    debug_mode: bool = False
    session_ttl_seconds: int = 3_600
    log_level: str = "INFO"
    loops: LoopSettings = field(default_factory=LoopSettings)
    quota: QuotaSettings = field(default_factory=QuotaSettings)
    reasoner: ReasonerSettings = field(default_factory=ReasonerSettings)

    @classmethod
    def from_env(cls, data_dir: Path | None = None) -> Settings:
        """Load settings from ``TASKSWARM_*`` environment variables."""
        home = os.getenv("TASKSWARM_HOME")
        debug_mode = _env_bool("TASKSWARM_DEBUG_MODE", default=False)
        return cls(
            data_dir=data_dir or (Path(home).expanduser() if home else Path.home() / ".taskswarm"),
            debug_mode=debug_mode,
            session_ttl_seconds=_env_int("TASKSWARM_SESSION_TTL_SECONDS", 3_600),
            log_level=os.getenv("TASKSWARM_LOG_LEVEL", "INFO"),
            loops=LoopSettings(
                main_interval=_env_float("TASKSWARM_MAIN_INTERVAL", 5.0),
                agent_interval=_env_float("TASKSWARM_AGENT_INTERVAL", 10.0),
                coordinator_interval=_env_float("TASKSWARM_COORDINATOR_INTERVAL", 15.0),
                consistency_interval=_env_float("TASKSWARM_CONSISTENCY_INTERVAL", 30.0),
                initial_sync_delay=_env_float("TASKSWARM_INITIAL_SYNC_DELAY", 1.0),
            ),
            quota=QuotaSettings(
                requests_per_hour=_env_int("TASKSWARM_REQUESTS_PER_HOUR", 100),
                window_seconds=_env_int("TASKSWARM_QUOTA_WINDOW_SECONDS", 3_600),
                entry_ttl_seconds=_env_int("TASKSWARM_QUOTA_TTL_SECONDS", 3_600),
                fractions=_collect_fractions(),
            ),
            reasoner=ReasonerSettings(
                backend="echo" if debug_mode else os.getenv("TASKSWARM_REASONER", "cli"),
                cli_bin=os.getenv("CLAUDE_REAL_BIN", str(Path.home() / ".local" / "bin" / "claude")),
                model=os.getenv("TASKSWARM_MODEL", "sonnet"),
                timeout_seconds=_env_float("TASKSWARM_REASONER_TIMEOUT", 600.0),
            ),
        )


def _collect_fractions() -> dict[str, float]:
    """Merge ``TASKSWARM_QUOTA_FRACTIONS`` (``agent=0.2,other=0.1``) over the defaults."""
    fractions = dict(DEFAULT_QUOTA_FRACTIONS)
    raw = os.getenv("TASKSWARM_QUOTA_FRACTIONS", "")
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        agent, sep, value = item.partition("=")
        if not sep or not agent.strip():
            raise ConfigError(f"Invalid TASKSWARM_QUOTA_FRACTIONS entry: {item!r}")
        try:
            fraction = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid quota fraction for {agent.strip()}: {value!r}") from exc
        if not 0 < fraction <= 1:
            raise ConfigError(f"Quota fraction for {agent.strip()} must be in (0, 1]")
        fractions[agent.strip()] = fraction
    return fractions


def _env_bool(name: str, *, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
