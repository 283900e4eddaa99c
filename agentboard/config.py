"""agentboard configuration."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    value = os.getenv(name)
    if not value or not value.strip():
        return default
    return Path(value.strip()).expanduser()


@dataclass
class BoardConfig:
    """Runtime settings handed to the watch registry, sessions and routers."""

    data_dir: Path = field(default_factory=lambda: Path.cwd() / "data")
    tasks_dir: Path = field(default_factory=lambda: Path.cwd() / "tasks")

    # Server settings
    host: str = "127.0.0.1"
    port: int = 8000
    frontend_origin: str = "http://localhost:3000"

    # File watching
    watch_debounce_ms: int = 200
    watch_step_ms: int = 50
    watch_timeout_ms: int = 1000
    watch_retry_seconds: float = 1.0
    watch_retry_max_seconds: float = 30.0
    watch_force_polling: bool = False
    keepalive_seconds: float = 15.0

    # Observability
    otel_enabled: bool = False
    otel_endpoint: str = "http://localhost:4318"
    otel_service_name: str = "agentboard"
    prom_port: int = 0

    @classmethod
    def from_env(cls) -> "BoardConfig":
        defaults = cls()
        return cls(
            data_dir=_env_path("AGENTBOARD_DATA_DIR", defaults.data_dir),
            tasks_dir=_env_path("AGENTBOARD_TASKS_DIR", defaults.tasks_dir),
            host=os.getenv("AGENTBOARD_HOST", defaults.host),
            port=_env_int("AGENTBOARD_PORT", defaults.port),
            frontend_origin=os.getenv("AGENTBOARD_FRONTEND_ORIGIN", defaults.frontend_origin),
            watch_debounce_ms=_env_int("AGENTBOARD_WATCH_DEBOUNCE_MS", defaults.watch_debounce_ms),
            watch_step_ms=_env_int("AGENTBOARD_WATCH_STEP_MS", defaults.watch_step_ms),
            watch_timeout_ms=_env_int("AGENTBOARD_WATCH_TIMEOUT_MS", defaults.watch_timeout_ms),
            watch_retry_seconds=_env_float("AGENTBOARD_WATCH_RETRY_SECONDS", defaults.watch_retry_seconds),
            watch_retry_max_seconds=_env_float(
                "AGENTBOARD_WATCH_RETRY_MAX_SECONDS", defaults.watch_retry_max_seconds
            ),
            watch_force_polling=_env_bool("AGENTBOARD_WATCH_FORCE_POLLING", defaults.watch_force_polling),
            keepalive_seconds=_env_float("AGENTBOARD_KEEPALIVE_SECONDS", defaults.keepalive_seconds),
            otel_enabled=_env_bool("AGENTBOARD_OTEL_ENABLED", defaults.otel_enabled),
            otel_endpoint=os.getenv("AGENTBOARD_OTEL_ENDPOINT", defaults.otel_endpoint),
            otel_service_name=os.getenv("AGENTBOARD_OTEL_SERVICE_NAME", defaults.otel_service_name),
            prom_port=_env_int("AGENTBOARD_PROM_PORT", defaults.prom_port),
        )

    @property
    def tasks_path(self) -> Path:
        return self.data_dir / "tasks.json"

    @property
    def repos_path(self) -> Path:
        return self.data_dir / "repos.json"

    @property
    def students_dir(self) -> Path:
        return self.data_dir / "students"

    def log_path(self, task_id: int) -> Path:
        return self.tasks_dir / str(task_id) / "agent.log"

    def spec_path(self, task_id: int) -> Path:
        return self.tasks_dir / str(task_id) / "spec.md"

    def student_path(self, name: str) -> Path:
        return self.students_dir / f"{name}.json"
