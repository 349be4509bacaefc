from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class AppPaths:
    project_root: Path
    data_dir: Path
    db_path: Path
    download_dir: Path
    log_dir: Path


@dataclass(frozen=True)
class ProcessingSettings:
    download_concurrency: int = 3
    download_timeout_seconds: float = 60.0
    db_max_attempts: int = 3
    db_backoff_seconds: float = 0.1
    max_workers: int | None = None
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
    )


DEFAULT_DATA_DIRNAME = ".cagminutes"


def load_paths(project_root: Path | None = None) -> AppPaths:
    root = (project_root or Path.cwd()).expanduser().resolve()

    home_raw = os.getenv("CAGMINUTES_HOME")
    if home_raw:
        data_dir = Path(home_raw).expanduser().resolve()
    else:
        data_dir = root / DEFAULT_DATA_DIRNAME

    return AppPaths(
        project_root=root,
        data_dir=data_dir,
        db_path=data_dir / "minutes.db",
        download_dir=data_dir / "downloads",
        log_dir=data_dir / "logs",
    )


def read_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def read_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def load_settings() -> ProcessingSettings:
    defaults = ProcessingSettings()
    max_workers_raw = read_int_env("CAGMINUTES_MAX_WORKERS", 0)
    return ProcessingSettings(
        download_concurrency=read_int_env("CAGMINUTES_DOWNLOAD_CONCURRENCY", defaults.download_concurrency),
        download_timeout_seconds=read_float_env(
            "CAGMINUTES_DOWNLOAD_TIMEOUT_SECONDS", defaults.download_timeout_seconds
        ),
        db_max_attempts=read_int_env("CAGMINUTES_DB_MAX_ATTEMPTS", defaults.db_max_attempts),
        db_backoff_seconds=read_float_env("CAGMINUTES_DB_BACKOFF_SECONDS", defaults.db_backoff_seconds),
        max_workers=max_workers_raw or None,
        user_agent=os.getenv("CAGMINUTES_USER_AGENT") or defaults.user_agent,
    )
