from __future__ import annotations

from dataclasses import dataclass

from rich.console import Console

from cagminutes.core.config import AppPaths, ProcessingSettings


@dataclass(slots=True)
class CLIContext:
    paths: AppPaths
    settings: ProcessingSettings
    console: Console
