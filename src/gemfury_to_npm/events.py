"""
Migration Status Events

The orchestrator reports through discrete events handed to a reporter
callable, so control flow never touches presentation.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional


@dataclass(frozen=True)
class RunStarted:
    module_count: int


@dataclass(frozen=True)
class ModuleStarted:
    index: int  # 1-based
    count: int
    module: str


@dataclass(frozen=True)
class ProgressUpdate:
    """Progress inside one module; fraction is 0..1."""
    module: str
    stage: str
    fraction: float


@dataclass(frozen=True)
class VersionSkipped:
    module: str
    version: str
    reason: str


@dataclass(frozen=True)
class WarningRaised:
    message: str
    module: Optional[str] = None
    version: Optional[str] = None


@dataclass(frozen=True)
class ModuleDone:
    module: str
    published_count: int
    failed_count: int = 0
    skipped_count: int = 0
    error: Optional[str] = None


@dataclass(frozen=True)
class RunFinished:
    modules: List[ModuleDone] = field(default_factory=list)


Reporter = Callable[[Any], None]


def null_reporter(event: Any) -> None:
    """Reporter that drops every event."""
    return None


def fan_out(*reporters: Reporter) -> Reporter:
    """Combine reporters; each event goes to all of them in order."""
    def report(event: Any) -> None:
        for reporter in reporters:
            reporter(event)
    return report
