"""Progress events published while a search run is in flight.

Events are strictly ordered per engine and per analysis batch. There is
no ordering guarantee between independent engines.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, ClassVar, Literal, Union

BatchMode = Literal["batch", "fallback", "aborted"]


class _Event:
    kind: ClassVar[str]

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)  # type: ignore[call-overload]
        for key, value in data.items():
            if isinstance(value, tuple):
                data[key] = list(value)
        return {"kind": self.kind, **data}


@dataclass(frozen=True)
class EngineStarted(_Event):
    engine_id: str

    kind: ClassVar[str] = "engine_started"


@dataclass(frozen=True)
class EngineCompleted(_Event):
    engine_id: str
    count: int
    error: str | None = None
    error_kind: str | None = None

    kind: ClassVar[str] = "engine_completed"

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass(frozen=True)
class AnalysisBatchProgress(_Event):
    batch_index: int
    done: int  # batches resolved so far in this run
    total: int  # batches scheduled so far in this run
    model_name: str
    mode: BatchMode = "batch"
    analyzed: int = 0
    failed: int = 0

    kind: ClassVar[str] = "analysis_batch_progress"


@dataclass(frozen=True)
class RunErrorSummary(_Event):
    message: str
    failed_engines: tuple[str, ...] = ()

    kind: ClassVar[str] = "run_error"


@dataclass(frozen=True)
class Done(_Event):
    total_results: int
    failed_engines: tuple[str, ...] = ()
    analyzed: int = 0
    fallback_failed: int = 0

    kind: ClassVar[str] = "done"


ProgressEvent = Union[
    EngineStarted,
    EngineCompleted,
    AnalysisBatchProgress,
    RunErrorSummary,
    Done,
]
