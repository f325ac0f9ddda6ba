from .errors import (
    AnalysisError,
    EngineFetchError,
    ErrorKind,
    ExtractionError,
    MagnetOptError,
)
from .magnet import MagnetInfo, ResultKey, parse_magnet
from .progress import (
    AnalysisBatchProgress,
    Done,
    EngineCompleted,
    EngineStarted,
    ProgressEvent,
    RunErrorSummary,
)
from .search import (
    AnalysisStatus,
    AnalysisVerdict,
    EngineDescriptor,
    EngineKind,
    EnrichedResult,
    ExtractedRecord,
    HtmlPage,
    ParsingMode,
    RawResult,
    ResultSnapshot,
    SearchQuery,
    SortOrder,
)

__all__ = [
    "AnalysisBatchProgress",
    "AnalysisError",
    "AnalysisStatus",
    "AnalysisVerdict",
    "Done",
    "EngineCompleted",
    "EngineDescriptor",
    "EngineFetchError",
    "EngineKind",
    "EngineStarted",
    "EnrichedResult",
    "ErrorKind",
    "ExtractedRecord",
    "ExtractionError",
    "HtmlPage",
    "MagnetInfo",
    "MagnetOptError",
    "ParsingMode",
    "ProgressEvent",
    "RawResult",
    "ResultKey",
    "ResultSnapshot",
    "RunErrorSummary",
    "SearchQuery",
    "SortOrder",
    "parse_magnet",
]
