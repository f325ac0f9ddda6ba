from .analysis_batcher import AnalysisBatcher, BatchSettings, PlannedBatch
from .extraction_client import ExtractionClient
from .progress_bus import ProgressBus
from .result_merger import MergeReport, ResultMerger
from .retry import RetryPolicy, UnitState, WorkUnit, call_with_retry

__all__ = [
    "AnalysisBatcher",
    "BatchSettings",
    "ExtractionClient",
    "MergeReport",
    "PlannedBatch",
    "ProgressBus",
    "ResultMerger",
    "RetryPolicy",
    "UnitState",
    "WorkUnit",
    "call_with_retry",
]
