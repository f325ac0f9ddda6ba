from .analysis import AnalysisPort
from .concurrency import ConcurrencyPoolPort, RunBudgetPort
from .engine import EnginePort
from .extraction import ExtractionPort
from .progress import ProgressSinkPort

__all__ = [
    "AnalysisPort",
    "ConcurrencyPoolPort",
    "EnginePort",
    "ExtractionPort",
    "ProgressSinkPort",
    "RunBudgetPort",
]
