"""
Deep analysis context builder exports.
"""

from .builder import AnalysisContextBuilder
from .config import AnalysisConfig
from .schema import AnalysisContext, BaselineSummary, RecentSample

__all__ = [
    "AnalysisContextBuilder",
    "AnalysisConfig",
    "AnalysisContext",
    "BaselineSummary",
    "RecentSample",
]
