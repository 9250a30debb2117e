from __future__ import annotations

from deepdive.models.analysis import (
    AnalysisResult,
    ArticleSnapshot,
    Arguments,
    DeepDiveResult,
    Definition,
    ParsedAnalysis,
    RelatedArticle,
)
from deepdive.models.api import (
    AnalyzeRequest,
    AnalyzeResponse,
    HealthResponse,
    SearchRequest,
    SearchResponse,
)
from deepdive.models.cache import CacheEntry

__all__ = [
    # analysis
    "ArticleSnapshot",
    "Definition",
    "Arguments",
    "RelatedArticle",
    "AnalysisResult",
    "ParsedAnalysis",
    "DeepDiveResult",
    # cache
    "CacheEntry",
    # api
    "AnalyzeRequest",
    "AnalyzeResponse",
    "SearchRequest",
    "SearchResponse",
    "HealthResponse",
]
