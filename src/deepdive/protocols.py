"""Protocol interfaces for swappable components.

The orchestrator and handlers reference these protocols, not the concrete
implementations. This allows:
- Tests to use lightweight in-memory implementations
- Other model providers or cache backends without touching business logic
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from deepdive.errors import DeepDiveError
    from deepdive.models.analysis import AnalysisResult, DeepDiveResult, RelatedArticle


class CacheProtocol(Protocol):
    """Interface for the fingerprint cache backend."""

    async def get_valid(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl: timedelta | None = None) -> None: ...

    async def is_valid(self, key: str) -> bool: ...


class ModelProtocol(Protocol):
    """Interface for the remote language model."""

    async def generate(self, prompt: str, *, search: bool = False) -> dict[str, Any]: ...


class AnalysisBackend(Protocol):
    """Interface for the analysis/search service the orchestrator calls."""

    async def analyze(self, article: str, concepts: list[str] | None = None) -> AnalysisResult: ...

    async def search(self, query: str) -> list[RelatedArticle]: ...


class DeepDiveRenderer(Protocol):
    """Receives Deep-Dive results as they become available.

    ``show_placeholders`` is called once before either remote call settles;
    afterwards each result replaces its own placeholder, in completion order.
    """

    def show_placeholders(self) -> None: ...

    def show_analysis(self, analysis: AnalysisResult) -> None: ...

    def show_analysis_failed(self, error: DeepDiveError) -> None: ...

    def show_related_articles(self, articles: list[RelatedArticle]) -> None: ...

    def show_cached(self, result: DeepDiveResult) -> None: ...
