from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ArticleSnapshot(BaseModel):
    """Readable text pulled from one page. Immutable once extracted."""

    model_config = ConfigDict(frozen=True)

    url: str
    text: str
    title: str = ""
    heading: str = ""  # Text of the first <h1>, if any


class Definition(BaseModel):
    term: str
    definition: str


class Arguments(BaseModel):
    main: list[str] = []
    counter: list[str] = []


class RelatedArticle(BaseModel):
    title: str
    url: str


class AnalysisResult(BaseModel):
    """Definitions and arguments for one article, as returned by /analyze."""

    definitions: list[Definition] = []
    arguments: Arguments = Arguments()


class ParsedAnalysis(AnalysisResult):
    """Normalizer output: an AnalysisResult plus any sources the model volunteered."""

    related_articles: list[RelatedArticle] = []

    def to_analysis(self) -> AnalysisResult:
        return AnalysisResult(definitions=self.definitions, arguments=self.arguments)


class DeepDiveResult(BaseModel):
    """Reconciled union of the analysis and search calls for one fingerprint."""

    model_config = ConfigDict(populate_by_name=True)

    related_articles: list[RelatedArticle] = Field(default=[], alias="relatedArticles")
    definitions: list[Definition] = []
    arguments: Arguments = Arguments()
