"""Request and response bodies of the HTTP backend."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from deepdive.models.analysis import Arguments, Definition, RelatedArticle

MAX_ARTICLE_CHARS = 500_000
MAX_CONCEPTS = 20


class AnalyzeRequest(BaseModel):
    model_config = ConfigDict(strict=True)

    article: str
    concepts: list[str] | None = None

    @field_validator("article")
    @classmethod
    def validate_article(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Article text cannot be empty")
        if len(v) > MAX_ARTICLE_CHARS:
            raise ValueError(
                f"Article text is too long. Maximum {MAX_ARTICLE_CHARS:,} characters allowed."
            )
        return v

    @field_validator("concepts")
    @classmethod
    def validate_concepts(cls, v: list[str] | None) -> list[str] | None:
        if v is not None and len(v) > MAX_CONCEPTS:
            raise ValueError(f"Too many concepts. Maximum {MAX_CONCEPTS} allowed.")
        return v


class AnalyzeResponse(BaseModel):
    definitions: list[Definition]
    arguments: Arguments


class SearchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, strict=True)

    search_query: str = Field(alias="searchQuery", min_length=1)

    @field_validator("search_query")
    @classmethod
    def validate_search_query(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("searchQuery cannot be blank")
        return v


class SearchResponse(BaseModel):
    articles: list[RelatedArticle]


class HealthResponse(BaseModel):
    status: Literal["ok"] = "ok"
    timestamp: datetime
