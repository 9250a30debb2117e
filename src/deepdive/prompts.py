"""Prompt templates for the analysis and search calls."""

from __future__ import annotations

SYSTEM_INSTRUCTION = (
    "You are a research assistant that analyzes articles and provides structured "
    "insights. Your responses must be in valid JSON format. Provide accurate, "
    "relevant information based on the article content."
)

# The model only needs the lead of very long articles to pick terms and arguments.
PROMPT_ARTICLE_MAX_CHARS = 10_000

_ANALYSIS_TEMPLATE = """Analyze the following article and extract key information.

ARTICLE CONTENT:
{article}

Return ONLY a JSON object with this exact structure:
{{
  "definitions": [
    {{"term": "term1", "definition": "definition1"}},
    {{"term": "term2", "definition": "definition2"}}
  ],
  "arguments": {{
    "main": ["argument1", "argument2"],
    "counter": ["counter1", "counter2"]
  }}
}}

REQUIREMENTS:
- Definitions should focus on: {concepts}
- Identify 3-5 key terms with clear, concise definitions
- Extract 2-5 main arguments from the article
- Extract 1-3 counter-arguments if present in the article
- Base analysis ONLY on the article content provided above
- Do NOT include citation numbers or references in your response"""

_SEARCH_TEMPLATE = """Use Google Search to find 3-5 real articles about: {query}

CRITICAL REQUIREMENTS:
1. Use the Google Search tool to find actual, existing articles
2. You MUST include the URLs you find in the JSON response below
3. These URLs will be clickable links for users - they must be real URLs from your search
4. Do NOT rely only on grounding metadata - put the search results in the JSON structure
5. Do NOT fabricate, guess, or hallucinate URLs

Return this exact JSON structure with articles you found through Google Search:
{{
  "articles": [
    {{"title": "Actual article title from your search", "url": "https://real-url-from-search.com"}},
    {{"title": "Second article from search results", "url": "https://another-real-url.com"}}
  ]
}}

IMPORTANT: Users will click these links. Include the real URLs you discovered through \
Google Search in the JSON above."""


def build_analysis_prompt(article: str, concepts: list[str] | None = None) -> str:
    focus = ", ".join(concepts) if concepts else "identify 3-5 key terms from the article"
    if len(article) > PROMPT_ARTICLE_MAX_CHARS:
        article = f"{article[:PROMPT_ARTICLE_MAX_CHARS]}..."
    return _ANALYSIS_TEMPLATE.format(article=article, concepts=focus)


def build_search_prompt(query: str) -> str:
    return _SEARCH_TEMPLATE.format(query=query)
