"""
Knowledge augmentation.

Before the first provider call of a run, the agent loop may ask a search
collaborator for context relevant to the user's question and inject the
formatted results into the prompt. Search is advisory: a missing, empty or
failing collaborator never fails the run.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import aiohttp

from .config.knowledge import KnowledgeConfig

logger = logging.getLogger("copilot_runtime.knowledge")

KNOWLEDGE_BASE_SYSTEM_INSTRUCTION = (
    "The following excerpts were retrieved from the knowledge base for the user's question. "
    "Use them when they are relevant and prefer them over general knowledge. "
    "If they do not contain the answer, say so instead of guessing. "
    "Cite the source of any excerpt you rely on."
)


@dataclass(frozen=True)
class KnowledgeResult:
    title: str
    content: str
    score: float = 0.0
    source_ref: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> KnowledgeResult:
        return cls(
            title=data.get("title") or "",
            content=data.get("content") or data.get("text") or "",
            score=float(data.get("score") or 0.0),
            source_ref=data.get("source_ref") or data.get("sourceRef") or data.get("url"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"title": self.title, "content": self.content, "score": self.score, "source_ref": self.source_ref}


@dataclass(frozen=True)
class SearchOptions:
    limit: int = 5
    min_score: float = 0.0


@runtime_checkable
class KnowledgeSearch(Protocol):
    """Search collaborator consulted once per run."""

    async def search(self, query: str, options: SearchOptions) -> Sequence[KnowledgeResult]: ...


class HttpKnowledgeSearch:
    """
    Knowledge search over HTTP.

    POSTs ``{"query", "limit", "min_score"}`` as JSON to the configured
    endpoint and expects either a list of results or ``{"results": [...]}``.

    Example:
        ```python
        async with HttpKnowledgeSearch(KnowledgeConfig(endpoint="https://kb.example.com/search")) as kb:
            results = await kb.search("refund policy", SearchOptions(limit=3))
        ```
    """

    def __init__(self, config: KnowledgeConfig, *, session: aiohttp.ClientSession | None = None) -> None:
        if not config.endpoint:
            raise ValueError("HttpKnowledgeSearch requires an endpoint")
        self.config = config
        self._session = session
        self._owns_session = session is None

    @property
    def default_options(self) -> SearchOptions:
        return SearchOptions(limit=self.config.limit, min_score=self.config.min_score)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.config.timeout))
            self._owns_session = True
        return self._session

    async def search(self, query: str, options: SearchOptions | None = None) -> list[KnowledgeResult]:
        """
        Run one search.

        Raises:
            aiohttp.ClientError: On transport failures or non-2xx responses.
        """
        options = options or self.default_options
        session = await self._get_session()
        body = {"query": query, "limit": options.limit, "min_score": options.min_score}

        async with session.post(self.config.endpoint, json=body, headers=self._headers()) as response:
            response.raise_for_status()
            payload = await response.json()

        items = payload.get("results", []) if isinstance(payload, dict) else payload
        results = [KnowledgeResult.from_dict(item) for item in items or []]
        return [r for r in results if r.score >= options.min_score]

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> HttpKnowledgeSearch:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


def _coerce_result(item: Any) -> KnowledgeResult:
    if isinstance(item, KnowledgeResult):
        return item
    if isinstance(item, Mapping):
        return KnowledgeResult.from_dict(item)
    raise TypeError(f"Unsupported knowledge result: {type(item).__name__}")


def format_knowledge_results(results: Sequence[KnowledgeResult]) -> str:
    """Render results as numbered excerpts for the model."""
    sections = []
    for i, result in enumerate(results, start=1):
        header = f"[{i}] {result.title}" if result.title else f"[{i}]"
        lines = [f"{header} (relevance: {result.score:.2f})", result.content.strip()]
        if result.source_ref:
            lines.append(f"Source: {result.source_ref}")
        sections.append("\n".join(lines))
    return "\n\n".join(sections)


async def augment_with_knowledge(
    search: KnowledgeSearch | None,
    query: str | None,
    options: SearchOptions | None = None,
) -> str | None:
    """
    Fetch and format knowledge context for ``query``.

    Returns:
        The context block to inject, or ``None`` when there is no
        collaborator, no query, no results, or the search failed.
    """
    if search is None or not query or not query.strip():
        return None

    try:
        raw = await search.search(query, options or SearchOptions())
        results = [_coerce_result(item) for item in raw or []]
        if not results:
            logger.debug("Knowledge search returned no results")
            return None

        results.sort(key=lambda r: r.score, reverse=True)
        if options is not None:
            results = results[: options.limit]
        context = format_knowledge_results(results)
    except Exception as e:
        logger.warning("Knowledge search failed, continuing without context: %s", e)
        return None

    return f"{KNOWLEDGE_BASE_SYSTEM_INSTRUCTION}\n\n{context}"


__all__ = [
    "KnowledgeResult",
    "SearchOptions",
    "KnowledgeSearch",
    "HttpKnowledgeSearch",
    "format_knowledge_results",
    "augment_with_knowledge",
    "KNOWLEDGE_BASE_SYSTEM_INSTRUCTION",
]
