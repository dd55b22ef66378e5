"""Research integration hook.

``pre-research`` checks a small in-memory cache and builds the task context a
research run should see. ``post-research`` caches what came back, ranks the
sources and proposes the text to append to the task.
"""

from __future__ import annotations

import hashlib
from collections import OrderedDict
from collections.abc import Mapping
from typing import Any

NAME = "research-integration"

DEFAULT_CACHE_SIZE = 50
DEFAULT_TOP_SOURCES = 5
RESEARCH_TYPES = frozenset({"general", "technical", "market", "academic"})


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def research_cache_key(query: str, research_type: str = "general") -> str:
    normalized = " ".join(query.lower().split())
    return hashlib.sha256(f"{research_type}:{normalized}".encode()).hexdigest()[:16]


def rank_sources(sources: Any, limit: int = DEFAULT_TOP_SOURCES) -> list[dict[str, Any]]:
    ranked = [dict(source) for source in sources or [] if isinstance(source, Mapping)]
    ranked.sort(key=lambda source: float(source.get("relevance") or 0), reverse=True)
    return ranked[:limit]


def format_task_details(query: str, results: Mapping[str, Any], sources: list[dict[str, Any]]) -> str:
    lines = [f"## Research: {query}"]
    findings = results.get("findings") or []
    if findings:
        lines.append("")
        lines.append("Findings:")
        lines.extend(f"- {finding}" for finding in findings)
    recommendations = results.get("recommendations") or []
    if recommendations:
        lines.append("")
        lines.append("Recommendations:")
        lines.extend(f"- {item}" for item in recommendations)
    if sources:
        lines.append("")
        lines.append("Sources:")
        lines.extend(f"- {source.get('name') or source.get('url')} ({source.get('url', 'n/a')})" for source in sources)
    return "\n".join(lines)


class ResearchIntegrationHook:
    events = ["pre-research", "post-research"]
    version = "1.0.0"
    description = "Caches research results and feeds them back into the task"
    timeout = 30_000
    store_results = True

    def __init__(self) -> None:
        self._cache: OrderedDict[str, dict[str, Any]] = OrderedDict()
        self._stats = {"requests": 0, "cache_hits": 0, "cache_misses": 0, "completed": 0}

    async def on_pre_research(self, context):
        payload = _mapping(context.payload)
        query, research_type = self._query(payload)
        options = context.hook_config
        self._stats["requests"] += 1
        key = research_cache_key(query, research_type)

        if key in self._cache:
            self._stats["cache_hits"] += 1
            self._cache.move_to_end(key)
            context.logger.info("Research cache hit for %r", query)
            return {
                "query": query,
                "type": research_type,
                "cache_key": key,
                "from_cache": True,
                "skip_research": True,
                "results": self._cache[key],
                "statistics": dict(self._stats),
            }

        self._stats["cache_misses"] += 1
        task = _mapping(payload.get("task"))
        task_context = {
            name: task[name]
            for name in ("id", "title", "description", "details")
            if task.get(name)
        }
        skip = options.get("enable_automatic_research", True) is False
        return {
            "query": query,
            "type": research_type,
            "cache_key": key,
            "from_cache": False,
            "skip_research": skip,
            "task_context": task_context,
            "statistics": dict(self._stats),
        }

    async def on_post_research(self, context):
        payload = _mapping(context.payload)
        query, research_type = self._query(payload)
        results = payload.get("results")
        if not isinstance(results, Mapping):
            raise ValueError("Research results are required")
        options = context.hook_config

        key = research_cache_key(query, research_type)
        self._cache[key] = dict(results)
        self._cache.move_to_end(key)
        while len(self._cache) > int(options.get("cache_size", DEFAULT_CACHE_SIZE)):
            self._cache.popitem(last=False)
        self._stats["completed"] += 1

        sources = rank_sources(results.get("sources"), int(options.get("top_sources", DEFAULT_TOP_SOURCES)))
        task = _mapping(payload.get("task"))
        task_update = None
        if task.get("id") is not None and options.get("append_to_task", True) is not False:
            task_update = {"task_id": task["id"], "append_details": format_task_details(query, results, sources)}

        context.logger.info("Integrated research for %r (%s findings)", query, len(results.get("findings") or []))
        return {
            "query": query,
            "type": research_type,
            "cache_key": key,
            "analysis": {
                "finding_count": len(results.get("findings") or []),
                "recommendation_count": len(results.get("recommendations") or []),
                "confidence": results.get("confidence"),
                "top_sources": sources,
            },
            "task_update": task_update,
            "statistics": dict(self._stats),
        }

    @staticmethod
    def _query(payload: Mapping[str, Any]) -> tuple[str, str]:
        query = str(payload.get("query") or "").strip()
        if not query:
            raise ValueError("Research query is required")
        research_type = str(payload.get("type") or "general")
        if research_type not in RESEARCH_TYPES:
            research_type = "general"
        return query, research_type


HOOK_CLASS = ResearchIntegrationHook
