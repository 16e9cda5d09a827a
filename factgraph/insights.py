"""Stored AI insights: context loading and confidence-filtered queries.

Insights are generated outside this package; here they are only loaded,
scoped and filtered.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set

from .query import FactsNotFoundError
from .schema import BugSmell, Facts, Insights, IntentTag, NamingIssue, PatternTag, Summary
from .storage import read_facts, read_insights


class InsightsNotFoundError(Exception):
    """Raised when an insight query runs against a cache without insights."""


@dataclass(frozen=True)
class InsightScope:
    unit_ids: Optional[List[str]] = None
    symbol_ids: Optional[List[str]] = None
    file_ids: Optional[List[str]] = None


@dataclass
class InsightContext:
    facts: Facts
    sources: Dict[str, str] = field(default_factory=dict)  # file_id -> text


def resolve_scoped_file_ids(facts: Facts, scope: Optional[InsightScope] = None) -> Set[str]:
    if scope is None or (scope.file_ids is None and scope.unit_ids is None and scope.symbol_ids is None):
        return {f.id for f in facts.files}

    ids: Set[str] = set(scope.file_ids or [])
    if scope.unit_ids:
        units = set(scope.unit_ids)
        ids.update(f.id for f in facts.files if f.unit_id in units)
    if scope.symbol_ids:
        symbols = set(scope.symbol_ids)
        ids.update(s.decl.file_id for s in facts.symbols if s.id in symbols)
    return ids


def _read_source(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        logging.debug("Skipping unreadable source %s", path, exc_info=True)
        return None


async def load_insight_context(
    repo_root: str | Path,
    cache_dir: str | Path,
    scope: Optional[InsightScope] = None,
) -> InsightContext:
    """Facts plus the source text of every file in *scope*."""
    facts = await read_facts(cache_dir)
    if facts is None:
        raise FactsNotFoundError(f"No cached facts found. Run index-facts first. (cache_dir: {cache_dir})")

    paths = {f.id: f.path for f in facts.files}
    file_ids = [fid for fid in resolve_scoped_file_ids(facts, scope) if fid in paths]
    texts = await asyncio.gather(
        *(asyncio.to_thread(_read_source, Path(repo_root) / paths[fid]) for fid in file_ids)
    )
    sources = {fid: text for fid, text in zip(file_ids, texts) if text is not None}
    return InsightContext(facts=facts, sources=sources)


async def _load(cache_dir: str | Path) -> Insights:
    insights = await read_insights(cache_dir)
    if insights is None:
        raise InsightsNotFoundError(
            f"No cached insights found. Run analyze-insights first. (cache_dir: {cache_dir})"
        )
    return insights


async def query_intents(
    cache_dir: str | Path, target_id: Optional[str] = None, *, min_confidence: float = 0.0
) -> List[IntentTag]:
    insights = await _load(cache_dir)
    return [
        t
        for t in insights.intent_tags
        if t.meta.confidence >= min_confidence and (target_id is None or t.target_id == target_id)
    ]


async def query_summaries(
    cache_dir: str | Path, target_id: Optional[str] = None, *, min_confidence: float = 0.0
) -> List[Summary]:
    insights = await _load(cache_dir)
    return [
        s
        for s in insights.summaries
        if s.meta.confidence >= min_confidence and (target_id is None or s.target_id == target_id)
    ]


async def query_smells(
    cache_dir: str | Path,
    *,
    file_id: Optional[str] = None,
    severity: Optional[str] = None,
    min_confidence: float = 0.0,
) -> List[BugSmell]:
    insights = await _load(cache_dir)
    out: List[BugSmell] = []
    for b in insights.bug_smells:
        if b.meta.confidence < min_confidence:
            continue
        if file_id and b.file_id != file_id:
            continue
        if severity and b.severity != severity:
            continue
        out.append(b)
    return out


async def query_patterns(
    cache_dir: str | Path, pattern: Optional[str] = None, *, min_confidence: float = 0.0
) -> List[PatternTag]:
    insights = await _load(cache_dir)
    return [
        p
        for p in insights.pattern_tags
        if p.meta.confidence >= min_confidence and (pattern is None or p.pattern == pattern)
    ]


async def query_naming(
    cache_dir: str | Path, symbol_id: Optional[str] = None, *, min_confidence: float = 0.0
) -> List[NamingIssue]:
    insights = await _load(cache_dir)
    return [
        n
        for n in insights.naming_issues
        if n.meta.confidence >= min_confidence and (symbol_id is None or n.symbol_id == symbol_id)
    ]
