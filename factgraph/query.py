from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Union

from . import indexes as idx
from .config import FactgraphConfig
from .diff import impact_units
from .schema import CallEdge, Dep, Diagnostic, Facts, Ref, Symbol, TypeRelation, file_id_for
from .storage import read_facts


class FactsNotFoundError(Exception):
    """Raised when a query runs against a cache that holds no facts."""


@dataclass(frozen=True)
class SymbolQuery:
    """Structured definition lookup; unset fields do not filter."""

    id: Optional[str] = None
    name: Optional[str] = None
    path: Optional[str] = None  # substring of the declaring file's path


@dataclass(frozen=True)
class UnitScope:
    unit: str


@dataclass(frozen=True)
class FileScope:
    file: str


DiagnosticScope = Union[str, UnitScope, FileScope]  # "repo" | unit | file
REPO_SCOPE = "repo"


@dataclass
class DepsResult:
    unit_id: str
    deps: List[Dep]


@dataclass
class RdepsResult:
    unit_id: str
    rdeps: List[Dep]


@dataclass
class DefsResult:
    symbols: List[Symbol]


@dataclass
class RefsResult:
    symbol_id: str
    refs: List[Ref]


@dataclass
class DiagnosticsResult:
    diagnostics: List[Diagnostic]


@dataclass
class ImpactResult:
    changed_files: List[str]
    affected_units: List[str]
    affected_deps: List[Dep] = field(default_factory=list)


@dataclass
class ImplsResult:
    type_id: str
    implementations: List[TypeRelation]


@dataclass
class CallersResult:
    symbol_id: str
    callers: List[CallEdge]


@dataclass
class CalleesResult:
    symbol_id: str
    callees: List[CallEdge]


# ---------------------------------------------------------------------------
# Pure lookups over an in-memory graph
# ---------------------------------------------------------------------------


def find_deps(facts: Facts, unit_id: str) -> List[Dep]:
    return [d for d in facts.deps if d.from_unit_id == unit_id]


def find_rdeps(facts: Facts, unit_id: str) -> List[Dep]:
    return [d for d in facts.deps if d.to_unit_id == unit_id]


def find_defs(facts: Facts, query: Union[str, SymbolQuery]) -> List[Symbol]:
    if isinstance(query, str):
        return [s for s in facts.symbols if s.name == query]

    file_paths = {f.id: f.path for f in facts.files} if query.path else {}
    out: List[Symbol] = []
    for s in facts.symbols:
        if query.id and s.id != query.id:
            continue
        if query.name and s.name != query.name:
            continue
        if query.path:
            decl_path = file_paths.get(s.decl.file_id)
            if decl_path is None or query.path not in decl_path:
                continue
        out.append(s)
    return out


def find_refs(facts: Facts, symbol_id: str) -> List[Ref]:
    return [r for r in facts.refs if r.to_symbol_id == symbol_id]


def find_diagnostics(facts: Facts, scope: DiagnosticScope = REPO_SCOPE) -> List[Diagnostic]:
    if isinstance(scope, FileScope):
        file_id = file_id_for(scope.file)
        return [d for d in facts.diagnostics if d.file_id == file_id]
    if isinstance(scope, UnitScope):
        unit_file_ids = {f.id for f in facts.files if f.unit_id == scope.unit}
        return [d for d in facts.diagnostics if d.file_id in unit_file_ids]
    if scope != REPO_SCOPE:
        raise ValueError(f"Unknown diagnostics scope: {scope!r}")
    return list(facts.diagnostics)


def find_impact(facts: Facts, changed_files: Sequence[str]) -> ImpactResult:
    affected = impact_units(changed_files, facts)
    affected_set = set(affected)
    deps = [
        d for d in facts.deps if d.from_unit_id in affected_set or d.to_unit_id in affected_set
    ]
    return ImpactResult(changed_files=list(changed_files), affected_units=affected, affected_deps=deps)


def find_impls(facts: Facts, type_id: str) -> List[TypeRelation]:
    return [r for r in facts.type_relations if r.to_type_id == type_id and r.kind == "implements"]


def find_callers(facts: Facts, symbol_id: str) -> List[CallEdge]:
    return [e for e in facts.call_edges if e.callee_id == symbol_id]


def find_callees(facts: Facts, symbol_id: str) -> List[CallEdge]:
    return [e for e in facts.call_edges if e.caller_id == symbol_id]


# ---------------------------------------------------------------------------
# Cache-backed engine
# ---------------------------------------------------------------------------


@dataclass
class QueryEngine:
    """Read-only queries against the facts cached in *cache_dir*.

    Every query raises FactsNotFoundError when nothing is cached.  When
    *use_indexes* is set, derived indexes are consulted if present.
    """

    cache_dir: Union[str, Path]
    use_indexes: bool = True

    @classmethod
    def from_config(cls, cfg: FactgraphConfig, repo_root: Union[str, Path]) -> "QueryEngine":
        return cls(cache_dir=cfg.cache_path(repo_root), use_indexes=cfg.use_indexes)

    async def load_facts(self) -> Facts:
        facts = await read_facts(self.cache_dir)
        if facts is None:
            raise FactsNotFoundError(
                f"No cached facts found. Run index-facts first. (cache_dir: {self.cache_dir})"
            )
        return facts

    async def deps(self, unit_id: str) -> DepsResult:
        facts = await self.load_facts()
        return DepsResult(unit_id=unit_id, deps=find_deps(facts, unit_id))

    async def rdeps(self, unit_id: str) -> RdepsResult:
        facts = await self.load_facts()
        return RdepsResult(unit_id=unit_id, rdeps=find_rdeps(facts, unit_id))

    async def defs(self, query: Union[str, SymbolQuery]) -> DefsResult:
        facts = await self.load_facts()
        if isinstance(query, str) and self.use_indexes:
            by_name = await idx.load_symbol_by_name(self.cache_dir)
            if by_name is not None:
                wanted = set(by_name.get(query, []))
                return DefsResult(symbols=[s for s in facts.symbols if s.id in wanted and s.name == query])
            logging.debug("symbol_by_name index absent; scanning facts")
        return DefsResult(symbols=find_defs(facts, query))

    async def refs(self, symbol_id: str) -> RefsResult:
        facts = await self.load_facts()
        if self.use_indexes:
            by_symbol = await idx.load_refs_by_symbol(self.cache_dir)
            if by_symbol is not None:
                if symbol_id not in by_symbol:
                    return RefsResult(symbol_id=symbol_id, refs=[])
                # Stored refs are only a hint; the facts decide what exists.
                return RefsResult(symbol_id=symbol_id, refs=find_refs(facts, symbol_id))
            logging.debug("refs_by_symbol index absent; scanning facts")
        return RefsResult(symbol_id=symbol_id, refs=find_refs(facts, symbol_id))

    async def diagnostics(self, scope: DiagnosticScope = REPO_SCOPE) -> DiagnosticsResult:
        facts = await self.load_facts()
        return DiagnosticsResult(diagnostics=find_diagnostics(facts, scope))

    async def impact(self, changed_files: Sequence[str]) -> ImpactResult:
        facts = await self.load_facts()
        return find_impact(facts, changed_files)

    async def impls(self, type_id: str) -> ImplsResult:
        facts = await self.load_facts()
        return ImplsResult(type_id=type_id, implementations=find_impls(facts, type_id))

    async def callers(self, symbol_id: str) -> CallersResult:
        facts = await self.load_facts()
        return CallersResult(symbol_id=symbol_id, callers=find_callers(facts, symbol_id))

    async def callees(self, symbol_id: str) -> CalleesResult:
        facts = await self.load_facts()
        return CalleesResult(symbol_id=symbol_id, callees=find_callees(facts, symbol_id))
