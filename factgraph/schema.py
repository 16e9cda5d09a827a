from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


SCHEMA_VERSION = 1

Confidence = Literal["certain", "probable", "speculative"]
Severity = Literal["error", "warning", "info", "hint"]
TypeRelationKind = Literal["implements", "embeds", "converts_to", "instantiates"]
CallKind = Literal["static", "dynamic", "interface"]


def utc_now() -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2026-01-01T00:00:00.000Z."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def unit_language(unit_id: str) -> Optional[str]:
    """Return the language tag of a ``unit:<lang>:<path>`` id, or None."""
    parts = unit_id.split(":", 2)
    if len(parts) < 3 or parts[0] != "unit" or not parts[1]:
        return None
    return parts[1]


def file_id_for(path: str) -> str:
    return path if path.startswith("file:") else f"file:{path}"


class _Model(BaseModel):
    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------------
# Graph nodes and edges
# ---------------------------------------------------------------------------


class Position(_Model):
    line: int
    column: int
    byte_offset: Optional[int] = None


class Site(_Model):
    """A location inside a file (declaration or call site)."""

    file_id: str
    position: Position


class UnitMetadata(_Model):
    """Documented per-unit keys written by language adapters.

    import_path: language-level import path (e.g. Go import path)
    module:      owning module/project name, when the language has one
    repo_root:   absolute repository root the adapter ran against
    """

    import_path: Optional[str] = None
    module: Optional[str] = None
    repo_root: Optional[str] = None


class Unit(_Model):
    id: str  # unit:<lang>:<path>
    kind: str
    name: str
    path: str
    metadata: Optional[UnitMetadata] = None


class File(_Model):
    id: str  # file:<path>
    path: str
    unit_id: str
    hash: str
    generated: bool = False


class Dep(_Model):
    from_unit_id: str
    to_unit_id: str
    kind: str


class Symbol(_Model):
    id: str
    unit_id: str
    name: str
    kind: str
    signature: Optional[str] = None
    exported: bool = False
    decl: Site


class Ref(_Model):
    from_symbol_id: str
    to_symbol_id: str
    site: Site
    kind: str
    confidence: Confidence


class TypeRelation(_Model):
    from_type_id: str
    to_type_id: str
    kind: TypeRelationKind


class CallEdge(_Model):
    caller_id: str
    callee_id: str
    site: Site
    kind: CallKind


class Diagnostic(_Model):
    file_id: str
    position: Position
    severity: Severity
    message: str
    tool: str


# ---------------------------------------------------------------------------
# Aggregate
# ---------------------------------------------------------------------------


class Snapshot(_Model):
    commit: str
    created_at: str


class FactsMeta(_Model):
    generator: Optional[str] = None
    notes: Optional[str] = None


# Collection names, in cascade order.  Also the shard names of the split
# on-disk encoding (<name>.jsonl).
COLLECTIONS: List[str] = [
    "units",
    "files",
    "deps",
    "symbols",
    "refs",
    "type_relations",
    "call_edges",
    "diagnostics",
]


class Facts(_Model):
    schema_version: int = SCHEMA_VERSION
    snapshot: Snapshot
    units: List[Unit] = Field(default_factory=list)
    files: List[File] = Field(default_factory=list)
    deps: List[Dep] = Field(default_factory=list)
    symbols: List[Symbol] = Field(default_factory=list)
    refs: List[Ref] = Field(default_factory=list)
    type_relations: List[TypeRelation] = Field(default_factory=list)
    call_edges: List[CallEdge] = Field(default_factory=list)
    diagnostics: List[Diagnostic] = Field(default_factory=list)
    meta: Optional[FactsMeta] = None

    @classmethod
    def empty(cls, commit: str = "unknown") -> "Facts":
        return cls(snapshot=Snapshot(commit=commit, created_at=utc_now()))


# ---------------------------------------------------------------------------
# Delta
# ---------------------------------------------------------------------------


class DepKey(_Model):
    from_unit_id: str
    to_unit_id: str


class RefKey(_Model):
    from_symbol_id: str
    to_symbol_id: str


class TypeRelationKey(_Model):
    from_type_id: str
    to_type_id: str


class CallEdgeKey(_Model):
    caller_id: str
    callee_id: str


class DiagnosticKey(_Model):
    file_id: str
    position: Position
    message: str


class DeltaAdditions(_Model):
    units: List[Unit] = Field(default_factory=list)
    files: List[File] = Field(default_factory=list)
    deps: List[Dep] = Field(default_factory=list)
    symbols: List[Symbol] = Field(default_factory=list)
    refs: List[Ref] = Field(default_factory=list)
    type_relations: List[TypeRelation] = Field(default_factory=list)
    call_edges: List[CallEdge] = Field(default_factory=list)
    diagnostics: List[Diagnostic] = Field(default_factory=list)


class DeltaRemovals(_Model):
    units: List[str] = Field(default_factory=list)
    files: List[str] = Field(default_factory=list)
    deps: List[DepKey] = Field(default_factory=list)
    symbols: List[str] = Field(default_factory=list)
    refs: List[RefKey] = Field(default_factory=list)
    type_relations: List[TypeRelationKey] = Field(default_factory=list)
    call_edges: List[CallEdgeKey] = Field(default_factory=list)
    diagnostics: List[DiagnosticKey] = Field(default_factory=list)


class FactsDelta(_Model):
    """Additive/subtractive change-set.  Updates are remove-then-add."""

    added: DeltaAdditions = Field(default_factory=DeltaAdditions)
    removed: DeltaRemovals = Field(default_factory=DeltaRemovals)


# ---------------------------------------------------------------------------
# Fingerprint
# ---------------------------------------------------------------------------


class RepoState(_Model):
    commit: str
    working_tree_hash: Optional[str] = None


class Fingerprint(_Model):
    schema_version: int = SCHEMA_VERSION
    tools: Dict[str, str] = Field(default_factory=dict)
    build_profile: Dict[str, str] = Field(default_factory=dict)
    repo_state: RepoState
    created_at: str


# ---------------------------------------------------------------------------
# Insights (produced externally; stored and filtered only)
# ---------------------------------------------------------------------------


class InsightMeta(_Model):
    model: str
    confidence: float = Field(ge=0.0, le=1.0)
    generated_at: str


class IntentTag(_Model):
    target_id: str
    target_kind: str
    intent: str
    reasoning: Optional[str] = None
    meta: InsightMeta


class Summary(_Model):
    target_id: str
    target_kind: str
    text: str
    meta: InsightMeta


class BugSmell(_Model):
    file_id: str
    position: Position
    smell: str
    message: str
    severity: str
    meta: InsightMeta


class PatternTag(_Model):
    target_id: str
    target_kind: str
    pattern: str
    participants: List[str] = Field(default_factory=list)
    meta: InsightMeta


class NamingIssue(_Model):
    symbol_id: str
    issue: str
    current_name: str
    suggestion: Optional[str] = None
    message: str
    meta: InsightMeta


class Insights(_Model):
    schema_version: int = SCHEMA_VERSION
    snapshot: Snapshot
    intent_tags: List[IntentTag] = Field(default_factory=list)
    summaries: List[Summary] = Field(default_factory=list)
    bug_smells: List[BugSmell] = Field(default_factory=list)
    pattern_tags: List[PatternTag] = Field(default_factory=list)
    naming_issues: List[NamingIssue] = Field(default_factory=list)
