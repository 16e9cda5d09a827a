"""Delta merge and impact analysis over a Facts graph.

Removals are applied strictly before additions and cascade in dependency
order: units -> files/symbols -> deps/refs/type relations/call edges ->
diagnostics.  No surviving edge ever references a removed node, and a delta
that removes and re-adds the same id replaces it.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Set, Tuple

from .schema import Facts, FactsDelta, Position, file_id_for, utc_now


def _position_key(position: Position) -> Tuple[int, int]:
    return (position.line, position.column)


def apply_delta(facts: Facts, delta: FactsDelta) -> Facts:
    """Return a new Facts with *delta* merged in.  *facts* is not modified.

    The snapshot timestamp is refreshed on every call, including for an
    empty delta.
    """
    result = facts.model_copy(deep=True)
    removed = delta.removed
    added = delta.added.model_copy(deep=True)

    removed_unit_ids = set(removed.units)
    if removed_unit_ids:
        result.units = [u for u in result.units if u.id not in removed_unit_ids]

    removed_file_ids = set(removed.files)
    if removed_file_ids or removed_unit_ids:
        result.files = [
            f
            for f in result.files
            if f.id not in removed_file_ids and f.unit_id not in removed_unit_ids
        ]
    surviving_file_ids = {f.id for f in result.files}

    removed_symbol_ids = set(removed.symbols)
    if removed_symbol_ids or removed_unit_ids:
        result.symbols = [
            s
            for s in result.symbols
            if s.id not in removed_symbol_ids and s.unit_id not in removed_unit_ids
        ]
    surviving_symbol_ids = {s.id for s in result.symbols}

    dep_keys = {(k.from_unit_id, k.to_unit_id) for k in removed.deps}
    result.deps = [
        d
        for d in result.deps
        if d.from_unit_id not in removed_unit_ids
        and d.to_unit_id not in removed_unit_ids
        and (d.from_unit_id, d.to_unit_id) not in dep_keys
    ]

    ref_keys = {(k.from_symbol_id, k.to_symbol_id) for k in removed.refs}
    result.refs = [
        r
        for r in result.refs
        if _both_alive(r.from_symbol_id, r.to_symbol_id, surviving_symbol_ids)
        and (r.from_symbol_id, r.to_symbol_id) not in ref_keys
    ]

    rel_keys = {(k.from_type_id, k.to_type_id) for k in removed.type_relations}
    result.type_relations = [
        r
        for r in result.type_relations
        if _both_alive(r.from_type_id, r.to_type_id, surviving_symbol_ids)
        and (r.from_type_id, r.to_type_id) not in rel_keys
    ]

    call_keys = {(k.caller_id, k.callee_id) for k in removed.call_edges}
    result.call_edges = [
        e
        for e in result.call_edges
        if _both_alive(e.caller_id, e.callee_id, surviving_symbol_ids)
        and (e.caller_id, e.callee_id) not in call_keys
    ]

    # (file_id, line, column, message); diagnostics differing only in
    # message are distinct keys.
    diag_keys = {
        (k.file_id, *_position_key(k.position), k.message) for k in removed.diagnostics
    }
    result.diagnostics = [
        d
        for d in result.diagnostics
        if d.file_id in surviving_file_ids
        and (d.file_id, *_position_key(d.position), d.message) not in diag_keys
    ]

    result.units.extend(added.units)
    result.files.extend(added.files)
    result.deps.extend(added.deps)
    result.symbols.extend(added.symbols)
    result.refs.extend(added.refs)
    result.type_relations.extend(added.type_relations)
    result.call_edges.extend(added.call_edges)
    result.diagnostics.extend(added.diagnostics)

    result.snapshot.created_at = utc_now()
    return result


def _both_alive(a: str, b: str, alive: Set[str]) -> bool:
    return a in alive and b in alive


def impact_units(changed_files: Iterable[str], facts: Facts) -> List[str]:
    """Distinct unit ids owning any of *changed_files*, in first-seen order.

    Entries may be bare paths (``a/x.go``) or file ids (``file:a/x.go``).
    """
    wanted_ids: Set[str] = set()
    wanted_paths: Set[str] = set()
    for entry in changed_files:
        wanted_ids.add(file_id_for(entry))
        wanted_paths.add(entry[len("file:"):] if entry.startswith("file:") else entry)

    affected: Dict[str, None] = {}
    for f in facts.files:
        if f.id in wanted_ids or f.path in wanted_paths:
            affected.setdefault(f.unit_id, None)
    return list(affected)
