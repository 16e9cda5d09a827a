from factgraph.diff import apply_delta, impact_units
from factgraph.schema import (
    CallEdgeKey,
    DeltaAdditions,
    DeltaRemovals,
    DepKey,
    DiagnosticKey,
    Facts,
    FactsDelta,
    Position,
    RefKey,
    TypeRelationKey,
)

from conftest import make_diag, make_file, make_unit


def test_adds_units_files_deps():
    facts = Facts.empty("abc123")
    unit = make_unit("pkg")
    delta = FactsDelta(
        added=DeltaAdditions(
            units=[unit],
            files=[make_file("pkg/main.go", unit.id)],
        )
    )
    result = apply_delta(facts, delta)
    assert [u.id for u in result.units] == ["unit:go:pkg"]
    assert len(result.files) == 1
    assert facts.units == []


def test_empty_delta_only_refreshes_timestamp(sample_facts):
    result = apply_delta(sample_facts, FactsDelta())
    assert result.snapshot.created_at != sample_facts.snapshot.created_at
    assert result.snapshot.commit == sample_facts.snapshot.commit
    assert result.model_dump(exclude={"snapshot"}) == sample_facts.model_dump(exclude={"snapshot"})
    assert result is not sample_facts
    assert result.units is not sample_facts.units


def test_input_is_not_mutated(sample_facts):
    before = sample_facts.model_dump()
    apply_delta(
        sample_facts,
        FactsDelta(
            added=DeltaAdditions(units=[make_unit("extra")]),
            removed=DeltaRemovals(units=["unit:go:pkg"]),
        ),
    )
    assert sample_facts.model_dump() == before


def test_unit_removal_cascades_everything(sample_facts):
    result = apply_delta(sample_facts, FactsDelta(removed=DeltaRemovals(units=["unit:go:pkg"])))

    assert [u.id for u in result.units] == ["unit:go:."]
    assert [f.id for f in result.files] == ["file:main.go"]
    assert all(s.unit_id != "unit:go:pkg" for s in result.symbols)
    assert result.deps == []
    assert result.refs == []
    assert result.call_edges == []
    # Impl -> Libber: the interface lived in pkg
    assert result.type_relations == []
    assert [d.file_id for d in result.diagnostics] == ["file:main.go"]


def test_removing_root_unit_keeps_dependency_intact(sample_facts):
    result = apply_delta(sample_facts, FactsDelta(removed=DeltaRemovals(units=["unit:go:."])))

    assert [u.id for u in result.units] == ["unit:go:pkg"]
    assert [f.id for f in result.files] == ["file:pkg/lib.go"]
    assert result.files[0].hash == "sha256:lib"
    assert result.deps == []
    assert {s.id for s in result.symbols} == {"sym:go:pkg#Lib", "sym:go:pkg#Libber"}


def test_explicit_file_removal_drops_its_diagnostics(sample_facts):
    result = apply_delta(sample_facts, FactsDelta(removed=DeltaRemovals(files=["file:main.go"])))
    assert [f.id for f in result.files] == ["file:pkg/lib.go"]
    assert [d.file_id for d in result.diagnostics] == ["file:pkg/lib.go"]
    assert len(result.units) == 2


def test_diagnostic_removed_by_composite_key():
    unit = make_unit("pkg")
    facts = Facts.empty()
    facts.units.append(unit)
    facts.files.append(make_file("pkg/lib.go", unit.id))
    facts.diagnostics.extend(
        [
            make_diag("file:pkg/lib.go", 5, 1, "unused var"),
            make_diag("file:pkg/lib.go", 9, 3, "unused var"),
            make_diag("file:pkg/lib.go", 5, 1, "shadowed err"),
        ]
    )
    delta = FactsDelta(
        removed=DeltaRemovals(
            diagnostics=[
                DiagnosticKey(
                    file_id="file:pkg/lib.go",
                    position=Position(line=5, column=1),
                    message="unused var",
                )
            ]
        )
    )
    result = apply_delta(facts, delta)
    remaining = [(d.position.line, d.message) for d in result.diagnostics]
    assert remaining == [(9, "unused var"), (5, "shadowed err")]


def test_edges_removed_by_composite_key(sample_facts):
    delta = FactsDelta(
        removed=DeltaRemovals(
            deps=[DepKey(from_unit_id="unit:go:.", to_unit_id="unit:go:pkg")],
            refs=[RefKey(from_symbol_id="sym:go:main#main", to_symbol_id="sym:go:pkg#Lib")],
            type_relations=[TypeRelationKey(from_type_id="sym:go:main#Impl", to_type_id="sym:go:pkg#Libber")],
            call_edges=[CallEdgeKey(caller_id="sym:go:main#main", callee_id="sym:go:pkg#Lib")],
        )
    )
    result = apply_delta(sample_facts, delta)
    assert result.deps == []
    assert result.refs == []
    assert result.type_relations == []
    assert result.call_edges == []
    assert len(result.units) == 2
    assert len(result.symbols) == 4


def test_symbol_removal_cascades_to_edges(sample_facts):
    result = apply_delta(sample_facts, FactsDelta(removed=DeltaRemovals(symbols=["sym:go:pkg#Lib"])))
    assert result.refs == []
    assert result.call_edges == []
    assert len(result.type_relations) == 1
    assert len(result.deps) == 1


def test_remove_then_add_same_id_replaces(sample_facts):
    new_pkg = make_unit("pkg").model_copy(update={"name": "pkg2"})
    delta = FactsDelta(
        added=DeltaAdditions(
            units=[new_pkg],
            files=[make_file("pkg/lib.go", new_pkg.id, "sha256:new")],
        ),
        removed=DeltaRemovals(units=["unit:go:pkg"]),
    )
    result = apply_delta(sample_facts, delta)
    assert [u.id for u in result.units] == ["unit:go:.", "unit:go:pkg"]
    assert result.units[-1].name == "pkg2"
    assert [f.hash for f in result.files] == ["sha256:main", "sha256:new"]


def test_additions_land_after_survivors(sample_facts):
    extra = make_diag("file:main.go", 1, 1, "new finding")
    result = apply_delta(sample_facts, FactsDelta(added=DeltaAdditions(diagnostics=[extra])))
    assert result.diagnostics[-1] == extra
    assert result.diagnostics[:-1] == sample_facts.diagnostics


def test_impact_units_bare_and_prefixed(sample_facts):
    assert impact_units(["pkg/lib.go"], sample_facts) == ["unit:go:pkg"]
    assert impact_units(["file:pkg/lib.go"], sample_facts) == ["unit:go:pkg"]
    assert impact_units(["main.go", "pkg/lib.go", "main.go"], sample_facts) == ["unit:go:.", "unit:go:pkg"]


def test_impact_units_no_match(sample_facts):
    assert impact_units(["a/x.go"], sample_facts) == []
    assert impact_units([], sample_facts) == []
