from __future__ import annotations

from typing import List, Optional

import pytest

from factgraph.adapters import DetectResult, DoctorResult
from factgraph.schema import (
    CallEdge,
    DeltaAdditions,
    Dep,
    Diagnostic,
    Facts,
    FactsDelta,
    File,
    Position,
    Ref,
    Site,
    Snapshot,
    Symbol,
    TypeRelation,
    Unit,
)


def make_unit(path: str, lang: str = "go") -> Unit:
    name = "main" if path == "." else path.rsplit("/", 1)[-1]
    return Unit(id=f"unit:{lang}:{path}", kind=f"{lang}_package", name=name, path=path)


def make_file(path: str, unit_id: str, hash: str = "sha256:0") -> File:
    return File(id=f"file:{path}", path=path, unit_id=unit_id, hash=hash, generated=False)


def make_symbol(sym_id: str, unit_id: str, name: str, file_id: str, line: int = 1) -> Symbol:
    return Symbol(
        id=sym_id,
        unit_id=unit_id,
        name=name,
        kind="func",
        exported=True,
        decl=Site(file_id=file_id, position=Position(line=line, column=1)),
    )


def make_diag(file_id: str, line: int, column: int, message: str, severity: str = "warning") -> Diagnostic:
    return Diagnostic(
        file_id=file_id,
        position=Position(line=line, column=column),
        severity=severity,
        message=message,
        tool="go vet",
    )


def site(file_id: str, line: int = 1) -> Site:
    return Site(file_id=file_id, position=Position(line=line, column=1))


@pytest.fixture
def sample_facts() -> Facts:
    """Two Go units; the root unit imports pkg and calls into it."""
    root = make_unit(".")
    pkg = make_unit("pkg")
    main_sym = make_symbol("sym:go:main#main", root.id, "main", "file:main.go", line=3)
    lib_sym = make_symbol("sym:go:pkg#Lib", pkg.id, "Lib", "file:pkg/lib.go", line=5)
    iface = make_symbol("sym:go:pkg#Libber", pkg.id, "Libber", "file:pkg/lib.go", line=1)
    impl = make_symbol("sym:go:main#Impl", root.id, "Impl", "file:main.go", line=10)
    return Facts(
        schema_version=1,
        snapshot=Snapshot(commit="abc123", created_at="2026-01-01T00:00:00.000Z"),
        units=[root, pkg],
        files=[
            make_file("main.go", root.id, "sha256:main"),
            make_file("pkg/lib.go", pkg.id, "sha256:lib"),
        ],
        deps=[Dep(from_unit_id=root.id, to_unit_id=pkg.id, kind="import")],
        symbols=[main_sym, lib_sym, iface, impl],
        refs=[
            Ref(
                from_symbol_id=main_sym.id,
                to_symbol_id=lib_sym.id,
                site=site("file:main.go", 4),
                kind="call",
                confidence="certain",
            )
        ],
        type_relations=[TypeRelation(from_type_id=impl.id, to_type_id=iface.id, kind="implements")],
        call_edges=[
            CallEdge(caller_id=main_sym.id, callee_id=lib_sym.id, site=site("file:main.go", 4), kind="static")
        ],
        diagnostics=[
            make_diag("file:main.go", 7, 2, "unreachable code"),
            make_diag("file:pkg/lib.go", 5, 1, "unused var"),
        ],
    )


class FakeAdapter:
    """In-memory language adapter serving a fixed set of units and files."""

    def __init__(
        self,
        lang: str,
        units: List[Unit],
        files: List[File],
        deps: Optional[List[Dep]] = None,
        diagnostics: Optional[List[Diagnostic]] = None,
        *,
        doctor_ok: bool = True,
        fail_index: bool = False,
        fail_diagnose: bool = False,
    ) -> None:
        self.lang = lang
        self.units = units
        self.files = files
        self.deps = deps or []
        self.diagnostics = diagnostics or []
        self.doctor_ok = doctor_ok
        self.fail_index = fail_index
        self.fail_diagnose = fail_diagnose
        self.indexed: List[List[str]] = []
        self.diagnosed: List[List[str]] = []

    async def detect(self, repo_root: str) -> DetectResult:
        return DetectResult(supported=True, confidence=0.9)

    async def enumerate_units(self, repo_root, profile) -> List[Unit]:
        return list(self.units)

    async def index_units(self, units, profile) -> FactsDelta:
        self.indexed.append([u.id for u in units])
        if self.fail_index:
            raise RuntimeError("toolchain exploded")
        ids = {u.id for u in units}
        return FactsDelta(
            added=DeltaAdditions(
                units=[u for u in self.units if u.id in ids],
                files=[f for f in self.files if f.unit_id in ids],
                deps=[d for d in self.deps if d.from_unit_id in ids],
            )
        )

    async def diagnose(self, units, profile) -> List[Diagnostic]:
        self.diagnosed.append([u.id for u in units])
        if self.fail_diagnose:
            raise RuntimeError("vet crashed")
        file_ids = {f.id for f in self.files if f.unit_id in {u.id for u in units}}
        return [d for d in self.diagnostics if d.file_id in file_ids]

    async def doctor(self) -> DoctorResult:
        if self.doctor_ok:
            return DoctorResult(ok=True)
        return DoctorResult(ok=False, missing_tools=[self.lang], notes=["install it"])
