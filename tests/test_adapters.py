import asyncio

import pytest

from factgraph.actions import run_action
from factgraph.adapters import ActionResult, AdapterRegistry, DetectResult, LanguageAdapter, Scope

from conftest import FakeAdapter


class _Undetected(FakeAdapter):
    async def detect(self, repo_root):
        return DetectResult(supported=False)


class _LowConfidence(FakeAdapter):
    async def detect(self, repo_root):
        return DetectResult(supported=True, confidence=0.2)


class _FakeActions:
    def __init__(self, lang: str, ok: bool = True, explode: bool = False) -> None:
        self.lang = lang
        self.ok = ok
        self.explode = explode
        self.calls = []
        self.scopes = []

    async def _run(self, name, scope):
        self.calls.append((name, scope.kind))
        self.scopes.append(scope)
        if self.explode:
            raise RuntimeError("gofmt missing")
        return ActionResult(ok=self.ok, stdout=f"{name} done", exit_code=0 if self.ok else 1)

    async def format(self, scope, profile):
        return await self._run("format", scope)

    async def check(self, scope, profile):
        return await self._run("check", scope)

    async def test(self, scope, profile):
        return await self._run("test", scope)


def test_fake_adapter_satisfies_protocol():
    assert isinstance(FakeAdapter("go", [], []), LanguageAdapter)


def test_detect_all_orders_by_confidence():
    registry = AdapterRegistry()
    registry.register(_LowConfidence("py", [], []))
    registry.register(FakeAdapter("go", [], []))
    registry.register(_Undetected("rs", [], []))

    detected = asyncio.run(registry.detect_all("/repo"))
    assert [d.lang for d in detected] == ["go", "py"]
    assert registry.get_language_adapter("rs") is not None
    assert registry.get_language_adapter("java") is None
    assert len(registry.all()) == 3


def test_run_action_per_language():
    registry = AdapterRegistry()
    go_actions = _FakeActions("go")
    registry.register(FakeAdapter("go", [], []), go_actions)
    registry.register(_LowConfidence("py", [], []))

    result = asyncio.run(run_action(registry, "/repo", "check", Scope(kind="unit", unit_id="unit:go:.")))

    assert result.ok
    assert [(r.lang, r.action) for r in result.results] == [("go", "check")]
    assert go_actions.calls == [("check", "unit")]


def test_run_action_failures():
    registry = AdapterRegistry()
    registry.register(FakeAdapter("go", [], []), _FakeActions("go", ok=False))
    registry.register(_LowConfidence("py", [], []), _FakeActions("py", explode=True))

    result = asyncio.run(run_action(registry, "/repo", "test"))

    assert not result.ok
    assert result.errors == ["py: test failed: gofmt missing"]
    assert [r.result.exit_code for r in result.results] == [1]


def test_run_action_rejects_unknown_action():
    with pytest.raises(ValueError):
        asyncio.run(run_action(AdapterRegistry(), "/repo", "deploy"))


def test_run_action_forwards_file_scope():
    registry = AdapterRegistry()
    go_actions = _FakeActions("go")
    registry.register(FakeAdapter("go", [], []), go_actions)
    scope = Scope(kind="files", paths=("main.go", "pkg/lib.go"))

    result = asyncio.run(run_action(registry, "/repo", "format", scope))

    assert result.ok
    assert go_actions.calls == [("format", "files")]
    assert go_actions.scopes == [scope]
    assert go_actions.scopes[0].paths == ("main.go", "pkg/lib.go")
    assert go_actions.scopes[0].globs == ()
