from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Mapping, Optional, Protocol, Tuple, runtime_checkable

from .schema import Diagnostic, FactsDelta, Unit


Profile = Mapping[str, str]
ScopeKind = Literal["repo", "unit", "files", "paths"]


@dataclass
class DetectResult:
    supported: bool
    confidence: float = 0.0  # 0..1


@dataclass
class DoctorResult:
    ok: bool
    missing_tools: List[str] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)


@dataclass
class DetectedLanguage:
    lang: str
    confidence: float


@dataclass
class ActionResult:
    ok: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0


@dataclass(frozen=True)
class Scope:
    """Target of an action.

    kind "repo" needs nothing else; "unit" uses unit_id; "files" uses paths;
    "paths" uses globs.
    """

    kind: ScopeKind = "repo"
    unit_id: Optional[str] = None
    paths: Tuple[str, ...] = ()
    globs: Tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Adapter protocols – one implementation per language, keyed by ``lang``.
# ---------------------------------------------------------------------------
@runtime_checkable
class LanguageAdapter(Protocol):
    """Produces Units and facts for one language.  Implemented externally."""

    lang: str

    async def detect(self, repo_root: str) -> DetectResult:
        ...

    async def enumerate_units(self, repo_root: str, profile: Profile) -> List[Unit]:
        ...

    async def index_units(self, units: List[Unit], profile: Profile) -> FactsDelta:
        ...

    async def diagnose(self, units: List[Unit], profile: Profile) -> List[Diagnostic]:
        ...

    async def doctor(self) -> DoctorResult:
        ...


@runtime_checkable
class ActionAdapter(Protocol):
    """Runs format / check / test for one language."""

    lang: str

    async def format(self, scope: Scope, profile: Profile) -> ActionResult:
        ...

    async def check(self, scope: Scope, profile: Profile) -> ActionResult:
        ...

    async def test(self, scope: Scope, profile: Profile) -> ActionResult:
        ...


class AdapterRegistry:
    def __init__(self) -> None:
        self._language_adapters: Dict[str, LanguageAdapter] = {}
        self._action_adapters: Dict[str, ActionAdapter] = {}

    def register(self, adapter: LanguageAdapter, action_adapter: Optional[ActionAdapter] = None) -> None:
        if adapter.lang in self._language_adapters:
            logging.warning("Replacing language adapter for %s", adapter.lang)
        self._language_adapters[adapter.lang] = adapter
        if action_adapter is not None:
            self._action_adapters[action_adapter.lang] = action_adapter

    async def detect_all(self, repo_root: str) -> List[DetectedLanguage]:
        """Supported languages for *repo_root*, highest confidence first."""
        adapters = list(self._language_adapters.values())
        results = await asyncio.gather(
            *(a.detect(repo_root) for a in adapters), return_exceptions=True
        )
        detected: List[DetectedLanguage] = []
        for adapter, result in zip(adapters, results):
            if isinstance(result, BaseException):
                logging.warning("%s: detect failed: %s", adapter.lang, result)
                continue
            if result.supported:
                detected.append(DetectedLanguage(lang=adapter.lang, confidence=result.confidence))
        detected.sort(key=lambda d: d.confidence, reverse=True)
        return detected

    def get_language_adapter(self, lang: str) -> Optional[LanguageAdapter]:
        return self._language_adapters.get(lang)

    def get_action_adapter(self, lang: str) -> Optional[ActionAdapter]:
        return self._action_adapters.get(lang)

    def all(self) -> List[LanguageAdapter]:
        return list(self._language_adapters.values())
