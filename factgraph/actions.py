from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from .adapters import ActionResult, AdapterRegistry, Scope


ACTIONS = ("format", "check", "test")


@dataclass
class LangActionResult:
    lang: str
    action: str
    result: ActionResult


@dataclass
class ActionRunResult:
    ok: bool
    results: List[LangActionResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


async def run_action(
    registry: AdapterRegistry,
    repo_root: str,
    action: str,
    scope: Scope = Scope(),
    profile: Optional[Mapping[str, str]] = None,
) -> ActionRunResult:
    """Run *action* for every detected language that has an action adapter."""
    if action not in ACTIONS:
        raise ValueError(f"Unknown action: {action}. Expected one of {', '.join(ACTIONS)}.")
    profile = dict(profile or {})
    results: List[LangActionResult] = []
    errors: List[str] = []

    for detected in await registry.detect_all(repo_root):
        adapter = registry.get_action_adapter(detected.lang)
        if adapter is None:
            continue
        try:
            result = await getattr(adapter, action)(scope, profile)
        except Exception as exc:
            logging.warning("%s: %s failed", detected.lang, action, exc_info=True)
            errors.append(f"{detected.lang}: {action} failed: {exc}")
            continue
        results.append(LangActionResult(lang=detected.lang, action=action, result=result))

    ok = not errors and all(r.result.ok for r in results)
    return ActionRunResult(ok=ok, results=results, errors=errors)
