from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from .adapters import AdapterRegistry, LanguageAdapter
from .config import FactgraphConfig
from .diff import apply_delta, impact_units
from .fingerprint import compare_fingerprint, generate_fingerprint, wipe_cache
from .indexes import build_indexes, remove_indexes
from .schema import DeltaAdditions, DeltaRemovals, Facts, FactsDelta, Fingerprint, Unit, unit_language
from .storage import CorruptCacheError, read_facts, read_fingerprint, write_facts, write_fingerprint


@dataclass
class IndexResult:
    ok: bool
    facts: Facts
    fingerprint: Fingerprint
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class UpdateResult:
    ok: bool
    facts: Facts
    affected_units: List[str]
    fallback_to_index: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def _lang_prefix(lang: str) -> str:
    return f"unit:{lang}:"


@dataclass
class Indexer:
    """Drives language adapters and keeps the cached facts graph current."""

    cfg: FactgraphConfig
    registry: AdapterRegistry

    def cache_dir(self, repo_root: str | Path) -> Path:
        return self.cfg.cache_path(repo_root)

    def _profile(self, profile: Optional[Mapping[str, str]]) -> Dict[str, str]:
        merged = dict(self.cfg.build_profile)
        merged.update(profile or {})
        return merged

    async def _fingerprint(self, repo_root: str | Path, profile: Mapping[str, str]) -> Fingerprint:
        return await generate_fingerprint(
            repo_root,
            profile=profile,
            tools=self.cfg.tools,
            timeout_s=self.cfg.probe_timeout_s,
        )

    async def _refresh_indexes(self, cache_dir: Path, facts: Facts) -> None:
        if self.cfg.build_indexes:
            await build_indexes(cache_dir, facts)
        else:
            await remove_indexes(cache_dir)

    # ------------------------------------------------------------------
    # Full index
    # ------------------------------------------------------------------

    async def index_facts(
        self,
        repo_root: str | Path,
        profile: Optional[Mapping[str, str]] = None,
    ) -> IndexResult:
        """Index every unit of every detected language from scratch."""
        cache_dir = self.cache_dir(repo_root)
        merged_profile = self._profile(profile)
        warnings: List[str] = []

        fingerprint = await self._fingerprint(repo_root, merged_profile)
        try:
            cached_fp = await read_fingerprint(cache_dir)
        except CorruptCacheError as exc:
            logging.warning("Cached fingerprint unreadable: %s", exc)
            warnings.append(f"Cached fingerprint unreadable, wiping cache: {exc}")
            await wipe_cache(cache_dir)
            cached_fp = None
        if cached_fp is not None:
            cmp = compare_fingerprint(fingerprint, cached_fp)
            if not cmp.match:
                logging.warning("Fingerprint mismatch: %s", "; ".join(cmp.diffs))
                warnings.append(f"Fingerprint mismatch, wiping cache: {', '.join(cmp.diffs)}")
                await wipe_cache(cache_dir)

        return await self._full_index(repo_root, merged_profile, fingerprint, warnings)

    async def _full_index(
        self,
        repo_root: str | Path,
        profile: Dict[str, str],
        fingerprint: Fingerprint,
        warnings: List[str],
    ) -> IndexResult:
        start = time.time()
        cache_dir = self.cache_dir(repo_root)
        root = str(repo_root)
        errors: List[str] = []

        detected = await self.registry.detect_all(root)
        if not detected:
            warnings.append("No supported languages detected")

        active = await self._active_adapters([d.lang for d in detected], warnings)

        async def _enumerate(adapter: LanguageAdapter) -> List[Unit]:
            try:
                return await adapter.enumerate_units(root, profile)
            except Exception as exc:
                logging.warning("%s: enumerate_units failed", adapter.lang, exc_info=True)
                errors.append(f"{adapter.lang}: enumerate_units failed: {exc}")
                return []

        enumerated = await asyncio.gather(*(_enumerate(a) for a in active))

        facts = Facts.empty(commit=fingerprint.repo_state.commit)
        for adapter, units in zip(active, enumerated):
            lang_units = [u for u in units if u.id.startswith(_lang_prefix(adapter.lang))]
            if not lang_units:
                continue
            try:
                delta = await adapter.index_units(lang_units, profile)
            except Exception as exc:
                logging.warning("%s: index_units failed", adapter.lang, exc_info=True)
                errors.append(f"{adapter.lang}: index_units failed: {exc}")
                continue
            facts = apply_delta(facts, delta)

        for adapter in active:
            lang_units = [u for u in facts.units if u.id.startswith(_lang_prefix(adapter.lang))]
            facts = await self._diagnose(adapter, lang_units, profile, facts, errors)

        await write_facts(cache_dir, facts, encoding=self.cfg.storage_format)
        await write_fingerprint(cache_dir, fingerprint)
        await self._refresh_indexes(cache_dir, facts)

        logging.info(
            "index_facts: %d units, %d files, %d symbols in %dms (%d errors)",
            len(facts.units),
            len(facts.files),
            len(facts.symbols),
            int((time.time() - start) * 1000),
            len(errors),
        )
        return IndexResult(
            ok=not errors,
            facts=facts,
            fingerprint=fingerprint,
            errors=errors,
            warnings=warnings,
        )

    async def _active_adapters(self, langs: Sequence[str], warnings: List[str]) -> List[LanguageAdapter]:
        adapters = [self.registry.get_language_adapter(lang) for lang in langs]
        adapters = [a for a in adapters if a is not None]
        reports = await asyncio.gather(*(a.doctor() for a in adapters), return_exceptions=True)
        active: List[LanguageAdapter] = []
        for adapter, report in zip(adapters, reports):
            if isinstance(report, BaseException):
                logging.warning("%s: doctor failed: %s", adapter.lang, report)
                warnings.append(f"Skipping {adapter.lang}: doctor failed: {report}")
                continue
            if not report.ok:
                warnings.append(f"Skipping {adapter.lang}: missing tools [{', '.join(report.missing_tools)}]")
                continue
            active.append(adapter)
        return active

    async def _diagnose(
        self,
        adapter: LanguageAdapter,
        units: List[Unit],
        profile: Mapping[str, str],
        facts: Facts,
        errors: List[str],
    ) -> Facts:
        if not units:
            return facts
        try:
            diagnostics = await adapter.diagnose(units, profile)
        except Exception as exc:
            logging.warning("%s: diagnose failed", adapter.lang, exc_info=True)
            errors.append(f"{adapter.lang}: diagnose failed: {exc}")
            return facts
        if not diagnostics:
            return facts
        return apply_delta(facts, FactsDelta(added=DeltaAdditions(diagnostics=diagnostics)))

    # ------------------------------------------------------------------
    # Incremental update
    # ------------------------------------------------------------------

    async def update_facts(
        self,
        repo_root: str | Path,
        changed_files: Sequence[str],
        profile: Optional[Mapping[str, str]] = None,
    ) -> UpdateResult:
        """Re-index only the units owning *changed_files*.

        Falls back to a full index after wiping the cache when no usable
        fingerprint or facts are cached, or when the fingerprint changed.
        """
        cache_dir = self.cache_dir(repo_root)
        merged_profile = self._profile(profile)
        errors: List[str] = []
        warnings: List[str] = []

        fingerprint = await self._fingerprint(repo_root, merged_profile)
        reason: Optional[str] = None
        existing: Optional[Facts] = None
        try:
            cached_fp = await read_fingerprint(cache_dir)
            if cached_fp is None:
                reason = "No cached fingerprint"
            else:
                cmp = compare_fingerprint(fingerprint, cached_fp)
                if not cmp.match:
                    reason = f"Fingerprint mismatch ({', '.join(cmp.diffs)})"
            if reason is None:
                existing = await read_facts(cache_dir)
                if existing is None:
                    reason = "No cached facts found"
        except CorruptCacheError as exc:
            reason = f"Cache unreadable ({exc})"

        if reason is not None or existing is None:
            logging.warning("%s; falling back to full index", reason)
            warnings.append(f"{reason}, falling back to full index")
            await wipe_cache(cache_dir)
            result = await self._full_index(repo_root, merged_profile, fingerprint, warnings)
            return UpdateResult(
                ok=result.ok,
                facts=result.facts,
                affected_units=[u.id for u in result.facts.units],
                fallback_to_index=True,
                errors=result.errors,
                warnings=result.warnings,
            )

        affected = impact_units(changed_files, existing)
        if not affected:
            warnings.append("No units affected by changed files")
            return UpdateResult(
                ok=True,
                facts=existing,
                affected_units=[],
                fallback_to_index=False,
                errors=errors,
                warnings=warnings,
            )

        affected_set = set(affected)
        units_by_lang: Dict[str, List[Unit]] = {}
        for unit in existing.units:
            if unit.id not in affected_set:
                continue
            lang = unit_language(unit.id)
            if lang is None:
                errors.append(f"Cannot determine language of unit: {unit.id}")
                continue
            units_by_lang.setdefault(lang, []).append(unit)

        facts = apply_delta(existing, FactsDelta(removed=DeltaRemovals(units=affected)))

        for lang, lang_units in units_by_lang.items():
            adapter = self.registry.get_language_adapter(lang)
            if adapter is None:
                errors.append(f"No adapter for language: {lang}")
                continue
            try:
                delta = await adapter.index_units(lang_units, merged_profile)
            except Exception as exc:
                logging.warning("%s: index_units failed", lang, exc_info=True)
                errors.append(f"{lang}: index_units failed: {exc}")
                continue
            facts = apply_delta(facts, delta)

        for lang, lang_units in units_by_lang.items():
            adapter = self.registry.get_language_adapter(lang)
            if adapter is None:
                continue
            wanted = {u.id for u in lang_units}
            fresh_units = [u for u in facts.units if u.id in wanted]
            facts = await self._diagnose(adapter, fresh_units, merged_profile, facts, errors)

        await write_facts(cache_dir, facts, encoding=self.cfg.storage_format)
        await self._refresh_indexes(cache_dir, facts)

        logging.info(
            "update_facts: %d changed files -> %d units re-indexed (%d errors)",
            len(changed_files),
            len(affected),
            len(errors),
        )
        return UpdateResult(
            ok=not errors,
            facts=facts,
            affected_units=affected,
            fallback_to_index=False,
            errors=errors,
            warnings=warnings,
        )
