"""Derived lookup tables stored under ``<cache>/index/``.

Indexes are a performance aid only.  Every loader returns None when its
file is missing and callers fall back to scanning Facts.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Dict, List, Optional

from .schema import Facts, Ref
from .storage import INDEX_DIR, CorruptCacheError, dump_json, read_json_file, write_text_atomic


UNIT_BY_FILE = "unit_by_file.json"
SYMBOL_BY_NAME = "symbol_by_name.json"
REFS_BY_SYMBOL = "refs_by_symbol.json"


def index_dir(cache_dir: str | Path) -> Path:
    return Path(cache_dir) / INDEX_DIR


def compute_unit_by_file(facts: Facts) -> Dict[str, str]:
    return {f.id: f.unit_id for f in facts.files}


def compute_symbol_by_name(facts: Facts) -> Dict[str, List[str]]:
    out: Dict[str, List[str]] = {}
    for s in facts.symbols:
        out.setdefault(s.name, []).append(s.id)
    return out


def compute_refs_by_symbol(facts: Facts) -> Dict[str, List[Ref]]:
    out: Dict[str, List[Ref]] = {}
    for r in facts.refs:
        out.setdefault(r.to_symbol_id, []).append(r)
    return out


async def build_indexes(cache_dir: str | Path, facts: Facts) -> None:
    """Regenerate every derived index from *facts*."""
    target = index_dir(cache_dir)
    refs_by_symbol = {
        key: [r.model_dump(mode="json", exclude_none=True) for r in refs]
        for key, refs in compute_refs_by_symbol(facts).items()
    }
    await asyncio.gather(
        asyncio.to_thread(write_text_atomic, target / UNIT_BY_FILE, dump_json(compute_unit_by_file(facts))),
        asyncio.to_thread(write_text_atomic, target / SYMBOL_BY_NAME, dump_json(compute_symbol_by_name(facts))),
        asyncio.to_thread(write_text_atomic, target / REFS_BY_SYMBOL, dump_json(refs_by_symbol)),
    )
    logging.debug(
        "Built indexes in %s (%d files, %d symbol names)",
        target,
        len(facts.files),
        len({s.name for s in facts.symbols}),
    )


async def _load(cache_dir: str | Path, name: str) -> Optional[dict]:
    path = index_dir(cache_dir) / name
    data = await asyncio.to_thread(read_json_file, path)
    if data is None:
        return None
    if not isinstance(data, dict):
        raise CorruptCacheError(f"Index {path} is not a JSON object")
    return data


async def load_unit_by_file(cache_dir: str | Path) -> Optional[Dict[str, str]]:
    return await _load(cache_dir, UNIT_BY_FILE)


async def load_symbol_by_name(cache_dir: str | Path) -> Optional[Dict[str, List[str]]]:
    return await _load(cache_dir, SYMBOL_BY_NAME)


async def load_refs_by_symbol(cache_dir: str | Path) -> Optional[Dict[str, List[Ref]]]:
    data = await _load(cache_dir, REFS_BY_SYMBOL)
    if data is None:
        return None
    return {key: [Ref.model_validate(r) for r in refs] for key, refs in data.items()}


async def remove_indexes(cache_dir: str | Path) -> None:
    """Delete derived indexes so a stale table is never consulted."""
    target = index_dir(cache_dir)
    await asyncio.to_thread(shutil.rmtree, target, ignore_errors=True)
