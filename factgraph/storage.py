from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .schema import COLLECTIONS, Facts, Fingerprint, Insights


FACTS_FILE = "facts.json"
FACTS_SPLIT_DIR = "facts"
META_FILE = "meta.json"
FINGERPRINT_FILE = "fingerprint.json"
INSIGHTS_FILE = "insights.json"
INDEX_DIR = "index"

ENCODING_JSON = "json"
ENCODING_JSONL = "jsonl"

M = TypeVar("M", bound=BaseModel)


class CorruptCacheError(ValueError):
    """Raised when a cache document exists but cannot be decoded."""


# ---------------------------------------------------------------------------
# Low-level file helpers (blocking; call through asyncio.to_thread)
# ---------------------------------------------------------------------------


def write_text_atomic(path: str | Path, text: str, *, encoding: str = "utf-8") -> None:
    """Replace *path* with *text* via a temp file in the same directory."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(dir=target.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(text.encode(encoding))
        os.replace(temp_path, target)
    finally:
        if os.path.exists(temp_path):
            try:
                os.unlink(temp_path)
            except OSError:
                logging.debug("Failed to cleanup temp file %s", temp_path, exc_info=True)


def dump_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def read_json_file(path: str | Path) -> Optional[Any]:
    """Parsed JSON at *path*, or None when the file does not exist."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise CorruptCacheError(f"Invalid JSON in {path}: {exc}") from exc


def _read_jsonl_file(path: Path) -> List[Any]:
    rows: List[Any] = []
    try:
        with open(path, "r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    rows.append(json.loads(line))
                except json.JSONDecodeError as exc:
                    raise CorruptCacheError(f"Invalid JSON in {path} line {lineno}: {exc}") from exc
    except FileNotFoundError:
        return []
    return rows


def _validate(model: Type[M], data: Any, source: str | Path) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise CorruptCacheError(f"Invalid {model.__name__} document in {source}: {exc}") from exc


def _dump_model(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json", exclude_none=True)


def _remove_path(path: Path) -> None:
    if path.is_dir():
        shutil.rmtree(path, ignore_errors=True)
    elif path.exists():
        path.unlink()


# ---------------------------------------------------------------------------
# Facts
# ---------------------------------------------------------------------------


def detect_encoding(cache_dir: str | Path) -> Optional[str]:
    """Which facts encoding is present in *cache_dir*; split wins over single."""
    root = Path(cache_dir)
    if (root / FACTS_SPLIT_DIR / META_FILE).is_file():
        return ENCODING_JSONL
    if (root / FACTS_FILE).is_file():
        return ENCODING_JSON
    return None


def _read_split(split_dir: Path) -> Facts:
    meta = read_json_file(split_dir / META_FILE)
    if not isinstance(meta, dict):
        raise CorruptCacheError(f"Invalid facts metadata in {split_dir / META_FILE}")
    data = dict(meta)
    for name in COLLECTIONS:
        data[name] = _read_jsonl_file(split_dir / f"{name}.jsonl")
    return _validate(Facts, data, split_dir)


def _read_facts_sync(cache_dir: Path) -> Optional[Facts]:
    encoding = detect_encoding(cache_dir)
    if encoding == ENCODING_JSONL:
        return _read_split(cache_dir / FACTS_SPLIT_DIR)
    if encoding == ENCODING_JSON:
        path = cache_dir / FACTS_FILE
        return _validate(Facts, read_json_file(path), path)
    return None


async def read_facts(cache_dir: str | Path) -> Optional[Facts]:
    """Load Facts from either encoding; None when no facts are cached."""
    return await asyncio.to_thread(_read_facts_sync, Path(cache_dir))


def _write_shard(path: Path, rows: List[BaseModel]) -> None:
    text = "".join(
        json.dumps(_dump_model(row), ensure_ascii=False, separators=(",", ":")) + "\n"
        for row in rows
    )
    write_text_atomic(path, text)


async def write_facts(
    cache_dir: str | Path,
    facts: Facts,
    *,
    encoding: str = ENCODING_JSON,
) -> None:
    """Persist *facts*, replacing whichever encoding was there before."""
    root = Path(cache_dir)
    await asyncio.to_thread(root.mkdir, parents=True, exist_ok=True)
    # Derived indexes describe the previous facts; drop them before replacing.
    await asyncio.to_thread(_remove_path, root / INDEX_DIR)

    if encoding == ENCODING_JSON:
        # The split marker shadows facts.json, so it goes first.
        await asyncio.to_thread(_remove_path, root / FACTS_SPLIT_DIR / META_FILE)
        await asyncio.to_thread(write_text_atomic, root / FACTS_FILE, dump_json(_dump_model(facts)))
        await asyncio.to_thread(_remove_path, root / FACTS_SPLIT_DIR)
        return
    if encoding != ENCODING_JSONL:
        raise ValueError(f"Unknown facts encoding: {encoding}")

    split_dir = root / FACTS_SPLIT_DIR
    await asyncio.to_thread(split_dir.mkdir, parents=True, exist_ok=True)
    # Drop the marker first so a crash mid-write reads as "absent", not as a
    # mix of old and new shards.
    await asyncio.to_thread(_remove_path, split_dir / META_FILE)
    await asyncio.gather(
        *(
            asyncio.to_thread(_write_shard, split_dir / f"{name}.jsonl", getattr(facts, name))
            for name in COLLECTIONS
        )
    )
    meta = _dump_model(facts)
    for name in COLLECTIONS:
        meta.pop(name, None)
    await asyncio.to_thread(write_text_atomic, split_dir / META_FILE, dump_json(meta))
    await asyncio.to_thread(_remove_path, root / FACTS_FILE)


# ---------------------------------------------------------------------------
# Fingerprint / insights
# ---------------------------------------------------------------------------


def _read_model_sync(path: Path, model: Type[M]) -> Optional[M]:
    data = read_json_file(path)
    if data is None:
        return None
    return _validate(model, data, path)


async def read_fingerprint(cache_dir: str | Path) -> Optional[Fingerprint]:
    return await asyncio.to_thread(_read_model_sync, Path(cache_dir) / FINGERPRINT_FILE, Fingerprint)


async def write_fingerprint(cache_dir: str | Path, fingerprint: Fingerprint) -> None:
    path = Path(cache_dir) / FINGERPRINT_FILE
    await asyncio.to_thread(write_text_atomic, path, dump_json(_dump_model(fingerprint)))


async def read_insights(cache_dir: str | Path) -> Optional[Insights]:
    return await asyncio.to_thread(_read_model_sync, Path(cache_dir) / INSIGHTS_FILE, Insights)


async def write_insights(cache_dir: str | Path, insights: Insights) -> None:
    path = Path(cache_dir) / INSIGHTS_FILE
    await asyncio.to_thread(write_text_atomic, path, dump_json(_dump_model(insights)))
