from __future__ import annotations

import asyncio
import logging
import platform
import shutil
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from .schema import SCHEMA_VERSION, Fingerprint, RepoState, utc_now


DEFAULT_TOOLS: Dict[str, List[str]] = {
    "bun": ["bun", "--version"],
    "go": ["go", "version"],
    "node": ["node", "--version"],
}

MISSING = "(missing)"


@dataclass
class CompareResult:
    match: bool
    diffs: List[str] = field(default_factory=list)


async def exec_capture(cmd: Sequence[str], *, cwd: Optional[str] = None, timeout_s: float = 10.0) -> Optional[str]:
    """Run *cmd* and return its stripped stdout, or None on any failure."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
        )
    except (FileNotFoundError, PermissionError, NotADirectoryError):
        return None
    except OSError:
        logging.debug("Failed to spawn %s", cmd[0], exc_info=True)
        return None
    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
    except asyncio.TimeoutError:
        logging.warning("Timed out after %ss running %s", timeout_s, " ".join(cmd))
        proc.kill()
        await proc.wait()
        return None
    if proc.returncode != 0:
        return None
    return stdout.decode("utf-8", errors="replace").strip()


async def probe_tools(tools: Mapping[str, Sequence[str]], *, timeout_s: float = 10.0) -> Dict[str, str]:
    """Probe every tool concurrently; tools that fail to answer are omitted."""
    names = list(tools)
    versions = await asyncio.gather(
        *(exec_capture(tools[name], timeout_s=timeout_s) for name in names)
    )
    out: Dict[str, str] = {}
    for name, version in zip(names, versions):
        if version:
            out[name] = version
        else:
            logging.debug("Tool %s not available; omitted from fingerprint", name)
    return out


async def read_commit(repo_root: str | Path, *, timeout_s: float = 10.0) -> str:
    commit = await exec_capture(
        ["git", "-C", str(repo_root), "rev-parse", "HEAD"],
        timeout_s=timeout_s,
    )
    return commit or "unknown"


def host_profile() -> Dict[str, str]:
    return {"os": sys.platform, "arch": platform.machine().lower() or "unknown"}


async def generate_fingerprint(
    repo_root: str | Path,
    *,
    profile: Optional[Mapping[str, str]] = None,
    tools: Optional[Mapping[str, Sequence[str]]] = None,
    timeout_s: float = 10.0,
) -> Fingerprint:
    """Snapshot toolchain versions, build profile and commit for *repo_root*.

    Caller-supplied *profile* entries override the host ``os``/``arch`` keys.
    """
    tool_versions, commit = await asyncio.gather(
        probe_tools(DEFAULT_TOOLS if tools is None else tools, timeout_s=timeout_s),
        read_commit(repo_root, timeout_s=timeout_s),
    )
    build_profile = host_profile()
    build_profile.update(profile or {})
    return Fingerprint(
        schema_version=SCHEMA_VERSION,
        tools=tool_versions,
        build_profile=build_profile,
        repo_state=RepoState(commit=commit),
        created_at=utc_now(),
    )


def _diff_maps(prefix: str, current: Mapping[str, str], cached: Mapping[str, str]) -> List[str]:
    diffs: List[str] = []
    for key in dict.fromkeys([*current, *cached]):
        cur = current.get(key)
        cac = cached.get(key)
        if cur != cac:
            diffs.append(
                f"{prefix}.{key}: {MISSING if cac is None else cac} → {MISSING if cur is None else cur}"
            )
    return diffs


def compare_fingerprint(current: Fingerprint, cached: Fingerprint) -> CompareResult:
    """Compare *current* against *cached*; messages read ``cached → current``.

    The repo commit is not part of the comparison.
    """
    diffs: List[str] = []
    if current.schema_version != cached.schema_version:
        diffs.append(f"schema_version: {cached.schema_version} → {current.schema_version}")
    diffs.extend(_diff_maps("tools", current.tools, cached.tools))
    diffs.extend(_diff_maps("build_profile", current.build_profile, cached.build_profile))
    return CompareResult(match=not diffs, diffs=diffs)


def _wipe(cache_dir: Path) -> None:
    shutil.rmtree(cache_dir, ignore_errors=True)


async def wipe_cache(cache_dir: str | Path) -> None:
    logging.info("Wiping facts cache at %s", cache_dir)
    await asyncio.to_thread(_wipe, Path(cache_dir))
