from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .fingerprint import DEFAULT_TOOLS
from .storage import ENCODING_JSON, ENCODING_JSONL


CONFIG_FILENAME = "factgraph.yaml"
CONFIG_ENV_VAR = "FACTGRAPH_CONFIG_PATH"


@dataclass
class FactgraphConfig:
    # Storage
    cache_dir: str = "cache"  # relative paths resolve against the repo root
    storage_format: str = ENCODING_JSON  # "json" | "jsonl"

    # Derived indexes
    build_indexes: bool = True
    use_indexes: bool = True

    # Fingerprint
    tools: Dict[str, List[str]] = field(default_factory=lambda: {k: list(v) for k, v in DEFAULT_TOOLS.items()})
    build_profile: Dict[str, str] = field(default_factory=dict)
    probe_timeout_s: float = 10.0

    def cache_path(self, repo_root: str | Path) -> Path:
        path = Path(self.cache_dir)
        if not path.is_absolute():
            path = Path(repo_root) / path
        return path


class AllowedConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    cache_dir: str = "cache"
    storage_format: str = ENCODING_JSON

    build_indexes: bool = True
    use_indexes: bool = True

    tools: Dict[str, List[str]] = {k: list(v) for k, v in DEFAULT_TOOLS.items()}
    build_profile: Dict[str, str] = {}
    probe_timeout_s: float = 10.0

    @field_validator("storage_format")
    @classmethod
    def validate_storage_format(cls, value: str) -> str:
        value = str(value).lower()
        if value not in (ENCODING_JSON, ENCODING_JSONL):
            raise ValueError(f"storage_format must be '{ENCODING_JSON}' or '{ENCODING_JSONL}'")
        return value

    @field_validator("tools")
    @classmethod
    def validate_tools(cls, value: Dict[str, List[str]]) -> Dict[str, List[str]]:
        for name, argv in value.items():
            if not argv:
                raise ValueError(f"tools.{name} must be a non-empty command")
        return value


def load_config(path: Optional[str] = None, *, repo_root: Optional[str] = None) -> FactgraphConfig:
    """Load config from YAML.

    Lookup order: *path*, $FACTGRAPH_CONFIG_PATH, then
    ``<repo_root or cwd>/factgraph.yaml``.  A missing file gives defaults.

    Example:

        cache_dir: .factgraph
        storage_format: jsonl
        build_profile:
          GOOS: linux
        tools:
          go: [go, version]
    """

    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR) or os.path.join(repo_root or os.getcwd(), CONFIG_FILENAME)

    if not os.path.isfile(path):
        logging.debug("No config at %s; using defaults", path)
        return FactgraphConfig()
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Invalid configuration: {path} must contain a mapping")
    try:
        validated = AllowedConfig.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc

    cfg = FactgraphConfig(**validated.model_dump())
    if cfg.probe_timeout_s <= 0:
        logging.warning("probe_timeout_s (%s) must be positive; using 10s.", cfg.probe_timeout_s)
        cfg.probe_timeout_s = 10.0
    return cfg
