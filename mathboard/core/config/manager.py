"""
Runtime tunables served from the YAML files in `config/`.

Every `*.yaml` / `*.yml` under the directory is deep-merged in sorted path
order into one tree; later files win key by key. Reads use dot paths
("rollover.cron", "rewards.monthly.1"); a numeric path segment also matches
an integer mapping key, which is how the reward table is keyed.

`set_override()` patches the in-memory tree for the rest of the process.
It is how operators flip a switch without a redeploy and how tests pin
values; nothing is written back to disk.
"""

from __future__ import annotations

import asyncio
import copy
import time
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, MutableMapping, Optional, Union

import yaml

from mathboard.core.config.config import Config
from mathboard.core.config.errors import ConfigInitializationError, ConfigValidationError
from mathboard.core.logging.logger import get_logger

logger = get_logger(__name__)

_MISSING = object()


def _merge(into: MutableMapping[Any, Any], layer: Mapping[Any, Any]) -> None:
    for key, value in layer.items():
        current = into.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            _merge(current, value)
        else:
            into[key] = copy.deepcopy(value)


def _yaml_files(config_dir: Path) -> Iterator[Path]:
    yield from sorted(p for p in config_dir.rglob("*") if p.suffix in (".yaml", ".yml") and p.is_file())


class ConfigManager:
    """Class-level singleton; `_bootstrap` runs lazily on first read."""

    _tree: Dict[Any, Any] = {}
    _files: List[str] = []
    _initialized: bool = False
    _config_dir: Path = Path(Config.CONFIG_DIR)
    _lock: asyncio.Lock = asyncio.Lock()

    _reads = 0
    _misses = 0
    _overrides = 0
    _read_time_ms = 0.0

    # ========================================================================
    # Loading
    # ========================================================================

    @classmethod
    async def initialize(cls, config_dir: Optional[Union[str, Path]] = None) -> None:
        async with cls._lock:
            if not cls._initialized:
                cls._bootstrap(config_dir)

    @classmethod
    def _bootstrap(cls, config_dir: Optional[Union[str, Path]] = None) -> None:
        """Rebuild the tree from disk. Raises ConfigInitializationError on unreadable YAML."""
        if config_dir is not None:
            cls._config_dir = Path(config_dir)

        tree: Dict[Any, Any] = {}
        files: List[str] = []
        if cls._config_dir.is_dir():
            for path in _yaml_files(cls._config_dir):
                name = str(path.relative_to(cls._config_dir))
                try:
                    document = yaml.safe_load(path.read_text(encoding="utf-8"))
                except (OSError, yaml.YAMLError) as exc:
                    logger.error("Unreadable config file", extra={"file": name, "error": str(exc)})
                    raise ConfigInitializationError(f"{path}: {exc}") from exc
                if document is None:
                    continue
                if not isinstance(document, dict):
                    logger.warning(f"Skipping {name}: top level is a {type(document).__name__}, not a mapping")
                    continue
                _merge(tree, document)
                files.append(name)
        else:
            logger.warning("Config directory missing; every read falls back to its default", extra={"config_dir": str(cls._config_dir)})

        cls._tree = tree
        cls._files = files
        cls._initialized = True
        logger.info("Tunables loaded", extra={"config_files": files, "sections": sorted(map(str, tree))})

    @classmethod
    async def shutdown(cls) -> None:
        cls.clear_cache()

    @classmethod
    def clear_cache(cls) -> None:
        """Forget the loaded tree and all overrides; the next read reloads from disk."""
        cls._tree = {}
        cls._files = []
        cls._initialized = False

    # ========================================================================
    # Reads
    # ========================================================================

    @classmethod
    def _lookup(cls, key: str) -> Any:
        node: Any = cls._tree
        for segment in key.split("."):
            if not isinstance(node, dict):
                return _MISSING
            if segment in node:
                node = node[segment]
            elif segment.lstrip("-").isdigit() and int(segment) in node:
                node = node[int(segment)]
            else:
                return _MISSING
        return node

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """Value at dot path `key`; `default` when absent or null."""
        if not cls._initialized:
            cls._bootstrap()

        started = time.perf_counter()
        value = cls._lookup(key)
        cls._reads += 1
        cls._read_time_ms += (time.perf_counter() - started) * 1000
        if value is _MISSING or value is None:
            cls._misses += 1
            return default
        return value

    @classmethod
    def get_int(cls, key: str, default: int) -> int:
        value = cls.get(key, default)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigValidationError(f"{key} must be an integer, got {value!r}")
        return value

    @classmethod
    def get_all_keys(cls) -> List[str]:
        return [str(key) for key in cls._tree]

    # ========================================================================
    # Overrides
    # ========================================================================

    @classmethod
    def set_override(cls, key: str, value: Any) -> None:
        if not cls._initialized:
            cls._bootstrap()

        *parents, leaf = key.split(".")
        node = cls._tree
        for segment in parents:
            child = node.get(segment)
            if not isinstance(child, dict):
                node[segment] = child = {}
            node = child
        node[leaf] = value
        cls._overrides += 1
        logger.info(f"Config override {key}", extra={"config_key": key})

    @classmethod
    def health_snapshot(cls) -> Dict[str, Any]:
        return {
            "initialized": cls._initialized,
            "config_dir": str(cls._config_dir),
            "config_files": list(cls._files),
            "reads": cls._reads,
            "misses": cls._misses,
            "overrides": cls._overrides,
            "avg_read_ms": round(cls._read_time_ms / cls._reads, 4) if cls._reads else 0.0,
        }


__all__ = ["ConfigManager"]
