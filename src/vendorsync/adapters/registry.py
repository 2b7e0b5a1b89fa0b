"""Normalization adapter registry with plugin discovery.

An explicit registry object is passed to the engine (no process-wide map), so
tests can build isolated registries.

Usage:
    registry = AdapterRegistry()

    @registry.adapter("moscot")
    def normalize(raw):
        return [...]

    # or load every ``<module>.py`` exposing SLUG + normalize from a directory
    registry.discover("/path/to/adapters")
"""

from __future__ import annotations

import importlib.util
import logging
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..errors import AdapterRegistrationError
from .base import Adapter

logger = logging.getLogger(__name__)

BUILTIN_ADAPTERS_DIR = Path(__file__).parent / "vendors"


class AdapterRegistry:
    """Registry of normalization adapters keyed by vendor slug."""

    def __init__(self):
        self._adapters: Dict[str, Adapter] = {}
        self._sources: Dict[str, Path] = {}
        self._discovered_paths: set[str] = set()

    # =========================================================================
    # Registration
    # =========================================================================

    def register(self, slug: str, adapter: Adapter) -> None:
        """Register ``adapter`` for ``slug``.

        Re-registering the same callable is a no-op; a different callable for an
        already registered slug raises AdapterRegistrationError.
        """
        if not callable(adapter):
            raise AdapterRegistrationError(f"adapter for {slug} is not callable")
        code = slug.strip().lower()
        current = self._adapters.get(code)
        if current is not None:
            if current is adapter:
                return
            raise AdapterRegistrationError(
                f"slug {code} already registered with {_describe(current)}"
            )
        self._adapters[code] = adapter
        logger.debug(f"Registered adapter: {code} -> {_describe(adapter)}")

    def adapter(self, slug: str) -> Callable[[Adapter], Adapter]:
        """Decorator form of ``register``."""

        def decorator(fn: Adapter) -> Adapter:
            self.register(slug, fn)
            return fn

        return decorator

    # =========================================================================
    # Auto-Discovery
    # =========================================================================

    def discover(self, plugin_dir: str | Path) -> int:
        """Load adapter modules from a directory.

        Every ``*.py`` file not starting with ``_`` must define ``SLUG`` and a
        ``normalize(raw)`` function.

        Returns:
            Number of adapters registered.
        """
        plugin_path = Path(plugin_dir)
        path_str = str(plugin_path.resolve())

        if path_str in self._discovered_paths:
            logger.debug(f"Already discovered: {plugin_path}")
            return 0

        if not plugin_path.exists():
            logger.warning(f"Adapter directory not found: {plugin_path}")
            return 0

        discovered = 0
        for py_file in sorted(plugin_path.glob("*.py")):
            if py_file.name.startswith("_"):
                continue

            module = self._load_module(py_file)
            slug = getattr(module, "SLUG", None)
            normalize = getattr(module, "normalize", None)
            if not isinstance(slug, str) or not callable(normalize):
                logger.warning(f"Skipping {py_file}: missing SLUG or normalize()")
                continue

            self.register(slug, normalize)
            self._sources[slug.strip().lower()] = py_file
            discovered += 1
            logger.debug(f"Discovered adapter {slug} in {py_file}")

        self._discovered_paths.add(path_str)
        logger.info(f"Discovered {discovered} adapters from {plugin_path}")
        return discovered

    @staticmethod
    def _load_module(py_file: Path):
        spec = importlib.util.spec_from_file_location(
            f"vendorsync_adapter_{py_file.stem}",
            py_file,
        )
        if spec is None or spec.loader is None:
            raise AdapterRegistrationError(f"cannot load adapter module {py_file}")
        module = importlib.util.module_from_spec(spec)
        sys.modules[spec.name] = module
        spec.loader.exec_module(module)
        return module

    # =========================================================================
    # Getters
    # =========================================================================

    def get(self, slug: str) -> Optional[Adapter]:
        return self._adapters.get(slug.strip().lower())

    def source_of(self, slug: str) -> Optional[Path]:
        """File the adapter was discovered from, if any."""
        return self._sources.get(slug.strip().lower())

    def __contains__(self, slug: str) -> bool:
        return self.get(slug) is not None

    def list_slugs(self) -> List[str]:
        return sorted(self._adapters)


def _describe(fn: Adapter) -> str:
    return f"{getattr(fn, '__module__', '?')}.{getattr(fn, '__qualname__', repr(fn))}"


def default_adapter_registry(extra_dir: str | Path | None = None) -> AdapterRegistry:
    """Registry with the built-in adapters plus an optional plugin directory."""
    registry = AdapterRegistry()
    registry.discover(BUILTIN_ADAPTERS_DIR)
    if extra_dir:
        registry.discover(extra_dir)
    return registry


__all__ = ["AdapterRegistry", "BUILTIN_ADAPTERS_DIR", "default_adapter_registry"]
