"""Normalization adapter SDK.

Adapters turn a vendor's raw payload into canonical ``NormalizedItem``s. They
live in an explicit ``AdapterRegistry``, either registered in code or
discovered from a plugin directory of ``<slug>.py`` modules.
"""

from .base import Adapter, Category, NormalizedItem, to_minor_units
from .normalize import CURRENCY_MIXED_ATTR, NormalizationResult, normalize_payload
from .registry import BUILTIN_ADAPTERS_DIR, AdapterRegistry, default_adapter_registry
from .sdk import BUILTIN_FIXTURES_DIR, Check, ScaffoldPlan, ValidationResult, scaffold, validate

__all__ = [
    "Adapter",
    "AdapterRegistry",
    "BUILTIN_ADAPTERS_DIR",
    "BUILTIN_FIXTURES_DIR",
    "CURRENCY_MIXED_ATTR",
    "Category",
    "Check",
    "NormalizationResult",
    "NormalizedItem",
    "ScaffoldPlan",
    "ValidationResult",
    "default_adapter_registry",
    "normalize_payload",
    "scaffold",
    "to_minor_units",
    "validate",
]
