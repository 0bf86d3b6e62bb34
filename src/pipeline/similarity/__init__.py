"""Collaborative similarity provider registry with lazy loading.

Usage:
    from src.pipeline.similarity import get_provider

    provider = get_provider("category_approval", approval_rates={"coffee": 0.8})
    value = provider.similarity(candidate, profile)
"""

import importlib
from typing import Any

from src.pipeline.similarity.base import NEUTRAL_SIMILARITY, SimilarityProvider

__all__ = ["NEUTRAL_SIMILARITY", "SimilarityProvider", "available_providers", "get_provider"]

# Lazy registry: maps provider name → (module_path, class_name)
_REGISTRY: dict[str, tuple[str, str]] = {
    "constant": ("src.pipeline.similarity.constant", "ConstantSimilarity"),
    "category_approval": (
        "src.pipeline.similarity.category_approval",
        "CategoryApprovalSimilarity",
    ),
}


def get_provider(name: str, **options: Any) -> SimilarityProvider:
    """Instantiate and return a similarity provider by name.

    Args:
        name: Provider identifier (constant, category_approval).
        **options: Keyword arguments forwarded to the provider constructor.

    Raises:
        ValueError: If the provider name is unknown.
    """
    if name not in _REGISTRY:
        valid = ", ".join(sorted(_REGISTRY))
        msg = f"Unknown similarity provider '{name}'. Available: {valid}"
        raise ValueError(msg)

    module_path, class_name = _REGISTRY[name]
    module = importlib.import_module(module_path)
    cls = getattr(module, class_name)
    return cls(**options)  # type: ignore[no-any-return]


def available_providers() -> list[str]:
    """Return sorted list of registered provider names."""
    return sorted(_REGISTRY)
