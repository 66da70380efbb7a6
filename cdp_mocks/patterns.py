from __future__ import annotations

from typing import Any

from .constants import SUPPORTED_RESOURCE_TYPES
from .models import FetchInterceptionStage, MocksPattern


def expand_resource_types(resources: list[str] | str) -> list[str]:
    """Return the concrete resource types for *resources*, expanding ``"*"``."""
    if resources == "*":
        return list(SUPPORTED_RESOURCE_TYPES)
    return list(resources)


def build_fetch_patterns(
    patterns: list[MocksPattern],
    stage: FetchInterceptionStage,
) -> list[dict[str, Any]]:
    """Build the ``Fetch.enable`` pattern list: one entry per (url, resource type)."""
    return [
        {
            "urlPattern": pattern.url,
            "requestStage": stage.value,
            "resourceType": resource_type,
        }
        for pattern in patterns
        for resource_type in expand_resource_types(pattern.resources)
    ]
