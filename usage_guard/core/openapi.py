"""OpenAPI metadata and customization utilities.

Enriches the generated schema with the ``X-API-Key`` security scheme, tag
descriptions and the health exemption, keeping documentation concerns out
of the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

TAGS_METADATA = [
    {"name": "Rate limits", "description": "Sliding-window request budgets per call site."},
    {"name": "Quotas", "description": "Monthly per-resource allowances (advisory check, recorded after success)."},
    {"name": "Features", "description": "Transactional check-and-consume for hard-capped features."},
    {"name": "Usage totals", "description": "Ledger of calls to metered external providers."},
    {"name": "Plan limits", "description": "Inspect and reload the plan limit table."},
    {"name": "Health", "description": "Liveness checks."},
]


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add metadata and security.

    - Injects components.securitySchemes for API Key auth (header ``X-API-Key``)
    - Marks all operations as requiring the key, then exempts health
      endpoints by setting ``security: []``
    - Adds tags metadata if not present
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "ApiKeyAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Service key shared with the calling backend.",
            },
        )

        schema.setdefault("security", [{"ApiKeyAuth": []}])

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        for tag in TAGS_METADATA:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        paths = schema.get("paths", {})
        for path, methods in paths.items():
            if path.endswith("/health"):
                for method_obj in methods.values():
                    if isinstance(method_obj, dict):
                        method_obj["security"] = []

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
