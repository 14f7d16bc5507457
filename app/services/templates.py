"""
Template Service — Built-in subscription templates and public user types.

Templates are ready-made subscription presets. The built-in ones ship
with the service; users can additionally publish their own subscription
types (metadata.isPublic = true), which are listed after the built-ins.
"""

import logging
import math
from typing import Any

from fastapi import status

from app.core.errors import SUBSCRIPTION_ERRORS, AppError

logger = logging.getLogger(__name__)

BUILT_IN_TEMPLATES: list[dict[str, Any]] = [
    {
        "id": "boe-general",
        "name": "BOE General",
        "description": "Seguimiento general del Boletín Oficial del Estado",
        "type": "boe",
        "prompts": ["disposición", "ley", "real decreto"],
        "frequency": "daily",
        "isBuiltIn": True,
        "icon": "GanttChart",
        "logo": "https://www.boe.es/favicon.ico",
        "metadata": {"category": "government", "source": "boe"},
    },
    {
        "id": "boe-subvenciones",
        "name": "Subvenciones BOE",
        "description": "Alertas de subvenciones y ayudas públicas",
        "type": "boe",
        "prompts": ["subvención", "ayuda", "convocatoria"],
        "frequency": "immediate",
        "isBuiltIn": True,
        "icon": "Coins",
        "logo": "https://www.boe.es/favicon.ico",
        "metadata": {"category": "government", "source": "boe"},
    },
    {
        "id": "real-estate-rental",
        "name": "Alquiler de Viviendas",
        "description": "Búsqueda de alquileres en zonas específicas",
        "type": "real-estate",
        "prompts": ["alquiler", "piso", "apartamento"],
        "frequency": "immediate",
        "isBuiltIn": True,
        "icon": "Key",
        "logo": "https://cdn-icons-png.flaticon.com/512/1040/1040993.png",
        "metadata": {"category": "real-estate", "source": "property-listings"},
    },
]


def find_built_in(template_id: str) -> dict[str, Any] | None:
    for template in BUILT_IN_TEMPLATES:
        if template["id"] == template_id:
            return template
    return None


def type_to_template(row: dict[str, Any]) -> dict[str, Any]:
    """Present a public subscription_types row as a template."""
    metadata = row.get("metadata") or {}
    return {
        "id": row["id"],
        "name": row.get("display_name") or row.get("name"),
        "description": row.get("description") or "",
        "type": row["id"],
        "prompts": metadata.get("prompts") or [],
        "frequency": metadata.get("frequency") or "daily",
        "isBuiltIn": False,
        "icon": row.get("icon"),
        "logo": row.get("logo_url"),
        "metadata": metadata,
        "createdBy": row.get("created_by"),
    }


def _public_types_query(client):
    return (
        client.table("subscription_types")
        .select("*", count="exact")
        .eq("is_system", False)
        .eq("metadata->>isPublic", "true")
    )


def list_templates(client, page: int = 1, limit: int = 10) -> dict[str, Any]:
    """
    Built-in templates followed by public user types, paginated.

    Built-ins are always returned on page 1; `limit` and `page` page
    through the user-published types.
    """
    offset = (page - 1) * limit
    result = (
        _public_types_query(client)
        .order("created_at", desc=True)
        .range(offset, offset + limit - 1)
        .execute()
    )
    user_templates = [type_to_template(row) for row in result.data or []]
    user_count = result.count or 0
    total_count = user_count + len(BUILT_IN_TEMPLATES)
    total_pages = max(1, math.ceil(total_count / limit))

    templates = (list(BUILT_IN_TEMPLATES) if page == 1 else []) + user_templates
    return {
        "templates": templates,
        "pagination": {
            "page": page,
            "limit": limit,
            "totalPages": total_pages,
            "totalCount": total_count,
            "hasMore": page < total_pages,
        },
    }


def get_template(client, template_id: str) -> dict[str, Any]:
    """
    Raises:
        AppError(404): TEMPLATE_NOT_FOUND.
    """
    built_in = find_built_in(template_id)
    if built_in:
        return built_in

    result = _public_types_query(client).eq("id", template_id).execute()
    if not result.data:
        raise AppError.from_catalog(
            SUBSCRIPTION_ERRORS["TEMPLATE_NOT_FOUND"],
            status.HTTP_404_NOT_FOUND,
            {"templateId": template_id},
        )
    return type_to_template(result.data[0])
