"""
Templates API — Ready-made subscription presets.

GET  /api/v1/templates — built-in and public templates (no auth).
GET  /api/v1/templates/{id} — one template (no auth).
POST /api/v1/templates/{id}/subscribe — create a subscription from a template.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, status

from app.api.subscriptions import insert_subscription
from app.core.security import get_current_user_id
from app.db.supabase_client import get_service_client
from app.models.subscriptions import TemplateSubscribeRequest
from app.services.pubsub import emit_event
from app.services.subscriptions import resolve_type_id, serialize_subscription
from app.services.templates import get_template, list_templates

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/templates", tags=["templates"])


@router.get("")
async def list_public_templates(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
) -> dict:
    """Built-in templates first, then user-published ones."""
    client = get_service_client()
    return list_templates(client, page, limit)


@router.get("/{template_id}")
async def get_public_template(template_id: str) -> dict:
    """
    Returns:
        200: {"template": {...}}
        404: TEMPLATE_NOT_FOUND.
    """
    client = get_service_client()
    return {"template": get_template(client, template_id)}


@router.post("/{template_id}/subscribe", status_code=status.HTTP_201_CREATED)
async def subscribe_from_template(
    template_id: str,
    payload: TemplateSubscribeRequest | None = None,
    user_id: str = Depends(get_current_user_id),
) -> dict:
    """
    Create a subscription for the caller from a template.

    The body may override the name, prompts (max 3) and frequency.

    Returns:
        201: {"subscription": {...}}
        404: TEMPLATE_NOT_FOUND.
        400: TYPE_NOT_FOUND when the template's type no longer exists.
    """
    client = get_service_client()
    template = get_template(client, template_id)
    custom = payload or TemplateSubscribeRequest()

    type_id = resolve_type_id(client, template["type"], template["type"])
    prompts = custom.prompts if custom.prompts is not None else list(template["prompts"])
    frequency = custom.frequency or template["frequency"]

    created = insert_subscription(
        client,
        user_id,
        type_id,
        custom.name or template["name"],
        template.get("description") or "",
        prompts,
        frequency,
        template.get("logo"),
        {**(template.get("metadata") or {}), "templateId": template_id},
    )

    await emit_event(
        "subscription.created",
        {
            "userId": user_id,
            "subscriptionId": created["id"],
            "templateId": template_id,
            "prompts": prompts,
            "frequency": frequency,
            "isCustomized": custom.prompts is not None or custom.frequency is not None,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )
    logger.info("Subscription %s created from template %s", created["id"], template_id)
    return {"subscription": serialize_subscription(created)}
