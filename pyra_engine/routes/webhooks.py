"""
Webhook API routes.

Manage webhook subscriptions and inspect, test and retry their deliveries.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from pyra_engine.dependencies.engine import Pagination, get_actor, get_engine, get_pagination
from pyra_engine.exceptions import (
    DeliveryLockedError,
    InvalidDeliveryStateError,
    NotFoundError,
)
from pyra_engine.schemas.common import Page
from pyra_engine.schemas.webhook import (
    DeliveryRecord,
    SweepSummary,
    WebhookCreate,
    WebhookResponse,
    WebhookUpdate,
)
from pyra_engine.services.engine import Engine


router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _not_found(e: NotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("", response_model=Page[WebhookResponse])
async def list_webhooks(
    pagination: Pagination = Depends(get_pagination),
    engine: Engine = Depends(get_engine),
):
    """List webhook subscriptions. Secrets are masked."""
    webhooks, total = await engine.webhooks.list(pagination.page, pagination.page_size)
    return Page[WebhookResponse](
        data=[WebhookResponse.from_subscription(w) for w in webhooks],
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
    )


@router.post("", response_model=WebhookResponse, status_code=status.HTTP_201_CREATED)
async def create_webhook(
    request: WebhookCreate,
    actor: Optional[str] = Depends(get_actor),
    engine: Engine = Depends(get_engine),
):
    """
    Register a webhook subscription.

    The signing secret is generated server-side and returned in full only
    in this response. Receivers verify X-Pyra-Signature with it.
    """
    webhook = await engine.webhooks.create(request, created_by=actor)
    return WebhookResponse.from_subscription(webhook, reveal_secret=True)


@router.post("/process-retries", response_model=SweepSummary)
async def process_retries(engine: Engine = Depends(get_engine)):
    """Run one retry sweep now instead of waiting for the scheduled one."""
    return await engine.scheduler.process_due_retries()


@router.get("/{webhook_id}", response_model=WebhookResponse)
async def get_webhook(webhook_id: str, engine: Engine = Depends(get_engine)):
    try:
        return WebhookResponse.from_subscription(await engine.webhooks.get(webhook_id))
    except NotFoundError as e:
        raise _not_found(e)


@router.patch("/{webhook_id}", response_model=WebhookResponse)
async def update_webhook(
    webhook_id: str,
    request: WebhookUpdate,
    engine: Engine = Depends(get_engine),
):
    """
    Update a subscription.

    With regenerate_secret=true the secret is rotated and the new one is
    returned in full, once.
    """
    try:
        webhook = await engine.webhooks.update(webhook_id, request)
    except NotFoundError as e:
        raise _not_found(e)
    return WebhookResponse.from_subscription(webhook, reveal_secret=request.regenerate_secret)


@router.delete("/{webhook_id}", response_model=dict)
async def delete_webhook(webhook_id: str, engine: Engine = Depends(get_engine)):
    """Delete a subscription. Its delivery history is kept."""
    try:
        await engine.webhooks.delete(webhook_id)
    except NotFoundError as e:
        raise _not_found(e)
    return {"message": "Webhook deleted", "id": webhook_id}


@router.post("/{webhook_id}/toggle", response_model=WebhookResponse)
async def toggle_webhook(webhook_id: str, engine: Engine = Depends(get_engine)):
    try:
        return WebhookResponse.from_subscription(await engine.webhooks.toggle(webhook_id))
    except NotFoundError as e:
        raise _not_found(e)


@router.get("/{webhook_id}/deliveries", response_model=Page[DeliveryRecord])
async def list_deliveries(
    webhook_id: str,
    pagination: Pagination = Depends(get_pagination),
    engine: Engine = Depends(get_engine),
):
    """Delivery log for one subscription, newest first."""
    try:
        await engine.webhooks.get(webhook_id)
    except NotFoundError as e:
        raise _not_found(e)

    deliveries, total = await engine.deliveries.list_for_webhook(
        webhook_id, pagination.page, pagination.page_size
    )
    return Page[DeliveryRecord](
        data=deliveries,
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
    )


@router.post("/{webhook_id}/test", response_model=DeliveryRecord)
async def test_webhook(webhook_id: str, engine: Engine = Depends(get_engine)):
    """Send a one-off test event. Recorded in the delivery log, never retried."""
    try:
        return await engine.scheduler.test(webhook_id)
    except NotFoundError as e:
        raise _not_found(e)


@router.post("/{webhook_id}/deliveries/{delivery_id}/retry", response_model=DeliveryRecord)
async def retry_delivery(
    webhook_id: str,
    delivery_id: str,
    engine: Engine = Depends(get_engine),
):
    """
    Retry a failed or retrying delivery immediately.

    400 if the delivery is not retryable, 409 if a worker is delivering it
    right now.
    """
    try:
        return await engine.scheduler.retry(webhook_id, delivery_id)
    except NotFoundError as e:
        raise _not_found(e)
    except InvalidDeliveryStateError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except DeliveryLockedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
