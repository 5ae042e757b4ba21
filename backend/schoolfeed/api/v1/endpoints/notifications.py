"""
Notification Feed API

Per-user feed operations. The caller identity is the X-User-Id header;
authentication happens upstream of this service.
"""

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from typing import Optional

from schoolfeed.core.logging_config import logger
from schoolfeed.schemas.notification import (
    BulkDeleteRequest,
    BulkDeleteResponse,
    DeleteResponse,
    FeedFlagsResponse,
    FeedResponse,
    MetricsResponse,
    NotificationResponse,
    SwitchUserRequest,
)
from schoolfeed.services.feed_registry import FeedRegistry
from schoolfeed.services.notification_feed import NotificationFeedService

router = APIRouter(prefix="/notifications", tags=["Notifications"])


def get_feed_registry(request: Request) -> FeedRegistry:
    return request.app.state.feed_registry


async def get_feed(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    registry: FeedRegistry = Depends(get_feed_registry),
) -> NotificationFeedService:
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-User-Id header is required",
        )
    return await registry.get(x_user_id)


def feed_response(feed: NotificationFeedService) -> FeedResponse:
    return FeedResponse(
        notifications=[NotificationResponse.from_item(item) for item in feed.notifications],
        unread_count=feed.unread_count,
        loading=feed.loading,
        flags=FeedFlagsResponse(enabled=feed.flags.enabled, sync=feed.flags.sync),
    )


@router.get("", response_model=FeedResponse)
async def get_notifications(feed: NotificationFeedService = Depends(get_feed)):
    """Current published feed"""
    return feed_response(feed)


@router.post("/refresh", response_model=FeedResponse)
async def refresh_notifications(feed: NotificationFeedService = Depends(get_feed)):
    await feed.refresh()
    return feed_response(feed)


@router.post("/read-all", response_model=FeedResponse)
async def mark_all_read(feed: NotificationFeedService = Depends(get_feed)):
    await feed.mark_all_as_read()
    return feed_response(feed)


@router.post("/delete-read", response_model=FeedResponse)
async def delete_read(feed: NotificationFeedService = Depends(get_feed)):
    """Delete every read notification from the backend"""
    await feed.delete_read()
    return feed_response(feed)


@router.post("/bulk-delete", response_model=BulkDeleteResponse)
async def bulk_delete(
    payload: BulkDeleteRequest,
    feed: NotificationFeedService = Depends(get_feed),
):
    """
    Delete many notifications at once.

    Partial failure is not an error: failed ids are reported and stay in
    the feed for a retry.
    """
    result = await feed.bulk_delete(payload.ids)
    if result.failed_ids:
        logger.warning(f"[NotificationsAPI] bulk delete left {len(result.failed_ids)} failures")
    return BulkDeleteResponse(**result.to_dict())


@router.post("/flags/reload", response_model=FeedResponse)
async def reload_flags(feed: NotificationFeedService = Depends(get_feed)):
    """Re-read the feature flags and apply any transition"""
    await feed.reload_flags()
    return feed_response(feed)


@router.post("/switch-user", response_model=FeedResponse)
async def switch_user(
    payload: SwitchUserRequest,
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    registry: FeedRegistry = Depends(get_feed_registry),
):
    """
    Hand the caller's live feed over to a new identity (login change).

    The feed keeps its subscriptions; read-state and snapshot are reloaded
    for `user_id`. Without a live feed for X-User-Id this is a plain get.
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-User-Id header is required",
        )
    feed = await registry.switch(x_user_id, payload.user_id)
    return feed_response(feed)


@router.get("/metrics", response_model=MetricsResponse)
async def get_metrics(feed: NotificationFeedService = Depends(get_feed)):
    return MetricsResponse(**feed.metrics.snapshot())


@router.post("/metrics/reset", response_model=MetricsResponse)
async def reset_metrics(feed: NotificationFeedService = Depends(get_feed)):
    feed.reset_metrics()
    return MetricsResponse(**feed.metrics.snapshot())


@router.post("/reset", response_model=FeedResponse)
async def reset_all(feed: NotificationFeedService = Depends(get_feed)):
    """Forget the feed, read-state and snapshot for this identity"""
    await feed.reset_all()
    return feed_response(feed)


@router.post("/{notification_id}/read", response_model=FeedResponse)
async def mark_read(notification_id: str, feed: NotificationFeedService = Depends(get_feed)):
    await feed.mark_as_read(notification_id)
    return feed_response(feed)


@router.post("/{notification_id}/unread", response_model=FeedResponse)
async def mark_unread(notification_id: str, feed: NotificationFeedService = Depends(get_feed)):
    await feed.mark_as_unread(notification_id)
    return feed_response(feed)


@router.delete("/{notification_id}", response_model=DeleteResponse)
async def delete_notification(
    notification_id: str,
    local: bool = False,
    feed: NotificationFeedService = Depends(get_feed),
):
    """
    Delete one notification.

    `local=true` only hides it from this feed; otherwise the source record
    is deleted and the item disappears only once the backend confirms.
    """
    if local:
        await feed.remove_by_id(notification_id)
        return DeleteResponse(success=True)
    return DeleteResponse(success=await feed.delete_by_id(notification_id))
