from fastapi import Depends, Request

from ...core.config import Settings, get_settings
from ...core.store import SwapStore
from ...services.catalog_service import CatalogService
from ...services.notification_service import NotificationDispatcher
from ...services.review_service import ReviewService
from ...services.swap_service import SwapService


def get_store(request: Request) -> SwapStore:
    """The store created during app startup (see main.lifespan)."""
    return request.app.state.store


def get_notification_dispatcher(store: SwapStore = Depends(get_store)) -> NotificationDispatcher:
    return NotificationDispatcher(store)


def get_swap_service(
    store: SwapStore = Depends(get_store),
    notifications: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> SwapService:
    return SwapService(store, notifications)


def get_catalog_service(store: SwapStore = Depends(get_store)) -> CatalogService:
    return CatalogService(store)


def get_review_service(
    store: SwapStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> ReviewService:
    return ReviewService(store, min_length=settings.review_min_length)
