from fastapi import APIRouter
from .endpoints import books, swaps, notifications, reviews, users

router = APIRouter(prefix="/api/v1")

# Include all endpoint routers
router.include_router(books.router)
router.include_router(reviews.router)
router.include_router(swaps.router)
router.include_router(notifications.router)
router.include_router(users.router)
