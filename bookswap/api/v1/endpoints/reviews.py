from fastapi import APIRouter, Depends, Path
from typing import List

from ....schemas.review import Review, ReviewCreate, ReviewSummary
from ....services.review_service import ReviewService
from ..dependencies import get_review_service
from .users import get_current_user

router = APIRouter(prefix="/books/{book_id}/reviews", tags=["reviews"])

@router.put("/", response_model=Review)
async def submit_review(
    review: ReviewCreate,
    book_id: str = Path(...),
    current_user: str = Depends(get_current_user),
    reviews: ReviewService = Depends(get_review_service),
):
    """
    Create or update the current user's review of a book.
    """
    return await reviews.submit_review(book_id, current_user, review.rating, review.review_text)

@router.get("/", response_model=List[Review])
async def get_book_reviews(
    book_id: str = Path(...),
    reviews: ReviewService = Depends(get_review_service),
):
    return await reviews.list_reviews(book_id)

@router.get("/summary", response_model=ReviewSummary)
async def get_book_review_summary(
    book_id: str = Path(...),
    reviews: ReviewService = Depends(get_review_service),
):
    return await reviews.get_review_summary(book_id)
