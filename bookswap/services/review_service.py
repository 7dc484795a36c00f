import logging
from typing import List, Optional

from ..core.exceptions import InvalidRequest, NotFound, require_actor
from ..core.store import SwapStore
from ..schemas.review import Review, ReviewSummary

logger = logging.getLogger(__name__)

DEFAULT_MIN_LENGTH = 10
MAX_LENGTH = 500


class ReviewService:
    """Book reviews. One review per user per book; resubmitting updates it."""

    def __init__(self, store: SwapStore, min_length: int = DEFAULT_MIN_LENGTH):
        self.store = store
        self.min_length = min_length

    def _validate(self, rating: Optional[int], review_text: Optional[str]) -> str:
        if not rating:
            raise InvalidRequest("Please select a rating")
        if rating < 1 or rating > 5:
            raise InvalidRequest("Rating must be between 1 and 5")
        text = (review_text or "").strip()
        if not text:
            raise InvalidRequest("Please write a review")
        if len(text) < self.min_length:
            raise InvalidRequest(f"Review must be at least {self.min_length} characters long")
        if len(text) > MAX_LENGTH:
            raise InvalidRequest(f"Review must be at most {MAX_LENGTH} characters long")
        return text

    async def submit_review(
        self, book_id: str, user_id: Optional[str], rating: Optional[int], review_text: Optional[str]
    ) -> Review:
        user_id = require_actor(user_id)
        text = self._validate(rating, review_text)
        if not await self.store.get_book(book_id):
            raise NotFound("Book not found")

        existing = await self.store.get_review(book_id, user_id)
        if existing:
            review = await self.store.update_review(existing.id, {"rating": rating, "review_text": text})
            if not review:
                raise NotFound("Review not found")
            logger.info(f"User {user_id} updated review {review.id} on book {book_id}")
            return review

        review = await self.store.insert_review(
            {"book_id": book_id, "user_id": user_id, "rating": rating, "review_text": text}
        )
        logger.info(f"User {user_id} reviewed book {book_id}")
        return review

    async def list_reviews(self, book_id: str) -> List[Review]:
        return await self.store.query_reviews(book_id)

    async def get_review_summary(self, book_id: str) -> ReviewSummary:
        reviews = await self.store.query_reviews(book_id)
        if not reviews:
            return ReviewSummary(book_id=book_id)
        average = sum(r.rating for r in reviews) / len(reviews)
        return ReviewSummary(book_id=book_id, review_count=len(reviews), average_rating=round(average, 2))
