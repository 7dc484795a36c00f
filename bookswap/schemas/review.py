from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

class ReviewCreate(BaseModel):
    # Range and length checks live in ReviewService so the API and direct
    # callers get the same error messages.
    rating: int = 0
    review_text: str = ""

class Review(BaseModel):
    id: str
    book_id: str
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    review_text: str = Field(..., max_length=500)
    created_at: datetime
    updated_at: datetime

class ReviewSummary(BaseModel):
    book_id: str
    review_count: int = 0
    average_rating: Optional[float] = None
