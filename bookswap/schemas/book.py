from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from enum import Enum

class BookCondition(str, Enum):
    NEW = "new"
    LIKE_NEW = "like_new"
    VERY_GOOD = "very_good"
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    POOR = "poor"

class SwapButtonState(str, Enum):
    NOT_AVAILABLE = "not-available"
    CAN_REQUEST = "can-request"
    SWAP_REQUESTED = "swap-requested"
    SWAP_APPROVED = "swap-approved"
    SWAP_DENIED = "swap-denied"
    SWAP_COMPLETED = "swap-completed"

class BookBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    author: str = Field(..., min_length=1, max_length=200)
    isbn: Optional[str] = Field(None, max_length=20)
    genre: List[str] = []
    description: Optional[str] = Field(None, max_length=2000)
    condition: BookCondition = BookCondition.GOOD
    location: str = ""
    language: Optional[str] = None
    published_year: Optional[int] = None

class BookCreate(BookBase):
    available_for_swap: bool = True

class BookUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    author: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    genre: Optional[List[str]] = None
    condition: Optional[BookCondition] = None
    location: Optional[str] = None

class AvailabilityUpdate(BaseModel):
    available_for_swap: bool

class Book(BookBase):
    id: str
    owner_id: str
    available_for_swap: bool = True
    created_at: datetime
    updated_at: datetime

class BookWithSwapInfo(Book):
    swap_state: SwapButtonState = SwapButtonState.CAN_REQUEST
    viewer_request_id: Optional[str] = None
    viewer_request_status: Optional[str] = None
