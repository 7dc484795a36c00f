from fastapi import APIRouter, Depends, Path, Query, status
from typing import List, Optional

from ....schemas.book import (
    AvailabilityUpdate,
    Book,
    BookCondition,
    BookCreate,
    BookUpdate,
    BookWithSwapInfo,
)
from ....services.catalog_service import CatalogService
from ..dependencies import get_catalog_service
from .users import get_current_user, get_optional_user

router = APIRouter(prefix="/books", tags=["books"])

@router.get("/", response_model=List[BookWithSwapInfo])
async def browse_books(
    genre: Optional[str] = None,
    condition: Optional[BookCondition] = None,
    search: Optional[str] = Query(None, max_length=100),
    viewer_id: Optional[str] = Depends(get_optional_user),
    catalog: CatalogService = Depends(get_catalog_service),
):
    """
    Books available for swap, as seen by the current viewer.

    The viewer's own books are left out, as are books the viewer has already
    completed a swap for. Each book carries the viewer's swap state.
    """
    return await catalog.list_available_books(
        viewer_id,
        genre=genre,
        condition=condition.value if condition else None,
        search=search,
    )

@router.post("/", response_model=Book, status_code=status.HTTP_201_CREATED)
async def add_book(
    book: BookCreate,
    current_user: str = Depends(get_current_user),
    catalog: CatalogService = Depends(get_catalog_service),
):
    return await catalog.add_book(current_user, book)

@router.get("/{book_id}", response_model=Book)
async def get_book(
    book_id: str = Path(...),
    catalog: CatalogService = Depends(get_catalog_service),
):
    return await catalog.get_book(book_id)

@router.patch("/{book_id}", response_model=Book)
async def update_book(
    changes: BookUpdate,
    book_id: str = Path(...),
    current_user: str = Depends(get_current_user),
    catalog: CatalogService = Depends(get_catalog_service),
):
    """Edit a book's details. Owner only."""
    return await catalog.update_book(book_id, current_user, changes)

@router.put("/{book_id}/availability", response_model=Book)
async def set_book_availability(
    availability: AvailabilityUpdate,
    book_id: str = Path(...),
    current_user: str = Depends(get_current_user),
    catalog: CatalogService = Depends(get_catalog_service),
):
    """Toggle whether a book is offered for swap. Owner only."""
    return await catalog.set_availability(book_id, current_user, availability.available_for_swap)
