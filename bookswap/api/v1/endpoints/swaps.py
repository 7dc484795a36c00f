from fastapi import APIRouter, Depends, Path, Query, status
from typing import List, Optional

from ....schemas.swap import (
    SwapCancellation,
    SwapCreate,
    SwapDecisionRequest,
    SwapRequest,
    SwapStatus,
)
from ....services.swap_service import SwapService
from ..dependencies import get_swap_service
from .users import get_current_user

router = APIRouter(prefix="/swaps", tags=["swaps"])

@router.post("/", response_model=SwapRequest, status_code=status.HTTP_201_CREATED)
async def create_swap_request(
    swap: SwapCreate,
    current_user: str = Depends(get_current_user),
    swaps: SwapService = Depends(get_swap_service),
):
    """
    Create a new swap request.

    The current user must own book_offered_id, must not own
    book_requested_id, and the offered book must not already be part of
    another pending request.
    """
    return await swaps.create_swap_request(
        current_user, swap.book_requested_id, swap.book_offered_id
    )

@router.get("/", response_model=List[SwapRequest])
async def get_swaps(
    status: Optional[SwapStatus] = None,
    role: Optional[str] = Query(None, pattern="^(requester|owner)$"),
    current_user: str = Depends(get_current_user),
    swaps: SwapService = Depends(get_swap_service),
):
    """
    Get the current user's swaps, incoming and outgoing, with optional filtering.
    """
    return await swaps.list_user_swaps(current_user, status=status, role=role)

@router.get("/{swap_id}", response_model=SwapRequest)
async def get_swap(
    swap_id: str = Path(...),
    current_user: str = Depends(get_current_user),
    swaps: SwapService = Depends(get_swap_service),
):
    return await swaps.get_swap_request(swap_id, current_user)

@router.post("/{swap_id}/decision", response_model=SwapRequest)
async def decide_swap(
    decision: SwapDecisionRequest,
    swap_id: str = Path(...),
    current_user: str = Depends(get_current_user),
    swaps: SwapService = Depends(get_swap_service),
):
    """
    Approve or deny a pending swap request. Only the requested book's owner can decide.
    """
    return await swaps.handle_swap_request(swap_id, current_user, decision.action)

@router.post("/{swap_id}/cancel", response_model=SwapRequest)
async def cancel_swap(
    cancellation: SwapCancellation,
    swap_id: str = Path(...),
    current_user: str = Depends(get_current_user),
    swaps: SwapService = Depends(get_swap_service),
):
    """
    Cancel a pending swap request. Only the requester can cancel.
    """
    return await swaps.cancel_swap_request(swap_id, current_user, cancellation.cancel_reason)

@router.post("/{swap_id}/complete", response_model=SwapRequest)
async def complete_swap(
    swap_id: str = Path(...),
    current_user: str = Depends(get_current_user),
    swaps: SwapService = Depends(get_swap_service),
):
    """
    Mark an approved swap as completed. Either participant can complete it.
    """
    return await swaps.complete_swap(swap_id, current_user)
