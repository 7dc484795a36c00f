import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from ....core.config import Settings, get_settings
from ....core.exceptions import AuthRequired
from ....schemas.book import Book
from ....schemas.swap import SwapHistoryEntry, SwapStats
from ....services.catalog_service import CatalogService
from ....services.swap_service import SwapService
from ..dependencies import get_catalog_service, get_swap_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

# Tokens are issued by Supabase Auth; this service only verifies them.
bearer_scheme = HTTPBearer(
    auto_error=False,
    description="Supabase access token (without the 'Bearer' prefix)",
    scheme_name="JWT",
)


def decode_user_id(token: str, settings: Settings) -> str:
    """Return the ``sub`` claim of a Supabase access token."""
    try:
        payload = jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
        )
    except JWTError as e:
        logger.warning(f"Rejected access token: {e}")
        raise AuthRequired("Invalid authentication token")
    user_id = payload.get("sub")
    if not user_id:
        raise AuthRequired("Token is missing the user id")
    return user_id


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> Optional[str]:
    """The signed-in user's id, or None for anonymous requests."""
    if credentials is None:
        return None
    return decode_user_id(credentials.credentials, settings)


async def get_current_user(user_id: Optional[str] = Depends(get_optional_user)) -> str:
    """The signed-in user's id. Raises AuthRequired for anonymous requests."""
    if not user_id:
        raise AuthRequired("Could not validate credentials")
    return user_id


@router.get("/me/books", response_model=List[Book])
async def get_my_books(
    current_user: str = Depends(get_current_user),
    catalog: CatalogService = Depends(get_catalog_service),
):
    """All books the current user has listed, available or not."""
    return await catalog.list_owner_books(current_user)


@router.get("/me/offerable-books", response_model=List[Book])
async def get_my_offerable_books(
    current_user: str = Depends(get_current_user),
    catalog: CatalogService = Depends(get_catalog_service),
):
    """Books the current user can offer in a new swap request."""
    return await catalog.list_offerable_books(current_user)


@router.get("/me/swap-history", response_model=List[SwapHistoryEntry])
async def get_my_swap_history(
    current_user: str = Depends(get_current_user),
    swaps: SwapService = Depends(get_swap_service),
):
    return await swaps.get_swap_history(current_user)


@router.get("/me/swap-stats", response_model=SwapStats)
async def get_my_swap_stats(
    current_user: str = Depends(get_current_user),
    swaps: SwapService = Depends(get_swap_service),
):
    return await swaps.get_swap_stats(current_user)
