"""Database utilities for Supabase integration."""

from typing import Annotated

from fastapi import Depends

from jobboard.config import BoardSettings, get_board_settings
from jobboard.gateway import StoreGateway, SupabaseStoreGateway
from jobboard.identity import CurrentUser, StaticIdentity
from jobboard.service import JobBoardService
from supabase import Client, create_client

from .auth import AuthUser, OptionalUser
from .config import Settings, get_settings

_supabase_client: Client | None = None


def get_supabase_client(settings: Settings | None = None) -> Client:
    """Get cached Supabase client."""
    global _supabase_client
    if _supabase_client is None:
        if settings is None:
            settings = get_settings()
        # Prefer new secret key, fall back to legacy service_role_key
        api_key = settings.supabase_secret_key or settings.supabase_service_role_key
        if not api_key:
            raise ValueError("Either SUPABASE_SECRET_KEY or SUPABASE_SERVICE_ROLE_KEY must be set")
        _supabase_client = create_client(settings.supabase_url, api_key)
    return _supabase_client


def get_gateway(settings: Annotated[Settings, Depends(get_settings)]) -> StoreGateway:
    """FastAPI dependency for the store gateway."""
    return SupabaseStoreGateway(get_supabase_client(settings))


# Type alias for dependency injection
Gateway = Annotated[StoreGateway, Depends(get_gateway)]


def _service_for(
    gateway: StoreGateway, user: CurrentUser | None, board: BoardSettings
) -> JobBoardService:
    # One service per request; the HTTP client keeps its own view, so no cache
    return JobBoardService(gateway, StaticIdentity(user), settings=board, use_cache=False)


def get_board_service(
    gateway: Gateway,
    user: AuthUser,
    board: Annotated[BoardSettings, Depends(get_board_settings)],
) -> JobBoardService:
    """Service acting as the authenticated user."""
    return _service_for(gateway, user, board)


def get_public_board_service(
    gateway: Gateway,
    user: OptionalUser,
    board: Annotated[BoardSettings, Depends(get_board_settings)],
) -> JobBoardService:
    """Service for endpoints that also serve anonymous callers."""
    return _service_for(gateway, user, board)


BoardService = Annotated[JobBoardService, Depends(get_board_service)]
PublicBoardService = Annotated[JobBoardService, Depends(get_public_board_service)]
