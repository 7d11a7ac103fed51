from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from sakina.config import settings
from sakina.database import get_db
from sakina.models.user import User
from sakina.services.catalog_service import CatalogService
from sakina.utils.dependencies import get_current_user
from sakina.utils.responses import success_response

router = APIRouter(prefix=f"{settings.API_PREFIX}/favorites", tags=["Favorites"])


def _added(favorite, created: bool):
    data = {"id": favorite.id, "track_id": favorite.track_id, "program_id": favorite.program_id}
    if created:
        return success_response(data, "Added to favorites", status.HTTP_201_CREATED)
    return success_response(data, "Already in favorites")


@router.get("")
async def list_favorites(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return success_response(CatalogService.list_favorites(db, current_user.id))


@router.post("/tracks/{track_id}")
async def add_track(
    track_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    favorite, created = CatalogService.add_favorite(db, current_user.id, track_id=track_id)
    return _added(favorite, created)


@router.delete("/tracks/{track_id}")
async def remove_track(
    track_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    CatalogService.remove_favorite(db, current_user.id, track_id=track_id)
    return success_response(None, "Removed from favorites")


@router.post("/programs/{program_id}")
async def add_program(
    program_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    favorite, created = CatalogService.add_favorite(db, current_user.id, program_id=program_id)
    return _added(favorite, created)


@router.delete("/programs/{program_id}")
async def remove_program(
    program_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    CatalogService.remove_favorite(db, current_user.id, program_id=program_id)
    return success_response(None, "Removed from favorites")
