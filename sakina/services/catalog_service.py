import logging
from datetime import datetime
from typing import Optional, List, Tuple
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sakina.config import settings
from sakina.exceptions import NotFoundError, ValidationError, ForbiddenError
from sakina.models.category import Category
from sakina.models.favorite import UserFavorite
from sakina.models.package import Package
from sakina.models.program import Program, ProgramTrack
from sakina.models.track import Track, ContentAccess
from sakina.models.user import User
from sakina.schemas.catalog import (
    CategoryCreate, CategoryUpdate,
    TrackCreate, TrackUpdate, TrackResponse,
    ProgramCreate, ProgramUpdate,
)
from sakina.services.entitlement import has_access, build_snapshot, SubscriptionSnapshot
from sakina.services.storage_service import StorageService

logger = logging.getLogger(__name__)


def user_snapshot(db: Session, user: Optional[User]) -> Optional[SubscriptionSnapshot]:
    if user is None:
        return None
    package = None
    if user.subscription_package_id:
        package = db.query(Package).filter(Package.id == user.subscription_package_id).first()
    return build_snapshot(user, package)


class CatalogService:

    # ============================================
    # CATEGORIES
    # ============================================

    @staticmethod
    def list_categories(db: Session) -> List[Category]:
        return db.query(Category).filter(
            Category.is_active == True
        ).order_by(Category.display_order, Category.id).all()

    @staticmethod
    def get_category(db: Session, category_id: int, include_inactive: bool = False) -> Category:
        query = db.query(Category).filter(Category.id == category_id)
        if not include_inactive:
            query = query.filter(Category.is_active == True)
        category = query.first()
        if not category:
            raise NotFoundError("Category not found")
        return category

    @staticmethod
    def create_category(db: Session, data: CategoryCreate) -> Category:
        category = Category(**data.model_dump())
        db.add(category)
        db.commit()
        db.refresh(category)
        logger.info(f"🗂️ Category created: {category.name} (ID: {category.id})")
        return category

    @staticmethod
    def update_category(db: Session, category_id: int, data: CategoryUpdate) -> Category:
        category = CatalogService.get_category(db, category_id, include_inactive=True)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(category, field, value)
        db.commit()
        db.refresh(category)
        return category

    @staticmethod
    def deactivate_category(db: Session, category_id: int) -> Category:
        category = CatalogService.get_category(db, category_id, include_inactive=True)
        category.is_active = False
        db.commit()
        logger.info(f"🗂️ Category deactivated: {category.id}")
        return category

    # ============================================
    # TRACKS
    # ============================================

    @staticmethod
    def list_tracks(
        db: Session,
        category_id: Optional[int] = None,
        content_access: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Track], int]:
        query = db.query(Track).filter(Track.is_active == True)
        if category_id:
            query = query.filter(Track.category_id == category_id)
        if content_access:
            query = query.filter(Track.content_access == ContentAccess(content_access))
        if search:
            query = query.filter(Track.title.ilike(f"%{search.strip()}%"))

        total = query.count()
        items = query.order_by(Track.created_at.desc(), Track.id.desc()) \
            .offset((page - 1) * limit).limit(limit).all()
        return items, total

    @staticmethod
    def get_track(db: Session, track_id: int, include_inactive: bool = False) -> Track:
        query = db.query(Track).filter(Track.id == track_id)
        if not include_inactive:
            query = query.filter(Track.is_active == True)
        track = query.first()
        if not track:
            raise NotFoundError("Track not found")
        return track

    @staticmethod
    def get_stream_url(db: Session, user: User, track_id: int, now: Optional[datetime] = None) -> dict:
        """
        Signed audio URL for an entitled user. Entitlement is evaluated on
        every call; the play counter is bumped with a single UPDATE.
        """
        track = CatalogService.get_track(db, track_id)

        if not has_access(user_snapshot(db, user), track.content_access, now):
            raise ForbiddenError(
                "This track requires an active subscription",
                extra={"requiresSubscription": True},
            )

        db.execute(
            update(Track).where(Track.id == track.id).values(play_count=Track.play_count + 1)
        )
        db.commit()

        expires = settings.SIGNED_URL_EXPIRE_SECONDS
        return {
            "track_id": track.id,
            "url": StorageService.signed_url(track.audio_key, expires),
            "expires_in": expires,
        }

    @staticmethod
    def create_track(db: Session, data: TrackCreate) -> Track:
        CatalogService.get_category(db, data.category_id, include_inactive=True)

        values = data.model_dump()
        values["content_access"] = ContentAccess(values["content_access"])
        track = Track(**values)
        db.add(track)
        db.commit()
        db.refresh(track)
        logger.info(f"🎵 Track created: {track.title} (ID: {track.id})")
        return track

    @staticmethod
    def update_track(db: Session, track_id: int, data: TrackUpdate) -> Track:
        track = CatalogService.get_track(db, track_id, include_inactive=True)
        values = data.model_dump(exclude_unset=True)

        if values.get("category_id") is not None:
            CatalogService.get_category(db, values["category_id"], include_inactive=True)
        if values.get("content_access") is not None:
            values["content_access"] = ContentAccess(values["content_access"])

        for field, value in values.items():
            setattr(track, field, value)
        db.commit()
        db.refresh(track)
        return track

    @staticmethod
    def deactivate_track(db: Session, track_id: int) -> Track:
        track = CatalogService.get_track(db, track_id, include_inactive=True)
        track.is_active = False
        db.commit()
        logger.info(f"🎵 Track deactivated: {track.id}")
        return track

    # ============================================
    # PROGRAMS
    # ============================================

    @staticmethod
    def list_programs(
        db: Session,
        category_id: Optional[int] = None,
        level: Optional[str] = None,
        featured: Optional[bool] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Program], int]:
        query = db.query(Program).filter(Program.is_active == True)
        if category_id:
            query = query.filter(Program.category_id == category_id)
        if level:
            query = query.filter(Program.level == level)
        if featured is not None:
            query = query.filter(Program.is_featured == featured)

        total = query.count()
        items = query.order_by(Program.is_featured.desc(), Program.created_at.desc(), Program.id.desc()) \
            .offset((page - 1) * limit).limit(limit).all()
        return items, total

    @staticmethod
    def get_program(db: Session, program_id: int, include_inactive: bool = False) -> Program:
        query = db.query(Program).filter(Program.id == program_id)
        if not include_inactive:
            query = query.filter(Program.is_active == True)
        program = query.first()
        if not program:
            raise NotFoundError("Program not found")
        return program

    @staticmethod
    def program_summary(program: Program) -> dict:
        return {
            "id": program.id,
            "title": program.title,
            "description": program.description,
            "level": program.level,
            "category_id": program.category_id,
            "thumbnail_url": program.thumbnail_url,
            "content_access": program.content_access.value,
            "is_featured": bool(program.is_featured),
            "is_active": bool(program.is_active),
            "total_tracks": program.total_tracks,
            "total_duration_seconds": sum(pt.track.duration_seconds or 0 for pt in program.tracks),
            "created_at": program.created_at,
        }

    @staticmethod
    def get_program_detail(db: Session, user: Optional[User], program_id: int, now: Optional[datetime] = None) -> dict:
        """
        Program with its tracks. Without entitlement the caller gets a locked
        preview: order, title and duration of each track and nothing more.
        """
        program = CatalogService.get_program(db, program_id)
        entitled = has_access(user_snapshot(db, user), program.content_access, now)

        detail = CatalogService.program_summary(program)
        detail["is_locked"] = not entitled

        if entitled:
            detail["tracks"] = [
                dict(TrackResponse.model_validate(pt.track).model_dump(), order=pt.order)
                for pt in program.tracks
            ]
        else:
            detail["tracks"] = [
                {"order": pt.order, "title": pt.track.title, "duration_seconds": pt.track.duration_seconds}
                for pt in program.tracks
            ]
        return detail

    @staticmethod
    def _validate_program_tracks(db: Session, track_ids: List[int]):
        if len(set(track_ids)) != len(track_ids):
            raise ValidationError("Duplicate tracks are not allowed")
        found = db.query(Track.id).filter(Track.id.in_(track_ids)).count()
        if found != len(track_ids):
            raise ValidationError("One or more track IDs are invalid")

    @staticmethod
    def _set_program_tracks(db: Session, program: Program, track_ids: List[int]):
        # Flush deletions first so re-adding a track does not trip the unique constraint
        program.tracks.clear()
        db.flush()
        for order, track_id in enumerate(track_ids, start=1):
            program.tracks.append(ProgramTrack(track_id=track_id, order=order))

    @staticmethod
    def create_program(db: Session, data: ProgramCreate) -> Program:
        CatalogService.get_category(db, data.category_id, include_inactive=True)
        CatalogService._validate_program_tracks(db, data.track_ids)

        values = data.model_dump(exclude={"track_ids"})
        values["content_access"] = ContentAccess(values["content_access"])
        program = Program(**values)
        db.add(program)
        db.flush()
        CatalogService._set_program_tracks(db, program, data.track_ids)
        db.commit()
        db.refresh(program)

        logger.info(f"📚 Program created: {program.title} (ID: {program.id}, {program.total_tracks} tracks)")
        return program

    @staticmethod
    def update_program(db: Session, program_id: int, data: ProgramUpdate) -> Program:
        program = CatalogService.get_program(db, program_id, include_inactive=True)
        values = data.model_dump(exclude_unset=True)
        track_ids = values.pop("track_ids", None)

        if values.get("category_id") is not None:
            CatalogService.get_category(db, values["category_id"], include_inactive=True)
        if values.get("content_access") is not None:
            values["content_access"] = ContentAccess(values["content_access"])

        for field, value in values.items():
            setattr(program, field, value)

        if track_ids is not None:
            CatalogService._validate_program_tracks(db, track_ids)
            CatalogService._set_program_tracks(db, program, track_ids)

        db.commit()
        db.refresh(program)
        return program

    @staticmethod
    def deactivate_program(db: Session, program_id: int) -> Program:
        program = CatalogService.get_program(db, program_id, include_inactive=True)
        program.is_active = False
        db.commit()
        logger.info(f"📚 Program deactivated: {program.id}")
        return program

    # ============================================
    # FAVORITES
    # ============================================

    @staticmethod
    def _find_favorite(db: Session, user_id: int, track_id: Optional[int], program_id: Optional[int]) -> Optional[UserFavorite]:
        query = db.query(UserFavorite).filter(UserFavorite.user_id == user_id)
        if track_id is not None:
            return query.filter(UserFavorite.track_id == track_id).first()
        return query.filter(UserFavorite.program_id == program_id).first()

    @staticmethod
    def add_favorite(
        db: Session,
        user_id: int,
        track_id: Optional[int] = None,
        program_id: Optional[int] = None,
    ) -> Tuple[UserFavorite, bool]:
        """Favorite a track or a program. Adding twice returns the existing row."""
        if (track_id is None) == (program_id is None):
            raise ValidationError("Exactly one of track_id or program_id is required")

        if track_id is not None:
            CatalogService.get_track(db, track_id)
        else:
            CatalogService.get_program(db, program_id)

        existing = CatalogService._find_favorite(db, user_id, track_id, program_id)
        if existing:
            return existing, False

        favorite = UserFavorite(user_id=user_id, track_id=track_id, program_id=program_id)
        db.add(favorite)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            existing = CatalogService._find_favorite(db, user_id, track_id, program_id)
            if existing is None:
                raise
            return existing, False

        db.refresh(favorite)
        return favorite, True

    @staticmethod
    def remove_favorite(db: Session, user_id: int, track_id: Optional[int] = None, program_id: Optional[int] = None):
        favorite = CatalogService._find_favorite(db, user_id, track_id, program_id)
        if not favorite:
            raise NotFoundError("Favorite not found")
        db.delete(favorite)
        db.commit()

    @staticmethod
    def list_favorites(db: Session, user_id: int) -> dict:
        favorites = db.query(UserFavorite).filter(
            UserFavorite.user_id == user_id
        ).order_by(UserFavorite.created_at.desc(), UserFavorite.id.desc()).all()

        return {
            "tracks": [
                TrackResponse.model_validate(f.track).model_dump()
                for f in favorites
                if f.track_id is not None and f.track is not None and f.track.is_active
            ],
            "programs": [
                CatalogService.program_summary(f.program)
                for f in favorites
                if f.program_id is not None and f.program is not None and f.program.is_active
            ],
        }
