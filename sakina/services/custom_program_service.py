import logging
from typing import Optional, List
from sqlalchemy.orm import Session
from sakina.exceptions import NotFoundError, ValidationError
from sakina.models.custom_program import CustomProgram
from sakina.models.track import Track

logger = logging.getLogger(__name__)


class CustomProgramService:
    """User playlists. Every query is scoped by user_id; another user's program is a 404."""

    @staticmethod
    def _load_tracks(db: Session, track_ids: List[int]) -> List[Track]:
        if not track_ids:
            raise ValidationError("At least one track is required")
        if len(set(track_ids)) != len(track_ids):
            raise ValidationError("Duplicate tracks are not allowed")

        tracks = db.query(Track).filter(
            Track.id.in_(track_ids),
            Track.is_active == True
        ).all()
        if len(tracks) != len(track_ids):
            raise ValidationError("One or more track IDs are invalid or inactive")

        by_id = {t.id: t for t in tracks}
        return [by_id[track_id] for track_id in track_ids]

    @staticmethod
    def _ordered(track_ids: List[int]) -> List[dict]:
        return [{"track_id": track_id, "order": index} for index, track_id in enumerate(track_ids, start=1)]

    @staticmethod
    def create(
        db: Session,
        user_id: int,
        name: str,
        track_ids: List[int],
        description: Optional[str] = None,
        thumbnail_url: Optional[str] = None,
        is_public: bool = False,
    ) -> CustomProgram:
        tracks = CustomProgramService._load_tracks(db, track_ids)

        program = CustomProgram(
            user_id=user_id,
            name=name,
            description=description,
            thumbnail_url=thumbnail_url or tracks[0].image_url,
            tracks=CustomProgramService._ordered(track_ids),
            is_public=is_public,
        )
        db.add(program)
        db.commit()
        db.refresh(program)

        logger.info(f"🎧 Custom program {program.id} created by user {user_id} ({len(track_ids)} tracks)")
        return program

    @staticmethod
    def get(db: Session, user_id: int, program_id: int) -> CustomProgram:
        program = db.query(CustomProgram).filter(
            CustomProgram.id == program_id,
            CustomProgram.user_id == user_id
        ).first()
        if not program:
            raise NotFoundError("Custom program not found")
        return program

    @staticmethod
    def list_programs(db: Session, user_id: int) -> List[CustomProgram]:
        return db.query(CustomProgram).filter(
            CustomProgram.user_id == user_id
        ).order_by(CustomProgram.updated_at.desc(), CustomProgram.id.desc()).all()

    @staticmethod
    def update(
        db: Session,
        user_id: int,
        program_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        thumbnail_url: Optional[str] = None,
        track_ids: Optional[List[int]] = None,
        is_public: Optional[bool] = None,
    ) -> CustomProgram:
        program = CustomProgramService.get(db, user_id, program_id)

        if track_ids is not None:
            tracks = CustomProgramService._load_tracks(db, track_ids)
            program.tracks = CustomProgramService._ordered(track_ids)
            if thumbnail_url is None:
                program.thumbnail_url = tracks[0].image_url

        if name is not None:
            program.name = name
        if description is not None:
            program.description = description
        if thumbnail_url is not None:
            program.thumbnail_url = thumbnail_url
        if is_public is not None:
            program.is_public = is_public

        db.commit()
        db.refresh(program)
        return program

    @staticmethod
    def delete(db: Session, user_id: int, program_id: int):
        program = CustomProgramService.get(db, user_id, program_id)
        db.delete(program)
        db.commit()
        logger.info(f"🎧 Custom program {program_id} deleted by user {user_id}")

    @staticmethod
    def with_tracks(db: Session, program: CustomProgram) -> dict:
        """Program with its track metadata in order"""
        ids = program.track_ids
        tracks = {t.id: t for t in db.query(Track).filter(Track.id.in_(ids)).all()} if ids else {}
        return {
            "id": program.id,
            "name": program.name,
            "description": program.description,
            "thumbnail_url": program.thumbnail_url,
            "is_public": program.is_public,
            "tracks": [
                {
                    "track_id": track_id,
                    "order": order,
                    "title": tracks[track_id].title,
                    "duration_seconds": tracks[track_id].duration_seconds,
                    "image_url": tracks[track_id].image_url,
                }
                for order, track_id in enumerate(ids, start=1)
                if track_id in tracks
            ],
            "total_duration_seconds": sum(t.duration_seconds or 0 for t in tracks.values()),
            "created_at": program.created_at,
            "updated_at": program.updated_at,
        }
