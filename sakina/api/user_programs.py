from typing import Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from sakina.config import settings
from sakina.database import get_db
from sakina.models.user import User
from sakina.schemas.catalog import UserProgramResponse, CustomProgramCreate, CustomProgramUpdate
from sakina.services.catalog_service import CatalogService
from sakina.services.custom_program_service import CustomProgramService
from sakina.services.progress_service import ProgressService
from sakina.utils.dependencies import get_current_user
from sakina.utils.responses import success_response

router = APIRouter(prefix=f"{settings.API_PREFIX}/users", tags=["User Programs"])


def _enrollment(enrollment) -> dict:
    data = UserProgramResponse.model_validate(enrollment).model_dump()
    if enrollment.program is not None:
        data["program"] = CatalogService.program_summary(enrollment.program)
    return data


# ============================================
# ENROLLMENTS
# ============================================

@router.get("/programs")
async def my_programs(
    completed: Optional[bool] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    enrollments = ProgressService.list_enrollments(db, current_user.id, completed)
    return success_response([_enrollment(e) for e in enrollments])


@router.post("/programs/{program_id}/enroll")
async def enroll(
    program_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """201 on first enrollment, 200 with the existing enrollment afterwards"""
    enrollment, created = ProgressService.enroll(db, current_user.id, program_id)
    if created:
        return success_response(_enrollment(enrollment), "Enrolled in program", status.HTTP_201_CREATED)
    return success_response(_enrollment(enrollment), "Already enrolled in this program")


@router.delete("/programs/{program_id}/enroll")
async def unenroll(
    program_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ProgressService.unenroll(db, current_user.id, program_id)
    return success_response(None, "Left program")


@router.get("/programs/{program_id}/progress")
async def program_progress(
    program_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    enrollment = ProgressService.get_progress(db, current_user.id, program_id)
    return success_response(_enrollment(enrollment))


@router.post("/programs/{program_id}/tracks/{track_id}/complete")
async def complete_track(
    program_id: int,
    track_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    enrollment = ProgressService.mark_track_complete(db, current_user.id, program_id, track_id)
    message = "Program completed" if enrollment.is_completed else "Track marked as complete"
    return success_response(_enrollment(enrollment), message)


# ============================================
# CUSTOM PROGRAMS
# ============================================

@router.get("/custom-programs")
async def list_custom_programs(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    programs = CustomProgramService.list_programs(db, current_user.id)
    return success_response([CustomProgramService.with_tracks(db, p) for p in programs])


@router.post("/custom-programs", status_code=status.HTTP_201_CREATED)
async def create_custom_program(
    body: CustomProgramCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    program = CustomProgramService.create(
        db, current_user.id, body.name, body.track_ids,
        description=body.description,
        thumbnail_url=body.thumbnail_url,
        is_public=body.is_public,
    )
    return success_response(
        CustomProgramService.with_tracks(db, program), "Custom program created", status.HTTP_201_CREATED
    )


@router.get("/custom-programs/{program_id}")
async def get_custom_program(
    program_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    program = CustomProgramService.get(db, current_user.id, program_id)
    return success_response(CustomProgramService.with_tracks(db, program))


@router.put("/custom-programs/{program_id}")
async def update_custom_program(
    program_id: int,
    body: CustomProgramUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    program = CustomProgramService.update(db, current_user.id, program_id, **body.model_dump(exclude_unset=True))
    return success_response(CustomProgramService.with_tracks(db, program), "Custom program updated")


@router.delete("/custom-programs/{program_id}")
async def delete_custom_program(
    program_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    CustomProgramService.delete(db, current_user.id, program_id)
    return success_response(None, "Custom program deleted")
