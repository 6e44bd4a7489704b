from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from uuid import UUID

from noteearly.database import get_db
from noteearly.errors import NotFoundError
from noteearly.models.auth import CurrentUser
from noteearly.models.progress import (
    AdminUpdateProgressRequest,
    StartProgressRequest,
    SubmitSummaryRequest,
    details_to_dto,
    progress_to_dto,
    submit_result_to_dto,
    to_json,
)
from noteearly.progress_service import ProgressService
from noteearly.security import ensure_manages_student, get_current_admin, get_current_student
from noteearly.utils import submission_message, success_response

router = APIRouter(prefix="/api/v1/progress")


def get_progress_service(db: Session = Depends(get_db)) -> ProgressService:
    return ProgressService(db)


def progress_list(rows):
    return [to_json(progress_to_dto(row)) for row in rows]


# --- Student endpoints ---

@router.post("/start", tags=["Progress - Student"])
def start_progress(
    body: StartProgressRequest,
    student: CurrentUser = Depends(get_current_student),
    service: ProgressService = Depends(get_progress_service),
):
    """Start (or resume) the caller's progress on a module. Idempotent."""
    progress, created = service.start_or_resume_progress(student.id, str(body.module_id))
    message = "Progress tracking started." if created else "Progress already exists."
    return success_response(to_json(progress_to_dto(progress)), message)


@router.post("/submit-summary", status_code=status.HTTP_201_CREATED, tags=["Progress - Student"])
def submit_paragraph_summary(
    body: SubmitSummaryRequest,
    student: CurrentUser = Depends(get_current_student),
    service: ProgressService = Depends(get_progress_service),
):
    submission, progress = service.submit_paragraph_summary(
        student_id=student.id,
        module_id=str(body.module_id),
        paragraph_index=body.paragraph_index,
        paragraph_summary=body.paragraph_summary,
        cumulative_summary=body.cumulative_summary,
    )
    return success_response(
        to_json(submit_result_to_dto(submission, progress)),
        submission_message(submission.paragraph_index, progress.completed),
    )


@router.get("/details/{module_id}", tags=["Progress - Student"])
def get_my_progress_details(
    module_id: UUID,
    student: CurrentUser = Depends(get_current_student),
    service: ProgressService = Depends(get_progress_service),
):
    progress, submissions = service.get_student_progress_details(student.id, str(module_id))
    return success_response(to_json(details_to_dto(progress, submissions)))


@router.get("/my-progress", tags=["Progress - Student"])
def get_my_progress(
    student: CurrentUser = Depends(get_current_student),
    service: ProgressService = Depends(get_progress_service),
):
    return success_response(progress_list(service.get_all_student_progress(student.id)))


# --- Admin endpoints ---

@router.patch("/admin/update/{progress_id}", tags=["Progress - Admin"])
def update_progress_by_admin(
    progress_id: UUID,
    body: AdminUpdateProgressRequest,
    admin: CurrentUser = Depends(get_current_admin),
    service: ProgressService = Depends(get_progress_service),
    db: Session = Depends(get_db),
):
    """Grade a progress record: score, feedback or completion override."""
    progress = service.get_progress_by_id(str(progress_id))
    if not progress:
        raise NotFoundError("Progress record not found")
    ensure_manages_student(db, admin, progress.student_id)

    updated = service.update_progress(progress.id, body.to_updates(), by_teacher=True)
    return success_response(to_json(progress_to_dto(updated)), "Progress record updated.")


@router.get("/admin/module/{module_id}", tags=["Progress - Admin"])
def get_module_progress_for_admin(
    module_id: UUID,
    admin: CurrentUser = Depends(get_current_admin),
    service: ProgressService = Depends(get_progress_service),
):
    rows = service.get_all_module_progress(str(module_id))
    if not admin.is_super_admin:
        # Admins only see the students they manage
        rows = [row for row in rows if row.student is not None and row.student.admin_id == admin.id]
    return success_response(progress_list(rows))


@router.get("/admin/students", tags=["Progress - Admin"])
def get_managed_students_progress(
    admin: CurrentUser = Depends(get_current_admin),
    service: ProgressService = Depends(get_progress_service),
):
    return success_response(progress_list(service.get_admin_students_progress(admin.id)))


@router.get("/admin/student/{student_id}", tags=["Progress - Admin"])
def get_student_progress_for_admin(
    student_id: UUID,
    admin: CurrentUser = Depends(get_current_admin),
    service: ProgressService = Depends(get_progress_service),
    db: Session = Depends(get_db),
):
    ensure_manages_student(db, admin, str(student_id))
    return success_response(progress_list(service.get_all_student_progress(str(student_id))))


@router.get("/admin/student/{student_id}/module/{module_id}", tags=["Progress - Admin"])
def get_student_module_details_for_admin(
    student_id: UUID,
    module_id: UUID,
    admin: CurrentUser = Depends(get_current_admin),
    service: ProgressService = Depends(get_progress_service),
    db: Session = Depends(get_db),
):
    ensure_manages_student(db, admin, str(student_id))
    progress, submissions = service.get_student_progress_details(str(student_id), str(module_id))
    return success_response(to_json(details_to_dto(progress, submissions)))
