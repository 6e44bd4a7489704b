from typing import Any, Dict, List, Optional, Tuple
from datetime import datetime
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from noteearly.errors import AppError, BadRequestError, InternalError, NotFoundError
from noteearly.models.schema import (
    ParagraphSubmission,
    Profile,
    ReadingModule,
    StudentProgress,
    UserRole,
)
from noteearly.utils import utcnow

logger = logging.getLogger(__name__)

# Fields an admin (or an internal caller) may change on a progress record
UPDATABLE_FIELDS = ("completed", "score", "time_spent_minutes", "teacher_feedback")


class ProgressService:
    """Tracks a student's paragraph-by-paragraph work through a reading module.

    One StudentProgress row exists per (student, module). Every accepted
    paragraph summary appends a ParagraphSubmission and advances that row;
    submitting the module's last paragraph completes it, after which no
    further submissions are accepted.
    """

    def __init__(self, db: Session):
        self.db = db

    # --- lookups -------------------------------------------------------

    def _find_progress(self, student_id: str, module_id: str) -> Optional[StudentProgress]:
        return (
            self.db.query(StudentProgress)
            .filter(StudentProgress.student_id == student_id, StudentProgress.module_id == module_id)
            .first()
        )

    def _profile_exists(self, profile_id: str) -> bool:
        return self.db.query(Profile.id).filter(Profile.id == profile_id).first() is not None

    def _module_exists(self, module_id: str) -> bool:
        return self.db.query(ReadingModule.id).filter(ReadingModule.id == module_id).first() is not None

    # --- starting ------------------------------------------------------

    def start_progress(self, student_id: str, module_id: str) -> StudentProgress:
        """Create the progress record for a student/module pair, or return the existing one."""
        progress, _ = self.start_or_resume_progress(student_id, module_id)
        return progress

    def start_or_resume_progress(self, student_id: str, module_id: str) -> Tuple[StudentProgress, bool]:
        """Like start_progress, but also reports whether a new record was created."""
        try:
            existing = self._find_progress(student_id, module_id)
            if existing:
                logger.info(
                    f"Progress already started, returning existing record {existing.id} "
                    f"(student={student_id}, module={module_id})"
                )
                return existing, False

            if not self._profile_exists(student_id):
                raise NotFoundError("Student not found")
            if not self._module_exists(module_id):
                raise NotFoundError("Reading module not found")

            now = utcnow()
            progress = StudentProgress(
                student_id=student_id,
                module_id=module_id,
                started_at=now,
                highest_paragraph_index_reached=0,
                completed=False,
                created_at=now,
                updated_at=now,
            )
            self.db.add(progress)
            try:
                self.db.commit()
            except IntegrityError:
                # Another request started the same pair first
                self.db.rollback()
                winner = self._find_progress(student_id, module_id)
                if winner is None:
                    raise
                return winner, False

            self.db.refresh(progress)
            logger.info(f"Progress started: {progress.id} (student={student_id}, module={module_id})")
            return progress, True

        except AppError:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error starting progress tracking (student={student_id}, module={module_id}): {e}")
            raise InternalError("Failed to start progress tracking") from e

    # --- submitting ----------------------------------------------------

    def submit_paragraph_summary(
        self,
        student_id: str,
        module_id: str,
        paragraph_index: int,
        paragraph_summary: str,
        cumulative_summary: str,
    ) -> Tuple[ParagraphSubmission, StudentProgress]:
        """Record one paragraph's summary and advance (or complete) the student's progress.

        The submission insert and the progress update are committed together,
        so a failure leaves neither behind. Paragraph order is not enforced
        here; completion happens when the last paragraph's index is submitted.
        """
        if (
            not student_id
            or not module_id
            or not paragraph_index
            or paragraph_index <= 0
            or not paragraph_summary
            or not cumulative_summary
        ):
            raise BadRequestError("Missing required fields for paragraph submission.")

        payload: Dict[str, Any] = {
            "student_id": student_id,
            "module_id": module_id,
            "paragraph_index": paragraph_index,
            "paragraph_summary": paragraph_summary,
            "cumulative_summary": cumulative_summary,
        }

        try:
            progress = self._find_progress(student_id, module_id)
            if not progress:
                logger.warning(
                    f"Attempted to submit summary for non-existent progress record "
                    f"(student={student_id}, module={module_id})"
                )
                raise NotFoundError("Progress not started for this module. Cannot submit summary.")

            if progress.completed:
                raise BadRequestError("Module already completed. Cannot submit further summaries.")

            module = self.db.query(ReadingModule).filter(ReadingModule.id == module_id).first()
            if not module or not isinstance(module.paragraph_count, int) or module.paragraph_count <= 0:
                logger.error(f"Module data not found or invalid paragraph count (module={module_id})")
                raise NotFoundError("Module data not found or invalid paragraph count.")

            total_paragraphs = module.paragraph_count
            # Stricter than completing on index >= count; see DESIGN.md decision 4
            if paragraph_index > total_paragraphs:
                raise BadRequestError("Paragraph index exceeds the module's paragraph count.")

            submission = (
                self.db.query(ParagraphSubmission)
                .filter(
                    ParagraphSubmission.student_progress_id == progress.id,
                    ParagraphSubmission.paragraph_index == paragraph_index,
                )
                .first()
            )
            # Only a reopened record can reach its last paragraph again; that one is revised
            if submission and paragraph_index != total_paragraphs:
                raise BadRequestError(f"Summary for paragraph {paragraph_index} already submitted.")

            now = utcnow()
            if submission:
                submission.paragraph_summary = paragraph_summary
                submission.cumulative_summary = cumulative_summary
                submission.submitted_at = now
                submission.updated_at = now
            else:
                submission = ParagraphSubmission(
                    student_progress_id=progress.id,
                    paragraph_index=paragraph_index,
                    paragraph_summary=paragraph_summary,
                    cumulative_summary=cumulative_summary,
                    submitted_at=now,
                    created_at=now,
                    updated_at=now,
                )
                self.db.add(submission)

            is_complete = paragraph_index == total_paragraphs
            progress.highest_paragraph_index_reached = max(
                progress.highest_paragraph_index_reached or 0, paragraph_index
            )
            progress.updated_at = now
            if is_complete:
                progress.completed = True
                progress.completed_at = now
                progress.final_summary = cumulative_summary

            self.db.commit()
            self.db.refresh(submission)
            self.db.refresh(progress)

            logger.info(
                f"Paragraph summary submitted: submission={submission.id} progress={progress.id} "
                f"paragraph={paragraph_index}/{total_paragraphs} completed={is_complete}"
            )
            return submission, progress

        except AppError:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error submitting paragraph summary {payload}: {e!r}")
            raise InternalError("Failed to submit paragraph summary.") from e

    # --- grading -------------------------------------------------------

    def update_progress(
        self, progress_id: str, updates: Dict[str, Any], by_teacher: bool = False
    ) -> StudentProgress:
        """Apply an admin's grading patch (score, feedback, completion override).

        Only keys present in ``updates`` are touched, so an explicit None
        clears a value while an absent key leaves it alone.
        """
        try:
            progress = self.db.query(StudentProgress).filter(StudentProgress.id == progress_id).first()
            if not progress:
                raise NotFoundError("Progress record not found")

            now = utcnow()
            changed = False
            for field in UPDATABLE_FIELDS:
                if field not in updates:
                    continue
                value = updates[field]
                if field == "completed":
                    if value is not None:
                        changed |= self._apply_completion_override(progress, bool(value), now)
                    continue
                setattr(progress, field, value)
                changed = True

            if by_teacher and updates.get("teacher_feedback"):
                progress.teacher_feedback_at = now

            if not changed:
                logger.warning(f"Update progress called with no effective changes (progress={progress_id})")
                return progress

            progress.updated_at = now
            self.db.commit()
            self.db.refresh(progress)
            logger.info(f"Progress record updated: {progress_id} (by_teacher={by_teacher})")
            return progress

        except AppError:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error updating progress {progress_id} with {updates}: {e!r}")
            raise InternalError("Failed to update progress") from e

    def _apply_completion_override(self, progress: StudentProgress, completed: bool, now: datetime) -> bool:
        if completed == progress.completed:
            return False
        progress.completed = completed
        if completed:
            progress.completed_at = now
            # A completed record has reached the module's last paragraph
            module = self.db.query(ReadingModule).filter(ReadingModule.id == progress.module_id).first()
            if module and module.paragraph_count:
                progress.highest_paragraph_index_reached = max(
                    progress.highest_paragraph_index_reached or 0, module.paragraph_count
                )
        else:
            progress.completed_at = None
        return True

    # --- reads ---------------------------------------------------------

    def get_student_progress_details(
        self, student_id: str, module_id: str
    ) -> Tuple[Optional[StudentProgress], List[ParagraphSubmission]]:
        """Progress record plus its submissions in paragraph order; (None, []) if not started."""
        if not student_id or not module_id:
            raise BadRequestError("Student ID and Module ID are required.")

        try:
            progress = self._find_progress(student_id, module_id)
            if not progress:
                return None, []

            submissions = (
                self.db.query(ParagraphSubmission)
                .filter(ParagraphSubmission.student_progress_id == progress.id)
                .order_by(ParagraphSubmission.paragraph_index.asc())
                .all()
            )
            return progress, submissions

        except AppError:
            raise
        except Exception as e:
            logger.error(f"Error getting student progress details (student={student_id}, module={module_id}): {e!r}")
            raise InternalError("Failed to get student progress details.") from e

    def get_student_module_progress(self, student_id: str, module_id: str) -> Optional[StudentProgress]:
        try:
            return self._find_progress(student_id, module_id)
        except Exception as e:
            logger.error(f"Error getting student module progress (student={student_id}, module={module_id}): {e!r}")
            raise InternalError("Failed to get student module progress") from e

    def get_progress_by_id(self, progress_id: str) -> Optional[StudentProgress]:
        try:
            return self.db.query(StudentProgress).filter(StudentProgress.id == progress_id).first()
        except Exception as e:
            logger.error(f"Error getting progress by ID {progress_id}: {e!r}")
            raise InternalError("Failed to get progress by ID") from e

    def get_all_student_progress(self, student_id: str) -> List[StudentProgress]:
        try:
            if not self._profile_exists(student_id):
                raise NotFoundError("Student not found")

            return (
                self.db.query(StudentProgress)
                .filter(StudentProgress.student_id == student_id)
                .order_by(StudentProgress.updated_at.desc())
                .all()
            )
        except AppError:
            raise
        except Exception as e:
            logger.error(f"Error getting all student progress (student={student_id}): {e!r}")
            raise InternalError("Failed to get student progress") from e

    def get_all_module_progress(self, module_id: str) -> List[StudentProgress]:
        try:
            if not self._module_exists(module_id):
                raise NotFoundError("Reading module not found")

            return (
                self.db.query(StudentProgress)
                .filter(StudentProgress.module_id == module_id)
                .order_by(StudentProgress.updated_at.desc())
                .all()
            )
        except AppError:
            raise
        except Exception as e:
            logger.error(f"Error getting all module progress (module={module_id}): {e!r}")
            raise InternalError("Failed to get module progress") from e

    def get_admin_students_progress(self, admin_id: str) -> List[StudentProgress]:
        """Progress records of every student managed by the given admin."""
        try:
            admin = self.db.query(Profile).filter(Profile.id == admin_id).first()
            if not admin or not admin.is_admin:
                raise NotFoundError("Admin not found")

            return (
                self.db.query(StudentProgress)
                .join(Profile, Profile.id == StudentProgress.student_id)
                .filter(Profile.admin_id == admin_id, Profile.role == UserRole.STUDENT)
                .order_by(StudentProgress.updated_at.desc())
                .all()
            )
        except AppError:
            raise
        except Exception as e:
            logger.error(f"Error getting students progress for admin {admin_id}: {e!r}")
            raise InternalError("Failed to get admin students progress") from e
