from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from typing import List, Optional
from datetime import datetime
from uuid import UUID

from noteearly.models.schema import ParagraphSubmission, StudentProgress


class CamelModel(BaseModel):
    """Snake-case attributes, camelCase JSON on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Request bodies ---

class StartProgressRequest(CamelModel):
    module_id: UUID


class SubmitSummaryRequest(CamelModel):
    module_id: UUID
    paragraph_index: int = Field(gt=0, strict=True)
    paragraph_summary: str = Field(min_length=1, max_length=1000)
    cumulative_summary: str = Field(min_length=1, max_length=10000)


class AdminUpdateProgressRequest(CamelModel):
    score: Optional[int] = Field(default=None, ge=0, le=100)
    teacher_feedback: Optional[str] = Field(default=None, max_length=2000)
    completed: Optional[bool] = None

    @model_validator(mode="after")
    def require_one_field(self):
        if not self.model_fields_set:
            raise ValueError(
                "At least one field (score, teacherFeedback, completed) must be provided for update"
            )
        return self

    def to_updates(self) -> dict:
        """Only the fields the admin actually sent, so an explicit null clears a value."""
        return self.model_dump(include=self.model_fields_set)


# --- Response DTOs ---

class StudentProgressDTO(CamelModel):
    id: str
    student_id: str
    module_id: str
    completed: bool
    score: Optional[int] = None
    highest_paragraph_index_reached: Optional[int] = None
    final_summary: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    time_spent_minutes: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    teacher_feedback: Optional[str] = None
    teacher_feedback_at: Optional[datetime] = None


class ParagraphSubmissionDTO(CamelModel):
    id: str
    student_progress_id: str
    paragraph_index: int
    paragraph_summary: str
    cumulative_summary: str
    submitted_at: datetime
    created_at: datetime
    updated_at: datetime


class StudentProgressDetailsDTO(CamelModel):
    progress: Optional[StudentProgressDTO] = None
    submissions: List[ParagraphSubmissionDTO] = []


class ProgressStatusDTO(CamelModel):
    completed: bool
    highest_paragraph_index_reached: Optional[int] = None
    final_summary: Optional[str] = None


class SubmitSummaryResultDTO(CamelModel):
    submission_id: str
    progress_status: ProgressStatusDTO


# --- Row -> DTO conversion ---

def progress_to_dto(progress: StudentProgress) -> StudentProgressDTO:
    return StudentProgressDTO(
        id=progress.id,
        student_id=progress.student_id,
        module_id=progress.module_id,
        completed=progress.completed,
        score=progress.score,
        highest_paragraph_index_reached=progress.highest_paragraph_index_reached,
        final_summary=progress.final_summary,
        started_at=progress.started_at,
        completed_at=progress.completed_at,
        time_spent_minutes=progress.time_spent_minutes,
        created_at=progress.created_at,
        updated_at=progress.updated_at,
        teacher_feedback=progress.teacher_feedback,
        teacher_feedback_at=progress.teacher_feedback_at,
    )


def submission_to_dto(submission: ParagraphSubmission) -> ParagraphSubmissionDTO:
    return ParagraphSubmissionDTO(
        id=submission.id,
        student_progress_id=submission.student_progress_id,
        paragraph_index=submission.paragraph_index,
        paragraph_summary=submission.paragraph_summary,
        cumulative_summary=submission.cumulative_summary,
        submitted_at=submission.submitted_at,
        created_at=submission.created_at,
        updated_at=submission.updated_at,
    )


def details_to_dto(
    progress: Optional[StudentProgress], submissions: List[ParagraphSubmission]
) -> StudentProgressDetailsDTO:
    return StudentProgressDetailsDTO(
        progress=progress_to_dto(progress) if progress is not None else None,
        submissions=[submission_to_dto(s) for s in submissions],
    )


def submit_result_to_dto(submission: ParagraphSubmission, progress: StudentProgress) -> SubmitSummaryResultDTO:
    return SubmitSummaryResultDTO(
        submission_id=submission.id,
        progress_status=ProgressStatusDTO(
            completed=progress.completed,
            highest_paragraph_index_reached=progress.highest_paragraph_index_reached,
            final_summary=progress.final_summary,
        ),
    )


def to_json(dto: BaseModel):
    return dto.model_dump(by_alias=True, mode="json")
