import pytest
from sqlalchemy.exc import OperationalError

from noteearly.errors import BadRequestError, InternalError, NotFoundError
from noteearly.models.schema import ParagraphSubmission, Profile, ReadingModule, StudentProgress, UserRole
from noteearly.utils import new_id

from conftest import make_module


def count(db, model):
    return db.query(model).count()


# --- start_progress ---

def test_start_progress_creates_record(service, student, module):
    progress = service.start_progress(student.id, module.id)

    assert progress.student_id == student.id
    assert progress.module_id == module.id
    assert progress.highest_paragraph_index_reached == 0
    assert progress.completed is False
    assert progress.started_at is not None
    assert progress.completed_at is None


def test_start_progress_is_idempotent(db, service, student, module):
    first, created_first = service.start_or_resume_progress(student.id, module.id)
    second, created_second = service.start_or_resume_progress(student.id, module.id)

    assert first.id == second.id
    assert created_first is True
    assert created_second is False
    assert count(db, StudentProgress) == 1


def test_start_progress_unknown_student(service, module):
    with pytest.raises(NotFoundError, match="Student not found"):
        service.start_progress(new_id(), module.id)


def test_start_progress_unknown_module(db, service, student):
    with pytest.raises(NotFoundError, match="Reading module not found"):
        service.start_progress(student.id, new_id())
    assert count(db, StudentProgress) == 0


def test_existing_progress_is_returned_without_module_check(db, service, student, module):
    progress = service.start_progress(student.id, module.id)
    module_id = module.id
    db.query(ReadingModule).filter(ReadingModule.id == module_id).delete()
    db.commit()

    assert service.start_progress(student.id, module_id).id == progress.id


def test_concurrent_start_returns_the_first_record(db, service, student, module, monkeypatch):
    winner = StudentProgress(student_id=student.id, module_id=module.id, started_at=None, completed=False)
    db.add(winner)
    db.commit()
    winner_id = winner.id

    real_find = service._find_progress
    calls = []

    def find_misses_once(student_id, module_id):
        calls.append(module_id)
        if len(calls) == 1:
            # The other request has not committed yet when this one looks
            return None
        return real_find(student_id, module_id)

    monkeypatch.setattr(service, "_find_progress", find_misses_once)
    progress, created = service.start_or_resume_progress(student.id, module.id)

    assert created is False
    assert progress.id == winner_id
    assert len(calls) == 2
    assert count(db, StudentProgress) == 1


# --- submit_paragraph_summary ---

def test_walkthrough_two_paragraph_module(db, service, student, module):
    service.start_progress(student.id, module.id)

    _, progress = service.submit_paragraph_summary(student.id, module.id, 1, "sum1", "cum1")
    assert progress.highest_paragraph_index_reached == 1
    assert progress.completed is False
    assert progress.completed_at is None
    assert progress.final_summary is None

    submission, progress = service.submit_paragraph_summary(student.id, module.id, 2, "sum2", "cum2")
    assert submission.paragraph_index == 2
    assert submission.cumulative_summary == "cum2"
    assert progress.highest_paragraph_index_reached == 2
    assert progress.completed is True
    assert progress.completed_at is not None
    assert progress.final_summary == "cum2"

    with pytest.raises(BadRequestError, match="Module already completed"):
        service.submit_paragraph_summary(student.id, module.id, 3, "sum3", "cum3")
    assert count(db, ParagraphSubmission) == 2


def test_highest_index_never_decreases(service, db, student):
    module = make_module(db, ["a", "b", "c", "d"])
    service.start_progress(student.id, module.id)

    previous = 0
    for index in (1, 2, 3):
        _, progress = service.submit_paragraph_summary(student.id, module.id, index, f"s{index}", f"c{index}")
        assert progress.highest_paragraph_index_reached >= previous
        assert progress.highest_paragraph_index_reached == index
        previous = progress.highest_paragraph_index_reached


def test_submitting_last_index_completes_without_earlier_paragraphs(service, db, student):
    module = make_module(db, ["a", "b", "c"])
    service.start_progress(student.id, module.id)

    _, progress = service.submit_paragraph_summary(student.id, module.id, 3, "only", "everything")

    assert progress.completed is True
    assert progress.final_summary == "everything"


def test_submit_before_start_is_not_found(db, service, student, module):
    with pytest.raises(NotFoundError, match="Progress not started for this module"):
        service.submit_paragraph_summary(student.id, module.id, 1, "sum", "cum")
    assert count(db, ParagraphSubmission) == 0
    assert count(db, StudentProgress) == 0


def test_submit_with_invalid_paragraph_count(db, service, student, module):
    service.start_progress(student.id, module.id)
    module.paragraph_count = 0
    db.commit()

    with pytest.raises(NotFoundError, match="invalid paragraph count"):
        service.submit_paragraph_summary(student.id, module.id, 1, "sum", "cum")
    assert count(db, ParagraphSubmission) == 0


def test_submit_index_past_last_paragraph(db, service, student, module):
    service.start_progress(student.id, module.id)

    with pytest.raises(BadRequestError, match="exceeds"):
        service.submit_paragraph_summary(student.id, module.id, 5, "sum", "cum")
    assert count(db, ParagraphSubmission) == 0


@pytest.mark.parametrize(
    "index, paragraph_summary, cumulative_summary",
    [(0, "sum", "cum"), (-1, "sum", "cum"), (1, "", "cum"), (1, "sum", "")],
)
def test_submit_rejects_missing_fields(service, student, module, index, paragraph_summary, cumulative_summary):
    with pytest.raises(BadRequestError, match="Missing required fields"):
        service.submit_paragraph_summary(student.id, module.id, index, paragraph_summary, cumulative_summary)


def test_submit_datastore_failure_is_internal_and_rolled_back(db, service, student, module, monkeypatch):
    progress = service.start_progress(student.id, module.id)

    def broken_commit():
        raise OperationalError("UPDATE student_progress", {}, Exception("connection lost"))

    monkeypatch.setattr(db, "commit", broken_commit)
    with pytest.raises(InternalError) as excinfo:
        service.submit_paragraph_summary(student.id, module.id, 1, "sum", "cum")
    monkeypatch.undo()

    assert str(excinfo.value) == "Failed to submit paragraph summary."
    assert "connection lost" not in str(excinfo.value)
    assert count(db, ParagraphSubmission) == 0
    db.expire_all()
    assert db.get(StudentProgress, progress.id).highest_paragraph_index_reached == 0


def test_duplicate_paragraph_is_rejected_without_advancing(db, service, student):
    module = make_module(db, ["a", "b", "c"])
    service.start_progress(student.id, module.id)
    service.submit_paragraph_summary(student.id, module.id, 1, "sum", "cum")

    with pytest.raises(BadRequestError, match="Summary for paragraph 1 already submitted."):
        service.submit_paragraph_summary(student.id, module.id, 1, "again", "again")

    progress, submissions = service.get_student_progress_details(student.id, module.id)
    assert len(submissions) == 1
    assert submissions[0].paragraph_summary == "sum"
    assert progress.highest_paragraph_index_reached == 1


def test_reopened_module_can_be_completed_again(db, service, student, module):
    progress = service.start_progress(student.id, module.id)
    service.submit_paragraph_summary(student.id, module.id, 1, "sum1", "cum1")
    service.submit_paragraph_summary(student.id, module.id, 2, "sum2", "cum2")
    service.update_progress(progress.id, {"completed": False}, by_teacher=True)

    with pytest.raises(BadRequestError, match="Summary for paragraph 1 already submitted."):
        service.submit_paragraph_summary(student.id, module.id, 1, "sum1b", "cum1b")

    submission, progress = service.submit_paragraph_summary(student.id, module.id, 2, "sum2b", "cum2b")

    assert submission.paragraph_summary == "sum2b"
    assert progress.completed is True
    assert progress.completed_at is not None
    assert progress.final_summary == "cum2b"
    assert progress.highest_paragraph_index_reached == 2
    assert count(db, ParagraphSubmission) == 2


# --- get_student_progress_details ---

def test_details_without_progress(service, student, module):
    progress, submissions = service.get_student_progress_details(student.id, module.id)
    assert progress is None
    assert submissions == []


def test_details_requires_ids(service, student):
    with pytest.raises(BadRequestError, match="Student ID and Module ID are required."):
        service.get_student_progress_details(student.id, "")
    with pytest.raises(BadRequestError):
        service.get_student_progress_details("", new_id())


def test_details_lists_submissions_in_paragraph_order(service, db, student):
    module = make_module(db, ["a", "b", "c", "d"])
    service.start_progress(student.id, module.id)
    # Order is only enforced by the client, so submit out of order here
    for index in (2, 1, 3):
        service.submit_paragraph_summary(student.id, module.id, index, f"s{index}", f"c{index}")

    progress, submissions = service.get_student_progress_details(student.id, module.id)

    assert [s.paragraph_index for s in submissions] == [1, 2, 3]
    assert progress.highest_paragraph_index_reached == 3
    assert progress.completed is False


# --- read accessors ---

def test_keyed_lookups_return_none_when_absent(service, student, module):
    assert service.get_student_module_progress(student.id, module.id) is None
    assert service.get_progress_by_id(new_id()) is None

    progress = service.start_progress(student.id, module.id)
    assert service.get_student_module_progress(student.id, module.id).id == progress.id
    assert service.get_progress_by_id(progress.id).id == progress.id


def test_all_student_progress(service, db, student, module):
    other = make_module(db, ["x"], title="Other")
    service.start_progress(student.id, module.id)
    service.start_progress(student.id, other.id)

    rows = service.get_all_student_progress(student.id)
    assert {row.module_id for row in rows} == {module.id, other.id}

    with pytest.raises(NotFoundError, match="Student not found"):
        service.get_all_student_progress(new_id())


def test_all_module_progress(service, db, admin, student, module):
    classmate = Profile(role=UserRole.STUDENT, full_name="Alex", admin_id=admin.id)
    db.add(classmate)
    db.commit()
    service.start_progress(student.id, module.id)
    service.start_progress(classmate.id, module.id)

    rows = service.get_all_module_progress(module.id)
    assert {row.student_id for row in rows} == {student.id, classmate.id}

    with pytest.raises(NotFoundError, match="Reading module not found"):
        service.get_all_module_progress(new_id())


def test_admin_students_progress_only_includes_managed_students(service, db, admin, other_admin, student, module):
    outsider = Profile(role=UserRole.STUDENT, full_name="Jo", admin_id=other_admin.id)
    db.add(outsider)
    db.commit()
    service.start_progress(student.id, module.id)
    service.start_progress(outsider.id, module.id)

    rows = service.get_admin_students_progress(admin.id)
    assert [row.student_id for row in rows] == [student.id]

    with pytest.raises(NotFoundError, match="Admin not found"):
        service.get_admin_students_progress(student.id)


# --- update_progress ---

def test_teacher_grading_sets_feedback_timestamp(service, student, module):
    progress = service.start_progress(student.id, module.id)

    updated = service.update_progress(
        progress.id, {"score": 85, "teacher_feedback": "Lovely summaries."}, by_teacher=True
    )

    assert updated.score == 85
    assert updated.teacher_feedback == "Lovely summaries."
    assert updated.teacher_feedback_at is not None


def test_completion_override_keeps_record_consistent(service, student, module):
    progress = service.start_progress(student.id, module.id)

    updated = service.update_progress(progress.id, {"completed": True}, by_teacher=True)
    assert updated.completed is True
    assert updated.completed_at is not None
    assert updated.highest_paragraph_index_reached == module.paragraph_count

    reopened = service.update_progress(progress.id, {"completed": False}, by_teacher=True)
    assert reopened.completed is False
    assert reopened.completed_at is None


def test_update_without_effective_changes_returns_record(service, student, module):
    progress = service.start_progress(student.id, module.id)
    before = progress.updated_at

    unchanged = service.update_progress(progress.id, {"completed": False})

    assert unchanged.id == progress.id
    assert unchanged.updated_at == before


def test_update_missing_record(service):
    with pytest.raises(NotFoundError, match="Progress record not found"):
        service.update_progress(new_id(), {"score": 10})
