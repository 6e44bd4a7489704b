from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship, validates
from noteearly.database import Base
from noteearly.utils import new_id, utcnow


class UserRole:
    ADMIN = "ADMIN"
    STUDENT = "STUDENT"
    SUPER_ADMIN = "SUPER_ADMIN"

    ALL = (ADMIN, STUDENT, SUPER_ADMIN)


class ModuleType:
    CURATED = "curated"
    CUSTOM = "custom"


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String, primary_key=True, default=new_id)
    role = Column(String(20), nullable=False)
    # Managing admin; set only for students
    admin_id = Column(String, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True)
    full_name = Column(String(100))
    email = Column(String(255), unique=True, nullable=True)
    pin = Column(Text, nullable=True)  # hashed, students only
    age = Column(Integer, nullable=True)
    reading_level = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    admin = relationship("Profile", remote_side=[id], back_populates="students")
    students = relationship("Profile", back_populates="admin")
    progress_records = relationship("StudentProgress", back_populates="student")

    @property
    def is_student(self) -> bool:
        return self.role == UserRole.STUDENT

    @property
    def is_admin(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.SUPER_ADMIN)

    @property
    def is_super_admin(self) -> bool:
        return self.role == UserRole.SUPER_ADMIN


class ReadingModule(Base):
    __tablename__ = "reading_modules"

    id = Column(String, primary_key=True, default=new_id)
    title = Column(String(255), nullable=False)
    structured_content = Column(JSON, nullable=False, default=list)
    paragraph_count = Column(Integer, nullable=False, default=0)
    level = Column(Integer, nullable=False)
    type = Column(String(50), nullable=False, default=ModuleType.CUSTOM)
    genre = Column(String(50), nullable=False)
    language = Column(String(10), nullable=False)
    # Null for curated modules
    admin_id = Column(String, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    admin = relationship("Profile")
    progress = relationship("StudentProgress", back_populates="module")

    @validates("structured_content")
    def _renumber_paragraphs(self, key, paragraphs):
        """Keep indices 1-based and contiguous and paragraph_count in sync."""
        normalized = []
        for position, paragraph in enumerate(paragraphs or [], start=1):
            text = paragraph["text"] if isinstance(paragraph, dict) else str(paragraph)
            normalized.append({"index": position, "text": text})
        self.paragraph_count = len(normalized)
        return normalized


class StudentProgress(Base):
    __tablename__ = "student_progress"
    __table_args__ = (
        UniqueConstraint("student_id", "module_id", name="student_module_progress_uq"),
    )

    id = Column(String, primary_key=True, default=new_id)
    student_id = Column(String, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    module_id = Column(String, ForeignKey("reading_modules.id", ondelete="CASCADE"), nullable=False, index=True)

    completed = Column(Boolean, nullable=False, default=False)
    score = Column(Integer, nullable=True)
    highest_paragraph_index_reached = Column(Integer, nullable=True)
    final_summary = Column(Text, nullable=True)

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    time_spent_minutes = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    teacher_feedback = Column(Text, nullable=True)
    teacher_feedback_at = Column(DateTime, nullable=True)

    student = relationship("Profile", back_populates="progress_records")
    module = relationship("ReadingModule", back_populates="progress")
    submissions = relationship(
        "ParagraphSubmission",
        back_populates="student_progress",
        cascade="all, delete-orphan",
        order_by="ParagraphSubmission.paragraph_index",
    )


class ParagraphSubmission(Base):
    __tablename__ = "paragraph_submissions"
    __table_args__ = (
        UniqueConstraint("student_progress_id", "paragraph_index", name="progress_paragraph_idx"),
    )

    id = Column(String, primary_key=True, default=new_id)
    student_progress_id = Column(
        String, ForeignKey("student_progress.id", ondelete="CASCADE"), nullable=False, index=True
    )
    paragraph_index = Column(Integer, nullable=False)
    paragraph_summary = Column(Text, nullable=False)
    cumulative_summary = Column(Text, nullable=False)
    submitted_at = Column(DateTime, default=utcnow, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    student_progress = relationship("StudentProgress", back_populates="submissions")
