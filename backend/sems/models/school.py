"""
School structure: levels, sections, students and guardian links.

These tables are owned by the student information system; the event engine
only reads them to resolve audiences and to count attendees.

Key design decisions:
- Students reach a level only through their section (no level_id column),
  so moving a section between levels moves its students too
- `is_active` is indexed because every audience count filters on it
- `app_user_id` links a student record to a student login account
"""

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from sems.db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Level(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "levels"

    name = Column(String(100), nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)

    sections = relationship("Section", back_populates="level")

    def __repr__(self) -> str:
        return f"<Level(id={self.id}, name={self.name})>"


class Section(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "sections"

    name = Column(String(100), nullable=False)
    level_id = Column(String(36), ForeignKey("levels.id", ondelete="CASCADE"), nullable=False, index=True)

    level = relationship("Level", back_populates="sections")
    students = relationship("Student", back_populates="section")

    def __repr__(self) -> str:
        return f"<Section(id={self.id}, name={self.name}, level={self.level_id})>"


class Student(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "students"

    student_number = Column(String(50), nullable=False, unique=True)
    first_name = Column(String(100), nullable=False)
    middle_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=False)
    section_id = Column(String(36), ForeignKey("sections.id", ondelete="SET NULL"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    app_user_id = Column(String(36), nullable=True, index=True)

    section = relationship("Section", back_populates="students")

    __table_args__ = (
        # Audience counts: WHERE section_id IN (...) AND is_active
        Index("ix_students_section_active", "section_id", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<Student(id={self.id}, number={self.student_number}, active={self.is_active})>"


class StudentGuardian(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "student_guardians"

    student_id = Column(String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    guardian_user_id = Column(String(36), nullable=False, index=True)
    relationship_label = Column(String(50), nullable=True)

    __table_args__ = (UniqueConstraint("student_id", "guardian_user_id", name="uq_student_guardian"),)

    def __repr__(self) -> str:
        return f"<StudentGuardian(student={self.student_id}, guardian={self.guardian_user_id})>"
