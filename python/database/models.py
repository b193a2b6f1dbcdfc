"""
SQLAlchemy ORM Models for the Training Tracker

Tables:
1. people - Tracked individuals, unique by (case-folded) email
2. users - Login accounts, optionally linked 1:1 to a person
3. user_sessions - Server-side login sessions
4. categories - Course categories (get-or-create by name)
5. providers - Course providers (get-or-create by name)
6. courses - Internal training offerings with an optional validity window
7. training_records - Course completions with a frozen expiry date
8. third_party_certifications - Externally issued credentials
9. attachments - Uploaded evidence owned by one record or one certificate

Status (current / expiring soon / expired) is never stored. It is
derived at read time by status_classifier.classify().
"""

from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import (
    String, Integer, Boolean, Date, DateTime, Text,
    ForeignKey, Index, CheckConstraint
)
from sqlalchemy.orm import relationship, declarative_base, Mapped, mapped_column
from sqlalchemy.sql import func

from access_policy import Role

# Base class for all models
Base = declarative_base()


# ============================================
# MIXIN CLASSES
# ============================================

class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


# ============================================
# IDENTITY MODELS
# ============================================

class Person(Base, TimestampMixin):
    """
    A tracked individual.

    People are created only by upsert-by-email: on registration, on
    login sync, or when a training record is submitted for an unknown
    email. A person does not need a login account.
    """
    __tablename__ = "people"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    user: Mapped[Optional["User"]] = relationship(
        "User",
        back_populates="person",
        uselist=False
    )
    training_records: Mapped[List["TrainingRecord"]] = relationship(
        "TrainingRecord",
        back_populates="person",
        cascade="all, delete-orphan"
    )
    certifications: Mapped[List["ThirdPartyCertification"]] = relationship(
        "ThirdPartyCertification",
        back_populates="person",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index('ix_people_display_name', 'display_name'),
        Index('ix_people_active', 'is_active'),
    )

    def __repr__(self) -> str:
        return f"<Person(id={self.id}, email='{self.email}')>"


class User(Base, TimestampMixin):
    """Login account with a role"""
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    username: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=Role.USER.value)
    person_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("people.id", ondelete="SET NULL"),
        nullable=True,
        unique=True
    )

    person: Mapped[Optional["Person"]] = relationship(
        "Person",
        back_populates="user"
    )
    sessions: Mapped[List["UserSession"]] = relationship(
        "UserSession",
        back_populates="user",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "role IN ('admin', 'manager', 'user')",
            name='ck_users_role'
        ),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', role={self.role})>"


class UserSession(Base):
    """
    Server-side login session.

    The cookie only carries the opaque token. Role and person are
    snapshotted here at login and refreshed when an admin changes the
    account's role.
    """
    __tablename__ = "user_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    person_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="sessions")

    __table_args__ = (
        Index('ix_sessions_expires', 'expires_at'),
    )

    def __repr__(self) -> str:
        return f"<UserSession(id={self.id}, user_id={self.user_id}, role={self.role})>"


# ============================================
# CATALOG MODELS
# ============================================

class Category(Base, TimestampMixin):
    """Course category"""
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    def __repr__(self) -> str:
        return f"<Category(id={self.id}, name='{self.name}')>"


class Provider(Base, TimestampMixin):
    """Course provider"""
    __tablename__ = "providers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)

    def __repr__(self) -> str:
        return f"<Provider(id={self.id}, name='{self.name}')>"


class Course(Base, TimestampMixin):
    """
    Internal training offering.

    validity_days NULL means completions never expire. Changing it does
    not touch existing training records.
    """
    __tablename__ = "courses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    course_type: Mapped[str] = mapped_column(
        "type", String(100), nullable=False, default="Individual Training"
    )
    category_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("categories.id", ondelete="SET NULL"),
        nullable=True
    )
    provider_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("providers.id", ondelete="SET NULL"),
        nullable=True
    )
    validity_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    category: Mapped[Optional["Category"]] = relationship("Category", lazy="joined")
    provider: Mapped[Optional["Provider"]] = relationship("Provider", lazy="joined")
    training_records: Mapped[List["TrainingRecord"]] = relationship(
        "TrainingRecord",
        back_populates="course"
    )

    __table_args__ = (
        CheckConstraint(
            'validity_days IS NULL OR validity_days >= 0',
            name='ck_courses_validity'
        ),
        Index('ix_courses_active', 'is_active'),
    )

    @property
    def category_name(self) -> Optional[str]:
        return self.category.name if self.category else None

    @property
    def provider_name(self) -> Optional[str]:
        return self.provider.name if self.provider else None

    def __repr__(self) -> str:
        return f"<Course(id={self.id}, name='{self.name}', validity_days={self.validity_days})>"


# ============================================
# RECORD MODELS
# ============================================

class TrainingRecord(Base, TimestampMixin):
    """
    Completion of a course by a person.

    expiry_date is computed once when the record is created (or when
    its completion date or course is edited) and stored.
    """
    __tablename__ = "training_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    person_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("people.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    course_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("courses.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    completion_date: Mapped[date] = mapped_column(Date, nullable=False)
    expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    assessor: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    person: Mapped["Person"] = relationship("Person", back_populates="training_records")
    course: Mapped["Course"] = relationship("Course", back_populates="training_records")
    attachments: Mapped[List["Attachment"]] = relationship(
        "Attachment",
        back_populates="training_record",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    __table_args__ = (
        CheckConstraint(
            'expiry_date IS NULL OR expiry_date >= completion_date',
            name='ck_training_records_expiry'
        ),
        Index('ix_training_records_expiry', 'expiry_date'),
    )

    def __repr__(self) -> str:
        return f"<TrainingRecord(id={self.id}, person_id={self.person_id}, course_id={self.course_id})>"


class ThirdPartyCertification(Base, TimestampMixin):
    """Externally issued credential with a user-supplied expiry"""
    __tablename__ = "third_party_certifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    person_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("people.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    provider: Mapped[str] = mapped_column(String(200), nullable=False)
    completion_date: Mapped[date] = mapped_column(Date, nullable=False)
    expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    person: Mapped["Person"] = relationship("Person", back_populates="certifications")
    attachments: Mapped[List["Attachment"]] = relationship(
        "Attachment",
        back_populates="certification",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    __table_args__ = (
        CheckConstraint(
            'expiry_date IS NULL OR expiry_date >= completion_date',
            name='ck_third_party_expiry'
        ),
        Index('ix_third_party_expiry', 'expiry_date'),
    )

    def __repr__(self) -> str:
        return f"<ThirdPartyCertification(id={self.id}, person_id={self.person_id}, title='{self.title}')>"


class Attachment(Base, TimestampMixin):
    """Uploaded file owned by exactly one record or one certificate"""
    __tablename__ = "attachments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    training_record_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("training_records.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )
    certification_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("third_party_certifications.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )
    file_path: Mapped[str] = mapped_column(String(500), nullable=False)
    file_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    mime_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    training_record: Mapped[Optional["TrainingRecord"]] = relationship(
        "TrainingRecord",
        back_populates="attachments"
    )
    certification: Mapped[Optional["ThirdPartyCertification"]] = relationship(
        "ThirdPartyCertification",
        back_populates="attachments"
    )

    __table_args__ = (
        CheckConstraint(
            '(training_record_id IS NULL) <> (certification_id IS NULL)',
            name='ck_attachments_single_owner'
        ),
    )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'file_path': self.file_path,
            'file_name': self.file_name,
            'mime_type': self.mime_type,
        }

    def __repr__(self) -> str:
        return f"<Attachment(id={self.id}, file_path='{self.file_path}')>"


# ============================================
# HELPER FUNCTIONS
# ============================================

def display_name_for(email: str, username: Optional[str] = None) -> str:
    """Display name used when a person is created implicitly

    Args:
        email: Person email
        username: Optional account username

    Returns:
        The username when given, otherwise the email
    """
    if username and username.strip():
        return username.strip()
    return email
