"""
Repository Pattern for Training Tracker Database Operations

Provides clean data access layer with proper typing and error handling.
Repositories only flush; the caller owns the transaction.
"""

import logging
from datetime import date, datetime
from typing import List, Optional, Tuple

from sqlalchemy import select, func, delete, update, or_
from sqlalchemy.orm import Session, joinedload, selectinload
from sqlalchemy.exc import IntegrityError

from database.models import (
    Person,
    User,
    UserSession,
    Category,
    Provider,
    Course,
    TrainingRecord,
    ThirdPartyCertification,
    Attachment,
)
from text_utils import normalize_email

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class EntityNotFoundError(RepositoryError):
    """Raised when an entity is not found."""
    pass


class DuplicateEntityError(RepositoryError):
    """Raised when attempting to create a duplicate entity."""
    pass


def like_pattern(term: str) -> str:
    """Wrap a search term for a LIKE query, escaping wildcards"""
    escaped = term.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
    return f"%{escaped}%"


# ============================================
# PERSON REPOSITORY
# ============================================

class PersonRepository:
    """Repository for people. Email is the natural key."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, person_id: int) -> Optional[Person]:
        return self.session.get(Person, person_id)

    def get(self, person_id: int) -> Person:
        """
        Get a person by ID.

        Raises:
            EntityNotFoundError: If no such person exists
        """
        person = self.get_by_id(person_id)
        if person is None:
            raise EntityNotFoundError(f"Person {person_id} not found")
        return person

    def get_by_email(self, email: str) -> Optional[Person]:
        query = select(Person).where(Person.email == normalize_email(email))
        return self.session.execute(query).scalar_one_or_none()

    def upsert_by_email(self, email: str, display_name: str) -> Tuple[Person, bool]:
        """
        Find a person by email, creating one if absent.

        The display name of an existing person is left untouched.

        Args:
            email: Email address (normalized here)
            display_name: Name to use when creating

        Returns:
            Tuple of (person, created)
        """
        normalized = normalize_email(email)
        person = self.get_by_email(normalized)
        if person is not None:
            return person, False

        person = Person(email=normalized, display_name=display_name.strip() or normalized, is_active=True)
        self.session.add(person)
        self.session.flush()
        logger.info(f"Created person {person.id}")
        return person, True

    def list_active(self) -> List[Person]:
        query = (
            select(Person)
            .where(Person.is_active == True)  # noqa: E712
            .options(joinedload(Person.user))
            .order_by(Person.display_name)
        )
        return list(self.session.execute(query).unique().scalars().all())

    def count_active(self) -> int:
        query = select(func.count(Person.id)).where(Person.is_active == True)  # noqa: E712
        return self.session.execute(query).scalar() or 0


# ============================================
# USER REPOSITORY
# ============================================

class UserRepository:
    """Repository for login accounts."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    def get_by_email(self, email: str) -> Optional[User]:
        query = select(User).where(User.email == normalize_email(email))
        return self.session.execute(query).scalar_one_or_none()

    def get_by_person_id(self, person_id: int) -> Optional[User]:
        query = select(User).where(User.person_id == person_id)
        return self.session.execute(query).scalar_one_or_none()

    def create(
        self,
        email: str,
        password_hash: str,
        role: str,
        username: Optional[str] = None,
        person_id: Optional[int] = None
    ) -> User:
        """
        Create a new account.

        Raises:
            DuplicateEntityError: If an account with this email exists
        """
        normalized = normalize_email(email)
        if self.get_by_email(normalized) is not None:
            raise DuplicateEntityError(f"An account for {normalized} already exists")

        try:
            user = User(
                email=normalized,
                password_hash=password_hash,
                role=role,
                username=username,
                person_id=person_id
            )
            self.session.add(user)
            self.session.flush()
            logger.info(f"Created user {user.id} with role {role}")
            return user
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateEntityError(f"Account already exists: {e.orig}")


# ============================================
# SESSION REPOSITORY
# ============================================

class SessionRepository:
    """Repository for server-side login sessions."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, user: User, token: str, expires_at: datetime) -> UserSession:
        login_session = UserSession(
            token=token,
            user_id=user.id,
            person_id=user.person_id,
            role=user.role,
            expires_at=expires_at
        )
        self.session.add(login_session)
        self.session.flush()
        return login_session

    def get_active(self, token: str, now: datetime) -> Optional[UserSession]:
        """Return the session for a token if it has not expired"""
        query = select(UserSession).where(
            UserSession.token == token,
            UserSession.expires_at > now
        )
        return self.session.execute(query).scalar_one_or_none()

    def delete(self, token: str) -> bool:
        result = self.session.execute(delete(UserSession).where(UserSession.token == token))
        return (result.rowcount or 0) > 0

    def update_role_for_user(self, user_id: int, role: str) -> int:
        """Refresh the role snapshot on every session of an account"""
        result = self.session.execute(
            update(UserSession).where(UserSession.user_id == user_id).values(role=role)
        )
        return result.rowcount or 0

    def purge_expired(self, now: datetime) -> int:
        """Delete every session that expired at or before now"""
        result = self.session.execute(
            delete(UserSession)
            .where(UserSession.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


# ============================================
# COURSE REPOSITORY
# ============================================

class CourseRepository:
    """Repository for courses and their lookup tables."""

    def __init__(self, session: Session):
        self.session = session

    def get_or_create_category(self, name: str) -> Category:
        query = select(Category).where(Category.name == name)
        category = self.session.execute(query).scalar_one_or_none()
        if category is None:
            category = Category(name=name)
            self.session.add(category)
            self.session.flush()
            logger.debug(f"Created category {category.id} ({name})")
        return category

    def get_or_create_provider(self, name: str) -> Provider:
        query = select(Provider).where(Provider.name == name)
        provider = self.session.execute(query).scalar_one_or_none()
        if provider is None:
            provider = Provider(name=name)
            self.session.add(provider)
            self.session.flush()
            logger.debug(f"Created provider {provider.id} ({name})")
        return provider

    def get_by_id(self, course_id: int) -> Optional[Course]:
        return self.session.get(Course, course_id)

    def get(self, course_id: int) -> Course:
        """
        Get a course by ID.

        Raises:
            EntityNotFoundError: If no such course exists
        """
        course = self.get_by_id(course_id)
        if course is None:
            raise EntityNotFoundError(f"Course {course_id} not found")
        return course

    def get_by_name(self, name: str) -> Optional[Course]:
        query = select(Course).where(Course.name == name)
        return self.session.execute(query).unique().scalar_one_or_none()

    def create(
        self,
        name: str,
        course_type: str,
        category: Optional[Category] = None,
        provider: Optional[Provider] = None,
        description: Optional[str] = None,
        validity_days: Optional[int] = None
    ) -> Course:
        """
        Create a new course.

        Raises:
            DuplicateEntityError: If a course with the same name exists
        """
        if self.get_by_name(name) is not None:
            raise DuplicateEntityError(f"Course '{name}' already exists")

        try:
            course = Course(
                name=name,
                description=description,
                course_type=course_type,
                category=category,
                provider=provider,
                validity_days=validity_days,
                is_active=True
            )
            self.session.add(course)
            self.session.flush()
            logger.info(f"Created course {course.id} ({name})")
            return course
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateEntityError(f"Course already exists: {e.orig}")

    def list_active(self) -> List[Course]:
        query = (
            select(Course)
            .where(Course.is_active == True)  # noqa: E712
            .order_by(Course.name)
        )
        return list(self.session.execute(query).unique().scalars().all())

    def count_active(self) -> int:
        query = select(func.count(Course.id)).where(Course.is_active == True)  # noqa: E712
        return self.session.execute(query).scalar() or 0


# ============================================
# TRAINING RECORD REPOSITORY
# ============================================

class TrainingRecordRepository:
    """Repository for internal training records."""

    def __init__(self, session: Session):
        self.session = session

    def _base_query(self):
        return select(TrainingRecord).options(
            joinedload(TrainingRecord.person),
            joinedload(TrainingRecord.course),
            selectinload(TrainingRecord.attachments)
        )

    def create(
        self,
        person: Person,
        course: Course,
        completion_date: date,
        expiry_date: Optional[date],
        notes: Optional[str] = None,
        assessor: Optional[str] = None
    ) -> TrainingRecord:
        record = TrainingRecord(
            person=person,
            course=course,
            completion_date=completion_date,
            expiry_date=expiry_date,
            notes=notes,
            assessor=assessor
        )
        self.session.add(record)
        self.session.flush()
        logger.info(f"Created training record {record.id} for person {person.id}")
        return record

    def get_by_id(self, record_id: int) -> Optional[TrainingRecord]:
        query = self._base_query().where(TrainingRecord.id == record_id)
        return self.session.execute(query).unique().scalar_one_or_none()

    def get(self, record_id: int) -> TrainingRecord:
        """
        Get a training record by ID.

        Raises:
            EntityNotFoundError: If no such record exists
        """
        record = self.get_by_id(record_id)
        if record is None:
            raise EntityNotFoundError(f"Training record {record_id} not found")
        return record

    def owner_of(self, record_id: int) -> Optional[int]:
        query = select(TrainingRecord.person_id).where(TrainingRecord.id == record_id)
        return self.session.execute(query).scalar_one_or_none()

    def list(
        self,
        search: Optional[str] = None,
        person_id: Optional[int] = None,
        course_id: Optional[int] = None,
        expiring_between: Optional[Tuple[date, date]] = None
    ) -> List[TrainingRecord]:
        """
        List training records with optional filters.

        Args:
            search: Matches person name, person email or course name
            person_id: Restrict to one person
            course_id: Restrict to one course
            expiring_between: Inclusive (start, end) expiry window

        Returns:
            Records ordered by completion date, newest first
        """
        query = (
            self._base_query()
            .join(TrainingRecord.person)
            .join(TrainingRecord.course)
        )
        if search:
            pattern = like_pattern(search)
            query = query.where(or_(
                Person.display_name.ilike(pattern, escape='\\'),
                Person.email.ilike(pattern, escape='\\'),
                Course.name.ilike(pattern, escape='\\')
            ))
        if person_id is not None:
            query = query.where(TrainingRecord.person_id == person_id)
        if course_id is not None:
            query = query.where(TrainingRecord.course_id == course_id)
        if expiring_between is not None:
            start, end = expiring_between
            query = query.where(TrainingRecord.expiry_date.between(start, end))
        query = query.order_by(TrainingRecord.completion_date.desc(), TrainingRecord.id.desc())
        return list(self.session.execute(query).unique().scalars().all())

    def expiry_dates(self) -> List[Optional[date]]:
        return list(self.session.execute(select(TrainingRecord.expiry_date)).scalars().all())

    def delete(self, record: TrainingRecord) -> None:
        self.session.delete(record)
        self.session.flush()
        logger.info(f"Deleted training record {record.id}")


# ============================================
# THIRD-PARTY CERTIFICATION REPOSITORY
# ============================================

class ThirdPartyRepository:
    """Repository for third-party certifications."""

    def __init__(self, session: Session):
        self.session = session

    def _base_query(self):
        return select(ThirdPartyCertification).options(
            joinedload(ThirdPartyCertification.person),
            selectinload(ThirdPartyCertification.attachments)
        )

    def create(
        self,
        person: Person,
        title: str,
        provider: str,
        completion_date: date,
        expiry_date: Optional[date] = None,
        notes: Optional[str] = None
    ) -> ThirdPartyCertification:
        cert = ThirdPartyCertification(
            person=person,
            title=title,
            provider=provider,
            completion_date=completion_date,
            expiry_date=expiry_date,
            notes=notes
        )
        self.session.add(cert)
        self.session.flush()
        logger.info(f"Created third-party certificate {cert.id} for person {person.id}")
        return cert

    def get_by_id(self, cert_id: int) -> Optional[ThirdPartyCertification]:
        query = self._base_query().where(ThirdPartyCertification.id == cert_id)
        return self.session.execute(query).unique().scalar_one_or_none()

    def get(self, cert_id: int) -> ThirdPartyCertification:
        """
        Get a certificate by ID.

        Raises:
            EntityNotFoundError: If no such certificate exists
        """
        cert = self.get_by_id(cert_id)
        if cert is None:
            raise EntityNotFoundError(f"Third-party certificate {cert_id} not found")
        return cert

    def owner_of(self, cert_id: int) -> Optional[int]:
        query = select(ThirdPartyCertification.person_id).where(ThirdPartyCertification.id == cert_id)
        return self.session.execute(query).scalar_one_or_none()

    def list(
        self,
        search: Optional[str] = None,
        person_id: Optional[int] = None,
        expiring_between: Optional[Tuple[date, date]] = None
    ) -> List[ThirdPartyCertification]:
        """
        List certificates with optional filters.

        Args:
            search: Matches person name, person email or certificate title
            person_id: Restrict to one person
            expiring_between: Inclusive (start, end) expiry window

        Returns:
            Certificates ordered by completion date, newest first
        """
        query = self._base_query().join(ThirdPartyCertification.person)
        if search:
            pattern = like_pattern(search)
            query = query.where(or_(
                Person.display_name.ilike(pattern, escape='\\'),
                Person.email.ilike(pattern, escape='\\'),
                ThirdPartyCertification.title.ilike(pattern, escape='\\')
            ))
        if person_id is not None:
            query = query.where(ThirdPartyCertification.person_id == person_id)
        if expiring_between is not None:
            start, end = expiring_between
            query = query.where(ThirdPartyCertification.expiry_date.between(start, end))
        query = query.order_by(
            ThirdPartyCertification.completion_date.desc(),
            ThirdPartyCertification.id.desc()
        )
        return list(self.session.execute(query).unique().scalars().all())

    def expiry_dates(self) -> List[Optional[date]]:
        return list(self.session.execute(select(ThirdPartyCertification.expiry_date)).scalars().all())

    def delete(self, cert: ThirdPartyCertification) -> None:
        self.session.delete(cert)
        self.session.flush()
        logger.info(f"Deleted third-party certificate {cert.id}")


# ============================================
# ATTACHMENT REPOSITORY
# ============================================

class AttachmentRepository:
    """Repository for uploaded evidence files."""

    def __init__(self, session: Session):
        self.session = session

    def add(
        self,
        owner,
        file_path: str,
        file_name: Optional[str] = None,
        mime_type: Optional[str] = None
    ) -> Attachment:
        """
        Attach a stored file to a training record or a certificate.

        Args:
            owner: TrainingRecord or ThirdPartyCertification
            file_path: Public path of the stored file
            file_name: Original upload name
            mime_type: Content type reported by the client
        """
        attachment = Attachment(file_path=file_path, file_name=file_name, mime_type=mime_type)
        if isinstance(owner, TrainingRecord):
            attachment.training_record = owner
        elif isinstance(owner, ThirdPartyCertification):
            attachment.certification = owner
        else:
            raise RepositoryError(f"Cannot attach a file to {type(owner).__name__}")
        self.session.add(attachment)
        self.session.flush()
        return attachment

    def clear(self, owner) -> List[str]:
        """
        Remove every attachment of an owner.

        Returns:
            File paths of the removed attachments, for deletion after commit
        """
        paths = [a.file_path for a in owner.attachments]
        for attachment in list(owner.attachments):
            owner.attachments.remove(attachment)
        self.session.flush()
        return paths
