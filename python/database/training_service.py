"""
Training Service for the Training Tracker

Implements every bookkeeping operation on top of the repositories:
accounts and login sync, the course catalog, training records,
third-party certificates, people rollups, reports and calendar events.

Status is always computed with status_classifier.classify() against
the `today` the service was created with, so a request sees one
consistent date from start to finish.

Usage:
    # With FastAPI
    @app.get("/api/stats")
    def stats(service: TrainingService = Depends(get_training_service)):
        return service.stats()

    # Standalone
    with db_provider.session_scope() as session:
        service = TrainingService(session, today=date.today())
        service.create_course(CourseInput(name="Fire Safety", validity_days="365"))
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from access_policy import Role
from calendar_export import CalendarEvent
from database.models import (
    Course,
    Person,
    ThirdPartyCertification,
    TrainingRecord,
    User,
    UserSession,
    display_name_for,
)
from database.repositories import (
    AttachmentRepository,
    CourseRepository,
    DuplicateEntityError,
    EntityNotFoundError,
    PersonRepository,
    SessionRepository,
    ThirdPartyRepository,
    TrainingRecordRepository,
    UserRepository,
)
from reporting import (
    KIND_THIRD_PARTY,
    KIND_TRAINING,
    ReportRow,
    StatusCounts,
    build_report,
    count_rows,
    count_statuses,
    sort_by_completion_desc,
)
from status_classifier import (
    DEFAULT_LOOKAHEAD_DAYS,
    ExpiryStatus,
    classify,
    derive_expiry,
    parse_report_type,
)
from text_utils import clean_text, normalize_email

logger = logging.getLogger(__name__)

DEFAULT_COURSE_TYPE = "Individual Training"
DEFAULT_CATEGORY = "Other"
RECORD_STATUS_FILTERS = ("all",) + tuple(s.value for s in ExpiryStatus)


class InputValidationError(Exception):
    """Raised when submitted data is missing or malformed (HTTP 400)"""

    def __init__(self, message: str, field: Optional[str] = None, suggestion: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.suggestion = suggestion


# ============================================
# INPUT TYPES
# ============================================

@dataclass
class AttachmentInput:
    """A file already written to the upload directory"""
    file_path: str
    file_name: Optional[str] = None
    mime_type: Optional[str] = None


@dataclass
class CourseInput:
    """Course fields as submitted. None means 'not provided'."""
    name: Optional[str] = None
    description: Optional[str] = None
    course_type: Optional[str] = None
    category_name: Optional[str] = None
    provider_name: Optional[str] = None
    validity_days: Optional[Any] = None
    is_active: Optional[bool] = None


@dataclass
class RecordInput:
    """Training record form fields as submitted"""
    name: Optional[str] = None
    email: Optional[str] = None
    course_id: Optional[Any] = None
    completion_date: Optional[str] = None
    notes: Optional[str] = None
    assessor: Optional[str] = None


@dataclass
class CertificateInput:
    """Third-party certificate form fields as submitted"""
    person_id: Optional[Any] = None
    title: Optional[str] = None
    provider: Optional[str] = None
    completion_date: Optional[str] = None
    expiry_date: Optional[str] = None
    notes: Optional[str] = None


# ============================================
# PARSING HELPERS
# ============================================

def require(value: Optional[str], field: str) -> str:
    cleaned = clean_text(value)
    if cleaned is None:
        raise InputValidationError(f"{field} is required", field=field)
    return cleaned


def parse_date(value: Any, field: str) -> Optional[date]:
    """Parse an ISO date (YYYY-MM-DD). Empty input gives None."""
    if value is None or isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        raise InputValidationError(
            f"Invalid date '{text}' for {field}",
            field=field,
            suggestion="Use the format YYYY-MM-DD"
        )


def parse_int(value: Any, field: str) -> Optional[int]:
    """Parse an integer form value. Empty input gives None."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise InputValidationError(f"{field} must be a whole number", field=field)
    try:
        return int(str(value).strip())
    except ValueError:
        raise InputValidationError(f"{field} must be a whole number", field=field)


def parse_validity_days(value: Any) -> Optional[int]:
    """Validity window in days; negative values mean 'never expires'"""
    days = parse_int(value, "validityDays")
    if days is None or days < 0:
        return None
    return days


def optional_text(value: Optional[str], current: Optional[str]) -> Optional[str]:
    """Partial-update rule: None keeps the current value, '' clears it"""
    if value is None:
        return current
    return clean_text(value)


# ============================================
# SERVICE
# ============================================

class TrainingService:
    """
    Database-backed training bookkeeping.

    Write operations run inside transaction(): the whole operation
    commits or nothing does. Callers that stored an upload before
    calling in are responsible for deleting it when an exception
    propagates.
    """

    def __init__(
        self,
        session: Session,
        today: Optional[date] = None,
        lookahead_days: int = DEFAULT_LOOKAHEAD_DAYS
    ):
        self.session = session
        self.today = today or date.today()
        self.lookahead_days = lookahead_days
        self.people = PersonRepository(session)
        self.users = UserRepository(session)
        self.sessions = SessionRepository(session)
        self.courses = CourseRepository(session)
        self.records = TrainingRecordRepository(session)
        self.certificates = ThirdPartyRepository(session)
        self.attachments = AttachmentRepository(session)

    @contextmanager
    def transaction(self):
        try:
            yield
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def classify(self, expiry: Optional[date]) -> ExpiryStatus:
        return classify(expiry, self.today, self.lookahead_days)

    # ----------------------------------------
    # Row builders
    # ----------------------------------------

    def record_row(self, record: TrainingRecord) -> ReportRow:
        return ReportRow(
            kind=KIND_TRAINING,
            record_id=record.id,
            person_id=record.person_id,
            person_name=record.person.display_name,
            email=record.person.email,
            title=record.course.name,
            course_id=record.course_id,
            provider=record.course.provider_name,
            assessor=record.assessor,
            notes=record.notes,
            completion_date=record.completion_date,
            expiry_date=record.expiry_date,
            attachments=[a.to_dict() for a in record.attachments],
        ).with_status(self.today, self.lookahead_days)

    def certificate_row(self, cert: ThirdPartyCertification) -> ReportRow:
        return ReportRow(
            kind=KIND_THIRD_PARTY,
            record_id=cert.id,
            person_id=cert.person_id,
            person_name=cert.person.display_name,
            email=cert.person.email,
            title=cert.title,
            provider=cert.provider,
            notes=cert.notes,
            completion_date=cert.completion_date,
            expiry_date=cert.expiry_date,
            attachments=[a.to_dict() for a in cert.attachments],
        ).with_status(self.today, self.lookahead_days)

    # ----------------------------------------
    # Owner resolution (for the access policy)
    # ----------------------------------------

    # A missing id resolves to None, which the policy treats as someone else's.

    def record_owner(self, record_id: int) -> Optional[int]:
        return self.records.owner_of(record_id)

    def certificate_owner(self, cert_id: int) -> Optional[int]:
        return self.certificates.owner_of(cert_id)

    def person_id_for_email(self, email: Optional[str]) -> Optional[int]:
        if not normalize_email(email):
            return None
        person = self.people.get_by_email(email)
        return person.id if person else None

    # ----------------------------------------
    # Accounts
    # ----------------------------------------

    def register(self, email: str, password_hash: str, username: Optional[str] = None) -> User:
        """
        Create an account with role 'user' and link it to its person.

        The person is upserted by email, so registering someone who was
        already tracked as a training subject reuses their person row.

        Raises:
            InputValidationError: Missing email
            DuplicateEntityError: An account with this email exists
        """
        normalized = normalize_email(email)
        if not normalized:
            raise InputValidationError("email is required", field="email")
        username = clean_text(username)

        with self.transaction():
            if self.users.get_by_email(normalized) is not None:
                raise DuplicateEntityError(f"An account for {normalized} already exists")
            person, _ = self.people.upsert_by_email(normalized, display_name_for(normalized, username))
            user = self.users.create(
                email=normalized,
                password_hash=password_hash,
                role=Role.USER.value,
                username=username,
                person_id=person.id
            )
        logger.info(f"Registered user {user.id} linked to person {person.id}")
        return user

    def find_user(self, email: str) -> Optional[User]:
        return self.users.get_by_email(email)

    def login(
        self, user: User, token: str, expires_at: datetime, now: Optional[datetime] = None
    ) -> UserSession:
        """
        Sync the account's person row and open a session, in one transaction.

        When now is given, sessions that expired by then are purged first.
        """
        with self.transaction():
            if now is not None:
                purged = self.sessions.purge_expired(now)
                if purged:
                    logger.info(f"Purged {purged} expired sessions")
            person, created = self.people.upsert_by_email(
                user.email, display_name_for(user.email, user.username)
            )
            if user.person_id != person.id:
                user.person_id = person.id
                self.session.flush()
            login_session = self.sessions.create(user, token, expires_at)
        if created:
            logger.info(f"Created person {person.id} during login sync for user {user.id}")
        return login_session

    def logout(self, token: str) -> bool:
        with self.transaction():
            return self.sessions.delete(token)

    def resolve_session(self, token: str, now: datetime) -> Optional[UserSession]:
        return self.sessions.get_active(token, now)

    def change_role(self, person_id: int, role: str) -> Tuple[User, str]:
        """
        Change the role of the account linked to a person.

        Live sessions of that account pick up the new role immediately.

        Returns:
            Tuple of (user, previous role)

        Raises:
            InputValidationError: Unknown role
            EntityNotFoundError: Person missing or without an account
        """
        try:
            new_role = Role.parse(role)
        except ValueError as e:
            raise InputValidationError(str(e), field="role")

        with self.transaction():
            self.people.get(person_id)
            user = self.users.get_by_person_id(person_id)
            if user is None:
                raise EntityNotFoundError(f"Person {person_id} has no login account")
            old_role = user.role
            user.role = new_role.value
            self.session.flush()
            updated = self.sessions.update_role_for_user(user.id, new_role.value)
        logger.info(f"Role for user {user.id} changed {old_role} -> {new_role.value} ({updated} sessions)")
        return user, old_role

    # ----------------------------------------
    # Dashboard
    # ----------------------------------------

    def all_counts(self) -> StatusCounts:
        expiries = self.records.expiry_dates() + self.certificates.expiry_dates()
        return count_statuses(expiries, self.today, self.lookahead_days)

    def stats(self) -> Dict[str, int]:
        counts = self.all_counts()
        return {
            'totalStaff': self.people.count_active(),
            'activeCourses': self.courses.count_active(),
            'expiringSoon': counts.expiring_soon,
            'currentCerts': counts.current,
        }

    # ----------------------------------------
    # Courses
    # ----------------------------------------

    def list_courses(self) -> List[Course]:
        return self.courses.list_active()

    def create_course(self, data: CourseInput) -> Course:
        """
        Create a course, creating its category and provider on demand.

        Raises:
            InputValidationError: Missing name or malformed validity
            DuplicateEntityError: Course name already used
        """
        name = require(data.name, "name")
        validity_days = parse_validity_days(data.validity_days)
        category_name = clean_text(data.category_name) or DEFAULT_CATEGORY
        provider_name = clean_text(data.provider_name)

        with self.transaction():
            category = self.courses.get_or_create_category(category_name)
            provider = self.courses.get_or_create_provider(provider_name) if provider_name else None
            course = self.courses.create(
                name=name,
                course_type=clean_text(data.course_type) or DEFAULT_COURSE_TYPE,
                category=category,
                provider=provider,
                description=clean_text(data.description),
                validity_days=validity_days
            )
        return course

    def update_course(self, course_id: int, data: CourseInput) -> Course:
        """
        Partially update a course.

        Existing training records keep the expiry they were created with.
        """
        course = self.courses.get(course_id)

        with self.transaction():
            if data.name is not None:
                name = require(data.name, "name")
                if name != course.name:
                    existing = self.courses.get_by_name(name)
                    if existing is not None and existing.id != course.id:
                        raise DuplicateEntityError(f"Course '{name}' already exists")
                    course.name = name
            if data.description is not None:
                course.description = clean_text(data.description)
            if data.course_type is not None:
                course.course_type = clean_text(data.course_type) or DEFAULT_COURSE_TYPE
            if data.category_name is not None:
                category_name = clean_text(data.category_name) or DEFAULT_CATEGORY
                course.category = self.courses.get_or_create_category(category_name)
            if data.provider_name is not None:
                provider_name = clean_text(data.provider_name)
                course.provider = self.courses.get_or_create_provider(provider_name) if provider_name else None
            if data.validity_days is not None:
                course.validity_days = parse_validity_days(data.validity_days)
            if data.is_active is not None:
                course.is_active = bool(data.is_active)
            self.session.flush()
        logger.info(f"Updated course {course.id}")
        return course

    def course_details(self, course_id: int) -> Tuple[Course, List[ReportRow]]:
        course = self.courses.get(course_id)
        rows = [self.record_row(r) for r in self.records.list(course_id=course_id)]
        return course, rows

    # ----------------------------------------
    # People
    # ----------------------------------------

    def people_rollup(self) -> List[Dict[str, Any]]:
        """Per-person totals over training records and certificates combined"""
        people = self.people.list_active()
        by_person: Dict[int, List[Optional[date]]] = {p.id: [] for p in people}
        for record in self.records.list():
            if record.person_id in by_person:
                by_person[record.person_id].append(record.expiry_date)
        for cert in self.certificates.list():
            if cert.person_id in by_person:
                by_person[cert.person_id].append(cert.expiry_date)

        results = []
        for person in people:
            counts = count_statuses(by_person[person.id], self.today, self.lookahead_days)
            results.append({
                'person_id': person.id,
                'name': person.display_name,
                'email': person.email,
                'role': person.user.role if person.user else None,
                'total_training': counts.total,
                'current': counts.current,
                'expiring_soon': counts.expiring_soon,
                'expired': counts.expired,
            })
        return results

    def person_summary(self, person_id: int) -> Dict[str, Any]:
        person = self.people.get(person_id)
        training = [self.record_row(r) for r in self.records.list(person_id=person_id)]
        third_party = [self.certificate_row(c) for c in self.certificates.list(person_id=person_id)]
        counts = count_rows(training + third_party, self.today, self.lookahead_days)
        return {
            'person': person,
            'role': person.user.role if person.user else None,
            'training': training,
            'third_party': third_party,
            'counts': counts,
        }

    def my_training(self, person_id: Optional[int]) -> Tuple[List[ReportRow], StatusCounts]:
        """The caller's own records and certificates, newest completion first"""
        if person_id is None:
            return [], StatusCounts()
        rows = [self.record_row(r) for r in self.records.list(person_id=person_id)]
        rows += [self.certificate_row(c) for c in self.certificates.list(person_id=person_id)]
        return sort_by_completion_desc(rows), count_rows(rows, self.today, self.lookahead_days)

    # ----------------------------------------
    # Training records
    # ----------------------------------------

    def list_records(self, search: Optional[str] = None, status: Optional[str] = None) -> List[ReportRow]:
        """
        Training records and certificates combined, newest completion first.

        Raises:
            InputValidationError: Unknown status filter
        """
        status = (status or "all").strip().lower()
        if status not in RECORD_STATUS_FILTERS:
            raise InputValidationError(
                f"Invalid status '{status}'",
                field="status",
                suggestion=f"Use one of: {', '.join(RECORD_STATUS_FILTERS)}"
            )
        search = clean_text(search)
        rows = [self.record_row(r) for r in self.records.list(search=search)]
        rows += [self.certificate_row(c) for c in self.certificates.list(search=search)]
        if status != "all":
            rows = [row for row in rows if row.status.value == status]
        return sort_by_completion_desc(rows)

    def get_record(self, record_id: int) -> TrainingRecord:
        return self.records.get(record_id)

    def _course_for_record(self, raw_course_id: Any) -> Course:
        course_id = parse_int(raw_course_id, "course_id")
        if course_id is None:
            raise InputValidationError("course_id is required", field="course_id")
        course = self.courses.get_by_id(course_id)
        if course is None:
            raise InputValidationError(f"Course {course_id} does not exist", field="course_id")
        return course

    def create_record(self, data: RecordInput, attachment: Optional[AttachmentInput] = None) -> TrainingRecord:
        """
        Create a training record, upserting the person by email.

        The expiry date is derived from the course's validity window now
        and stored; later course edits do not change it.

        Raises:
            InputValidationError: Missing or malformed fields
        """
        name = require(data.name, "name")
        email = normalize_email(require(data.email, "email"))
        completion = parse_date(require(data.completion_date, "completion_date"), "completion_date")

        with self.transaction():
            course = self._course_for_record(data.course_id)
            person, _ = self.people.upsert_by_email(email, name)
            record = self.records.create(
                person=person,
                course=course,
                completion_date=completion,
                expiry_date=derive_expiry(completion, course.validity_days),
                notes=clean_text(data.notes),
                assessor=clean_text(data.assessor)
            )
            if attachment is not None:
                self.attachments.add(record, attachment.file_path, attachment.file_name, attachment.mime_type)
        return record

    def update_record(
        self,
        record_id: int,
        data: RecordInput,
        attachment: Optional[AttachmentInput] = None
    ) -> Tuple[TrainingRecord, List[str]]:
        """
        Partially update a training record.

        Changing the completion date or the course re-derives the expiry
        from the course as it is at edit time. A new attachment replaces
        the old ones.

        Returns:
            Tuple of (record, file paths to delete after commit)
        """
        record = self.records.get(record_id)
        removed: List[str] = []

        with self.transaction():
            rederive = False
            if data.course_id is not None and str(data.course_id).strip():
                course = self._course_for_record(data.course_id)
                if course.id != record.course_id:
                    record.course = course
                    rederive = True
            if data.completion_date is not None:
                completion = parse_date(require(data.completion_date, "completion_date"), "completion_date")
                if completion != record.completion_date:
                    record.completion_date = completion
                    rederive = True
            if rederive:
                record.expiry_date = derive_expiry(record.completion_date, record.course.validity_days)
            record.notes = optional_text(data.notes, record.notes)
            record.assessor = optional_text(data.assessor, record.assessor)
            if attachment is not None:
                removed = self.attachments.clear(record)
                self.attachments.add(record, attachment.file_path, attachment.file_name, attachment.mime_type)
            self.session.flush()
        logger.info(f"Updated training record {record.id}")
        return record, removed

    def delete_record(self, record_id: int) -> List[str]:
        """Hard delete. Returns attachment file paths to delete after commit."""
        record = self.records.get(record_id)
        with self.transaction():
            removed = [a.file_path for a in record.attachments]
            self.records.delete(record)
        return removed

    # ----------------------------------------
    # Third-party certificates
    # ----------------------------------------

    def list_third_party(self, person_id: int) -> List[ReportRow]:
        return [self.certificate_row(c) for c in self.certificates.list(person_id=person_id)]

    def get_certificate(self, cert_id: int) -> ThirdPartyCertification:
        return self.certificates.get(cert_id)

    @staticmethod
    def _check_expiry(completion: date, expiry: Optional[date]) -> None:
        if expiry is not None and expiry < completion:
            raise InputValidationError(
                "expiry_date cannot be before completion_date",
                field="expiry_date"
            )

    def create_third_party(
        self,
        data: CertificateInput,
        attachment: Optional[AttachmentInput] = None
    ) -> ThirdPartyCertification:
        """
        Create a third-party certificate for an existing person.

        Raises:
            InputValidationError: Missing or malformed fields
            EntityNotFoundError: Unknown person
        """
        person_id = parse_int(data.person_id, "person_id")
        if person_id is None:
            raise InputValidationError("person_id is required", field="person_id")
        title = require(data.title, "title")
        provider = require(data.provider, "provider")
        completion = parse_date(require(data.completion_date, "completion_date"), "completion_date")
        expiry = parse_date(data.expiry_date, "expiry_date")
        self._check_expiry(completion, expiry)

        with self.transaction():
            person: Person = self.people.get(person_id)
            cert = self.certificates.create(
                person=person,
                title=title,
                provider=provider,
                completion_date=completion,
                expiry_date=expiry,
                notes=clean_text(data.notes)
            )
            if attachment is not None:
                self.attachments.add(cert, attachment.file_path, attachment.file_name, attachment.mime_type)
        return cert

    def update_third_party(
        self,
        cert_id: int,
        data: CertificateInput,
        attachment: Optional[AttachmentInput] = None
    ) -> Tuple[ThirdPartyCertification, List[str]]:
        """
        Partially update a certificate. An empty expiry_date clears it.

        Returns:
            Tuple of (certificate, file paths to delete after commit)
        """
        cert = self.certificates.get(cert_id)
        removed: List[str] = []

        with self.transaction():
            if data.title is not None:
                cert.title = require(data.title, "title")
            if data.provider is not None:
                cert.provider = require(data.provider, "provider")
            if data.completion_date is not None:
                cert.completion_date = parse_date(require(data.completion_date, "completion_date"), "completion_date")
            if data.expiry_date is not None:
                cert.expiry_date = parse_date(data.expiry_date, "expiry_date")
            self._check_expiry(cert.completion_date, cert.expiry_date)
            cert.notes = optional_text(data.notes, cert.notes)
            if attachment is not None:
                removed = self.attachments.clear(cert)
                self.attachments.add(cert, attachment.file_path, attachment.file_name, attachment.mime_type)
            self.session.flush()
        logger.info(f"Updated third-party certificate {cert.id}")
        return cert, removed

    def delete_third_party(self, cert_id: int) -> List[str]:
        """Hard delete. Returns attachment file paths to delete after commit."""
        cert = self.certificates.get(cert_id)
        with self.transaction():
            removed = [a.file_path for a in cert.attachments]
            self.certificates.delete(cert)
        return removed

    # ----------------------------------------
    # Reports
    # ----------------------------------------

    def report(self, report_type: Optional[str] = None, person_id: Optional[int] = None) -> List[ReportRow]:
        """
        Training records and certificates filtered by status, sorted by
        person name then title.

        Raises:
            InputValidationError: Unknown report type
        """
        try:
            parsed = parse_report_type(report_type)
        except ValueError as e:
            raise InputValidationError(str(e), field="type")
        internal = [self.record_row(r) for r in self.records.list(person_id=person_id)]
        third_party = [self.certificate_row(c) for c in self.certificates.list(person_id=person_id)]
        return build_report(internal, third_party, parsed, self.today, self.lookahead_days, person_id)

    def expiring(self) -> List[ReportRow]:
        """Everything expiring within the lookahead window, soonest first"""
        window = (self.today, self.today + timedelta(days=self.lookahead_days))
        rows = [self.record_row(r) for r in self.records.list(expiring_between=window)]
        rows += [self.certificate_row(c) for c in self.certificates.list(expiring_between=window)]
        rows.sort(key=lambda r: (r.expiry_date, r.person_name.casefold(), r.title.casefold()))
        return rows

    # ----------------------------------------
    # Calendar
    # ----------------------------------------

    def calendar_events(self, person_id: int) -> List[CalendarEvent]:
        """One event per record or certificate of a person that has an expiry"""
        self.people.get(person_id)
        events = []
        for record in self.records.list(person_id=person_id):
            if record.expiry_date is not None:
                events.append(CalendarEvent(
                    kind=KIND_TRAINING,
                    record_id=record.id,
                    person_id=record.person_id,
                    title=record.course.name,
                    expiry_date=record.expiry_date
                ))
        for cert in self.certificates.list(person_id=person_id):
            if cert.expiry_date is not None:
                events.append(CalendarEvent(
                    kind=KIND_THIRD_PARTY,
                    record_id=cert.id,
                    person_id=cert.person_id,
                    title=cert.title,
                    expiry_date=cert.expiry_date
                ))
        events.sort(key=lambda e: (e.expiry_date, e.kind, e.record_id))
        return events

    def certificate_event(self, cert_id: int) -> CalendarEvent:
        """
        Calendar event for a single certificate.

        Raises:
            InputValidationError: The certificate has no expiry date
        """
        cert = self.certificates.get(cert_id)
        if cert.expiry_date is None:
            raise InputValidationError("This certificate has no expiry date", field="expiry_date")
        return CalendarEvent(
            kind=KIND_THIRD_PARTY,
            record_id=cert.id,
            person_id=cert.person_id,
            title=cert.title,
            expiry_date=cert.expiry_date,
            description=f"{cert.person.display_name} ({cert.person.email}) certificate expires"
        )
