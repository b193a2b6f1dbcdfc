"""
FastAPI Training Tracker API Server

Provides the REST API behind the training dashboard: accounts and
sessions, the course catalog, training records, third-party
certificates, reports and calendar exports.

Every identity-scoped endpoint goes through dependencies.guard(), which
runs the access policy before any data is touched.

Usage:
    uvicorn api.server:app --reload --port 3000
"""

import os
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import List, Optional

import uvicorn
from fastapi import Depends, FastAPI, File, Form, Query, Request, Response, UploadFile
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from access_policy import Capability, Identity, Unauthenticated, visible_rows
from api.auth import (
    clear_session_cookie,
    hash_password,
    new_session_token,
    session_expiry,
    set_session_cookie,
    verify_password,
)
from api.dependencies import (
    get_config_instance,
    get_identity,
    get_now,
    get_today,
    get_training_service,
    guard,
)
from api.middleware import (
    NoStoreMiddleware,
    RequestLoggingMiddleware,
    setup_cors,
    setup_exception_handlers,
)
from api.models import (
    CountsResponse,
    CourseCreateRequest,
    CourseDetailsResponse,
    CourseResponse,
    CourseUpdateRequest,
    ErrorResponse,
    HealthResponse,
    IdentityResponse,
    LoginRequest,
    MessageResponse,
    MyTrainingResponse,
    PersonRollup,
    PersonResponse,
    PersonSummaryResponse,
    RecordRow,
    RegisterRequest,
    RegisterResponse,
    RoleChangeRequest,
    RoleChangeResponse,
    StatsResponse,
)
from api.uploads import discard_files, discard_on_error, save_upload
from calendar_export import build_calendar
from config_manager import ConfigManager, get_config
from database.connection import close_db, get_db, init_db
from database.models import Course
from database.repositories import DuplicateEntityError
from database.training_service import (
    CertificateInput,
    CourseInput,
    InputValidationError,
    RecordInput,
    TrainingService,
    parse_int,
)
from reporting import StatusCounts, report_to_csv
from security_logger import get_security_logger

# Setup logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

_startup_time: Optional[datetime] = None

AUTH_ERRORS = {
    401: {"model": ErrorResponse, "description": "Not authenticated"},
    403: {"model": ErrorResponse, "description": "Forbidden"},
}
NOT_FOUND = {404: {"model": ErrorResponse, "description": "Not found"}}
BAD_REQUEST = {400: {"model": ErrorResponse, "description": "Validation error"}}


def configure_logging(config: ConfigManager) -> None:
    """Apply the logging section of the configuration to the root logger."""
    root = logging.getLogger()
    root.setLevel(config.logging.level.upper())
    if config.logging.file:
        log_path = Path(config.logging.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        if not any(
            isinstance(h, logging.FileHandler) and Path(h.baseFilename) == log_path.resolve()
            for h in root.handlers
        ):
            handler = logging.FileHandler(log_path, encoding="utf-8")
            handler.setFormatter(logging.Formatter(config.logging.format))
            root.addHandler(handler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load configuration and open the database on startup."""
    global _startup_time

    logger.info("Starting Training Tracker API...")
    config = get_config()
    configure_logging(config)
    get_security_logger(log_dir=config.security.log_dir)
    Path(config.uploads.directory).mkdir(parents=True, exist_ok=True)

    provider = init_db(
        echo=config.database.echo,
        create_tables=os.getenv("TRACKER_CREATE_TABLES", "false").lower() == "true",
    )
    _startup_time = datetime.now(timezone.utc)
    logger.info("API ready (database: %s)", provider.engine.dialect.name)

    yield

    logger.info("Shutting down Training Tracker API...")
    close_db()


# Create FastAPI application
app = FastAPI(
    title="Training Tracker API",
    description="Staff training and certification tracking",
    version=API_VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

_boot_config = get_config()

# Setup middleware
setup_cors(app, _boot_config.server.cors_origins)
app.add_middleware(NoStoreMiddleware)
app.add_middleware(RequestLoggingMiddleware)
setup_exception_handlers(app)

app.mount(
    _boot_config.uploads.url_prefix,
    StaticFiles(directory=_boot_config.uploads.directory, check_dir=False),
    name="uploads",
)


# ============================================
# HELPERS
# ============================================

def _course_response(course: Course) -> CourseResponse:
    return CourseResponse(
        course_id=course.id,
        name=course.name,
        description=course.description,
        type=course.course_type,
        category=course.category_name,
        provider=course.provider_name,
        validity_days=course.validity_days,
        is_active=course.is_active,
    )


def _rows(rows) -> List[RecordRow]:
    return [RecordRow(**row.to_dict()) for row in rows]


def _counts(counts: StatusCounts) -> CountsResponse:
    return CountsResponse(**counts.to_dict())


def _identity_response(identity: Identity) -> IdentityResponse:
    return IdentityResponse(
        user_id=identity.user_id,
        person_id=identity.person_id,
        email=identity.email,
        username=identity.username,
        role=identity.role.value,
    )


def _calendar_response(body: str, filename: str, download: bool) -> Response:
    disposition = "attachment" if download else "inline"
    return Response(
        content=body,
        media_type="text/calendar; charset=utf-8",
        headers={"Content-Disposition": f'{disposition}; filename="{filename}"'},
    )


async def _blank_form_fields(request: Request) -> set:
    """Names of form fields submitted empty.

    FastAPI hands empty form values to the endpoint as the default (None),
    which would read as "unchanged"; partial updates need them as "".
    """
    form = await request.form()
    return {key for key, value in form.multi_items() if value == ""}


def _owner_from_form(raw_person_id: Optional[str]) -> int:
    person_id = parse_int(raw_person_id, "person_id")
    if person_id is None:
        raise InputValidationError("person_id is required", field="person_id")
    return person_id


# ============================================
# AUTH
# ============================================

@app.post(
    "/api/auth/register",
    response_model=RegisterResponse,
    status_code=201,
    responses={**BAD_REQUEST, 409: {"model": ErrorResponse, "description": "Account exists"}},
    summary="Register an account",
)
def register(
    body: RegisterRequest,
    service: TrainingService = Depends(get_training_service),
    config: ConfigManager = Depends(get_config_instance),
):
    """Create an account with role 'user' and link it to a person by email."""
    if len(body.password) < config.security.min_password_length:
        raise InputValidationError(
            f"Password must be at least {config.security.min_password_length} characters",
            field="password",
        )
    try:
        user = service.register(
            email=body.email,
            password_hash=hash_password(body.password, config.security.bcrypt_rounds),
            username=body.username,
        )
    except DuplicateEntityError:
        get_security_logger().log_auth_failure(body.email, "DUPLICATE_ACCOUNT", source="auth.register")
        raise
    return RegisterResponse(user_id=user.id, person_id=user.person_id)


@app.post(
    "/api/auth/login",
    response_model=IdentityResponse,
    responses={401: {"model": ErrorResponse, "description": "Invalid credentials"}},
    summary="Log in",
)
def login(
    body: LoginRequest,
    response: Response,
    service: TrainingService = Depends(get_training_service),
    config: ConfigManager = Depends(get_config_instance),
    now: datetime = Depends(get_now),
):
    """Verify credentials, sync the person row and issue a session cookie."""
    user = service.find_user(body.email)
    if user is None or not verify_password(body.password, user.password_hash):
        get_security_logger().log_auth_failure(body.email, "INVALID_CREDENTIALS", source="auth.login")
        raise Unauthenticated("Invalid email or password")

    token = new_session_token()
    login_session = service.login(user, token, session_expiry(now, config.session), now=now)
    set_session_cookie(response, token, config.session)
    logger.info("User %d logged in", user.id)

    return IdentityResponse(
        user_id=user.id,
        person_id=login_session.person_id,
        email=user.email,
        username=user.username,
        role=login_session.role,
    )


@app.post("/api/auth/logout", response_model=MessageResponse, summary="Log out")
def logout(
    request: Request,
    response: Response,
    service: TrainingService = Depends(get_training_service),
    config: ConfigManager = Depends(get_config_instance),
):
    """Delete the server-side session and clear the cookie."""
    token = request.cookies.get(config.session.cookie_name)
    if token:
        service.logout(token)
    clear_session_cookie(response, config.session)
    return MessageResponse(message="Logged out")


@app.get("/api/auth/me", response_model=IdentityResponse, responses=AUTH_ERRORS)
def me(identity: Optional[Identity] = Depends(get_identity)):
    """Return the identity attached to the current session."""
    identity = guard(identity, Capability.READ_ANY, source="auth.me")
    return _identity_response(identity)


# ============================================
# DASHBOARD
# ============================================

@app.get("/api/stats", response_model=StatsResponse, responses=AUTH_ERRORS)
def stats(
    identity: Optional[Identity] = Depends(get_identity),
    service: TrainingService = Depends(get_training_service),
):
    """Dashboard counters over training records and certificates combined."""
    guard(identity, Capability.READ_ANY, source="stats")
    return StatsResponse(**service.stats())


@app.get("/api/expiring", response_model=List[RecordRow], responses=AUTH_ERRORS)
def expiring(
    identity: Optional[Identity] = Depends(get_identity),
    service: TrainingService = Depends(get_training_service),
):
    """Upcoming expiries within the lookahead window, soonest first.

    Plain users only see their own.
    """
    identity = guard(identity, Capability.READ_ANY, source="expiring")
    rows = visible_rows(identity, service.expiring(), lambda row: row.person_id)
    return _rows(rows)


# ============================================
# COURSES
# ============================================

@app.get("/api/courses", response_model=List[CourseResponse], responses=AUTH_ERRORS)
def list_courses(
    identity: Optional[Identity] = Depends(get_identity),
    service: TrainingService = Depends(get_training_service),
):
    """Active courses with category and provider names."""
    guard(identity, Capability.READ_ANY, source="courses.list")
    return [_course_response(c) for c in service.list_courses()]


@app.post(
    "/api/courses",
    response_model=CourseResponse,
    status_code=201,
    responses={**AUTH_ERRORS, **BAD_REQUEST, 409: {"model": ErrorResponse, "description": "Duplicate name"}},
)
def create_course(
    body: CourseCreateRequest,
    identity: Optional[Identity] = Depends(get_identity),
    service: TrainingService = Depends(get_training_service),
):
    """Create a course (admin/manager)."""
    guard(identity, Capability.WRITE, source="courses.create")
    course = service.create_course(CourseInput(
        name=body.name,
        description=body.description,
        course_type=body.course_type,
        category_name=body.category_name,
        provider_name=body.provider_name,
        validity_days=body.validity_days,
    ))
    return _course_response(course)


@app.put(
    "/api/courses/{course_id}",
    response_model=CourseResponse,
    responses={**AUTH_ERRORS, **BAD_REQUEST, **NOT_FOUND},
)
def update_course(
    course_id: int,
    body: CourseUpdateRequest,
    identity: Optional[Identity] = Depends(get_identity),
    service: TrainingService = Depends(get_training_service),
):
    """Partially update a course (admin/manager). Existing records keep their expiry."""
    guard(identity, Capability.WRITE, source="courses.update")
    # An explicit null clears; an omitted field keeps its value
    cleared = {name for name in body.model_fields_set if getattr(body, name) is None}
    course = service.update_course(course_id, CourseInput(
        name=body.name,
        description="" if "description" in cleared else body.description,
        course_type=body.course_type,
        category_name=body.category_name,
        provider_name="" if "provider_name" in cleared else body.provider_name,
        validity_days="" if "validity_days" in cleared else body.validity_days,
        is_active=body.is_active,
    ))
    return _course_response(course)


@app.get(
    "/api/course/{course_id}/details",
    response_model=CourseDetailsResponse,
    responses={**AUTH_ERRORS, **NOT_FOUND},
)
def course_details(
    course_id: int,
    identity: Optional[Identity] = Depends(get_identity),
    service: TrainingService = Depends(get_training_service),
):
    """A course with its training records and their status."""
    identity = guard(identity, Capability.READ_ANY, source="courses.details")
    course, rows = service.course_details(course_id)
    rows = visible_rows(identity, rows, lambda row: row.person_id)
    counts = StatusCounts()
    for row in rows:
        counts.add(row.status)
    return CourseDetailsResponse(
        course=_course_response(course),
        records=_rows(rows),
        counts=_counts(counts),
    )


# ============================================
# PEOPLE
# ============================================

@app.get("/api/people", response_model=List[PersonRollup], responses=AUTH_ERRORS)
def list_people(
    identity: Optional[Identity] = Depends(get_identity),
    service: TrainingService = Depends(get_training_service),
):
    """Per-person status counts (admin/manager)."""
    guard(identity, Capability.WRITE, source="people.list")
    return [PersonRollup(**row) for row in service.people_rollup()]


@app.put(
    "/api/people/{person_id}/role",
    response_model=RoleChangeResponse,
    responses={**AUTH_ERRORS, **BAD_REQUEST, **NOT_FOUND},
)
def change_role(
    person_id: int,
    body: RoleChangeRequest,
    identity: Optional[Identity] = Depends(get_identity),
    service: TrainingService = Depends(get_training_service),
):
    """Change the role of the account linked to a person (admin only)."""
    identity = guard(identity, Capability.ADMIN_ONLY, source="people.role")
    user, old_role = service.change_role(person_id, body.role)
    get_security_logger().log_role_change(identity.user_id, person_id, old_role, user.role)
    return RoleChangeResponse(
        person_id=person_id,
        user_id=user.id,
        role=user.role,
        previous_role=old_role,
    )


@app.get(
    "/api/person/{person_id}/summary",
    response_model=PersonSummaryResponse,
    responses={**AUTH_ERRORS, **NOT_FOUND},
)
def person_summary(
    person_id: int,
    identity: Optional[Identity] = Depends(get_identity),
    service: TrainingService = Depends(get_training_service),
):
    """Profile, training records and certificates of one person (self or admin/manager)."""
    guard(identity, Capability.OWN_OR_PRIVILEGED, lambda: person_id, source="people.summary")
    summary = service.person_summary(person_id)
    person = summary["person"]
    return PersonSummaryResponse(
        person=PersonResponse(
            person_id=person.id,
            name=person.display_name,
            email=person.email,
            is_active=person.is_active,
            role=summary["role"],
        ),
        training=_rows(summary["training"]),
        third_party=_rows(summary["third_party"]),
        counts=_counts(summary["counts"]),
    )


@app.get(
    "/api/my",
    response_model=MyTrainingResponse,
    response_model_by_alias=True,
    responses=AUTH_ERRORS,
)
def my_training(
    person_id: Optional[int] = Query(None),
    identity: Optional[Identity] = Depends(get_identity),
    service: TrainingService = Depends(get_training_service),
):
    """The caller's own records and certificates with counts (self only)."""
    identity = guard(identity, Capability.SELF_ONLY, lambda: person_id, source="my")
    rows, counts = service.my_training(identity.person_id)
    return MyTrainingResponse(items=_rows(rows), counts=_counts(counts))


# ============================================
# TRAINING RECORDS
# ============================================

@app.get("/api/records", response_model=List[RecordRow], responses={**AUTH_ERRORS, **BAD_REQUEST})
def list_records(
    q: Optional[str] = Query(None, max_length=200),
    status: Optional[str] = Query("all"),
    identity: Optional[Identity] = Depends(get_identity),
    service: TrainingService = Depends(get_training_service),
):
    """Training records and certificates, newest completion first.

    Filter by free text (person name, email, course or title) and by status.
    Plain users only see their own.
    """
    identity = guard(identity, Capability.READ_ANY, source="records.list")
    rows = visible_rows(identity, service.list_records(q, status), lambda row: row.person_id)
    return _rows(rows)


@app.get("/api/records/{record_id}", response_model=RecordRow, responses={**AUTH_ERRORS, **NOT_FOUND})
def get_record(
    record_id: int,
    identity: Optional[Identity] = Depends(get_identity),
    service: TrainingService = Depends(get_training_service),
):
    """One training record (owner or admin/manager)."""
    guard(
        identity,
        Capability.OWN_OR_PRIVILEGED,
        lambda: service.record_owner(record_id),
        source="records.get",
    )
    return RecordRow(**service.record_row(service.get_record(record_id)).to_dict())


@app.post(
    "/api/records",
    response_model=RecordRow,
    status_code=201,
    responses={**AUTH_ERRORS, **BAD_REQUEST, 413: {"model": ErrorResponse, "description": "File too large"}},
)
async def create_record(
    name: Optional[str] = Form(None),
    email: Optional[str] = Form(None),
    course_id: Optional[str] = Form(None),
    completion_date: Optional[str] = Form(None),
    notes: Optional[str] = Form(None),
    assessor: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    identity: Optional[Identity] = Depends(get_identity),
    service: TrainingService = Depends(get_training_service),
    config: ConfigManager = Depends(get_config_instance),
):
    """Submit a training record with an optional attachment.

    The person is looked up (or created) by email. Plain users may only
    submit records for their own email.
    """
    guard(
        identity,
        Capability.OWN_OR_PRIVILEGED,
        lambda: service.person_id_for_email(email),
        source="records.create",
    )
    attachment = await save_upload(file, config.uploads)
    with discard_on_error(attachment, config.uploads):
        record = service.create_record(
            RecordInput(
                name=name,
                email=email,
                course_id=course_id,
                completion_date=completion_date,
                notes=notes,
                assessor=assessor,
            ),
            attachment,
        )
    return RecordRow(**service.record_row(record).to_dict())


@app.put(
    "/api/records/{record_id}",
    response_model=RecordRow,
    responses={**AUTH_ERRORS, **BAD_REQUEST, **NOT_FOUND},
)
async def update_record(
    record_id: int,
    request: Request,
    course_id: Optional[str] = Form(None),
    completion_date: Optional[str] = Form(None),
    notes: Optional[str] = Form(None),
    assessor: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    identity: Optional[Identity] = Depends(get_identity),
    service: TrainingService = Depends(get_training_service),
    config: ConfigManager = Depends(get_config_instance),
):
    """Edit a training record (admin/manager). A new file replaces the old attachment."""
    guard(identity, Capability.WRITE, source="records.update")
    service.get_record(record_id)
    blanks = await _blank_form_fields(request)
    attachment = await save_upload(file, config.uploads)
    with discard_on_error(attachment, config.uploads):
        record, removed = service.update_record(
            record_id,
            RecordInput(
                course_id=course_id,
                completion_date=completion_date,
                notes="" if "notes" in blanks else notes,
                assessor="" if "assessor" in blanks else assessor,
            ),
            attachment,
        )
    discard_files(removed, config.uploads)
    return RecordRow(**service.record_row(record).to_dict())


@app.delete(
    "/api/records/{record_id}",
    response_model=MessageResponse,
    responses={**AUTH_ERRORS, **NOT_FOUND},
)
def delete_record(
    record_id: int,
    identity: Optional[Identity] = Depends(get_identity),
    service: TrainingService = Depends(get_training_service),
    config: ConfigManager = Depends(get_config_instance),
):
    """Hard-delete a training record and its attachment files (admin/manager)."""
    guard(identity, Capability.WRITE, source="records.delete")
    removed = service.delete_record(record_id)
    discard_files(removed, config.uploads)
    return MessageResponse(message=f"Record {record_id} deleted")


# ============================================
# THIRD-PARTY CERTIFICATES
# ============================================

@app.get("/api/thirdparty", response_model=List[RecordRow], responses={**AUTH_ERRORS, **BAD_REQUEST})
def list_third_party(
    person_id: Optional[int] = Query(None),
    identity: Optional[Identity] = Depends(get_identity),
    service: TrainingService = Depends(get_training_service),
):
    """Certificates of one person (self or admin/manager)."""
    if person_id is None:
        guard(identity, Capability.READ_ANY, source="thirdparty.list")
        raise InputValidationError("person_id is required", field="person_id")
    guard(identity, Capability.OWN_OR_PRIVILEGED, lambda: person_id, source="thirdparty.list")
    return _rows(service.list_third_party(person_id))


@app.post(
    "/api/thirdparty",
    response_model=RecordRow,
    status_code=201,
    responses={**AUTH_ERRORS, **BAD_REQUEST, **NOT_FOUND},
)
async def create_third_party(
    person_id: Optional[str] = Form(None),
    title: Optional[str] = Form(None),
    provider: Optional[str] = Form(None),
    completion_date: Optional[str] = Form(None),
    expiry_date: Optional[str] = Form(None),
    notes: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    identity: Optional[Identity] = Depends(get_identity),
    service: TrainingService = Depends(get_training_service),
    config: ConfigManager = Depends(get_config_instance),
):
    """Add a third-party certificate for a person (self or admin/manager)."""
    guard(identity, Capability.READ_ANY, source="thirdparty.create")
    owner = _owner_from_form(person_id)
    guard(identity, Capability.OWN_OR_PRIVILEGED, lambda: owner, source="thirdparty.create")
    attachment = await save_upload(file, config.uploads)
    with discard_on_error(attachment, config.uploads):
        cert = service.create_third_party(
            CertificateInput(
                person_id=owner,
                title=title,
                provider=provider,
                completion_date=completion_date,
                expiry_date=expiry_date,
                notes=notes,
            ),
            attachment,
        )
    return RecordRow(**service.certificate_row(cert).to_dict())


@app.put(
    "/api/thirdparty/{cert_id}",
    response_model=RecordRow,
    responses={**AUTH_ERRORS, **BAD_REQUEST, **NOT_FOUND},
)
async def update_third_party(
    cert_id: int,
    request: Request,
    title: Optional[str] = Form(None),
    provider: Optional[str] = Form(None),
    completion_date: Optional[str] = Form(None),
    expiry_date: Optional[str] = Form(None),
    notes: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    identity: Optional[Identity] = Depends(get_identity),
    service: TrainingService = Depends(get_training_service),
    config: ConfigManager = Depends(get_config_instance),
):
    """Edit a certificate (admin/manager). An empty expiry_date clears it."""
    guard(identity, Capability.WRITE, source="thirdparty.update")
    service.get_certificate(cert_id)
    blanks = await _blank_form_fields(request)
    attachment = await save_upload(file, config.uploads)
    with discard_on_error(attachment, config.uploads):
        cert, removed = service.update_third_party(
            cert_id,
            CertificateInput(
                title="" if "title" in blanks else title,
                provider="" if "provider" in blanks else provider,
                completion_date=completion_date,
                expiry_date="" if "expiry_date" in blanks else expiry_date,
                notes="" if "notes" in blanks else notes,
            ),
            attachment,
        )
    discard_files(removed, config.uploads)
    return RecordRow(**service.certificate_row(cert).to_dict())


@app.delete(
    "/api/thirdparty/{cert_id}",
    response_model=MessageResponse,
    responses={**AUTH_ERRORS, **NOT_FOUND},
)
def delete_third_party(
    cert_id: int,
    identity: Optional[Identity] = Depends(get_identity),
    service: TrainingService = Depends(get_training_service),
    config: ConfigManager = Depends(get_config_instance),
):
    """Hard-delete a certificate and its attachment file (admin/manager)."""
    guard(identity, Capability.WRITE, source="thirdparty.delete")
    removed = service.delete_third_party(cert_id)
    discard_files(removed, config.uploads)
    return MessageResponse(message=f"Certificate {cert_id} deleted")


@app.get(
    "/api/thirdparty/{cert_id}/ics",
    responses={**AUTH_ERRORS, **BAD_REQUEST, **NOT_FOUND},
    response_class=Response,
)
def third_party_ics(
    cert_id: int,
    identity: Optional[Identity] = Depends(get_identity),
    service: TrainingService = Depends(get_training_service),
    config: ConfigManager = Depends(get_config_instance),
    now: datetime = Depends(get_now),
):
    """Calendar file for a single certificate's expiry (owner or admin/manager)."""
    guard(
        identity,
        Capability.OWN_OR_PRIVILEGED,
        lambda: service.certificate_owner(cert_id),
        source="thirdparty.ics",
    )
    event = service.certificate_event(cert_id)
    body = build_calendar(
        [event],
        now=now,
        prodid=config.calendar.prodid,
        uid_domain=config.calendar.uid_domain,
        alarm_days_before=config.calendar.alarm_days_before,
    )
    return _calendar_response(body, f"thirdparty-{cert_id}.ics", download=True)


# ============================================
# REPORTS
# ============================================

@app.get("/api/reports", response_model=List[RecordRow], responses={**AUTH_ERRORS, **BAD_REQUEST})
def reports(
    report_type: Optional[str] = Query("all", alias="type"),
    person_id: Optional[int] = Query(None),
    identity: Optional[Identity] = Depends(get_identity),
    service: TrainingService = Depends(get_training_service),
):
    """Records and certificates filtered by status (admin/manager).

    type is one of all, valid, expiring, expired. Sorted by person then title.
    """
    guard(identity, Capability.WRITE, source="reports")
    return _rows(service.report(report_type, person_id))


@app.get(
    "/api/reports/export.csv",
    responses={**AUTH_ERRORS, **BAD_REQUEST},
    response_class=Response,
)
def export_report(
    report_type: Optional[str] = Query("all", alias="type"),
    person_id: Optional[int] = Query(None),
    identity: Optional[Identity] = Depends(get_identity),
    service: TrainingService = Depends(get_training_service),
    today: date = Depends(get_today),
):
    """The report as a CSV download (admin/manager)."""
    guard(identity, Capability.WRITE, source="reports.export")
    rows = service.report(report_type, person_id)
    filename = f"training-report-{report_type or 'all'}-{today.isoformat()}.csv"
    return Response(
        content=report_to_csv(rows),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ============================================
# CALENDAR
# ============================================

def _person_calendar(
    person_id: int,
    identity: Optional[Identity],
    service: TrainingService,
    config: ConfigManager,
    now: datetime,
    source: str,
) -> str:
    guard(identity, Capability.OWN_OR_PRIVILEGED, lambda: person_id, source=source)
    return build_calendar(
        service.calendar_events(person_id),
        now=now,
        prodid=config.calendar.prodid,
        uid_domain=config.calendar.uid_domain,
        alarm_days_before=config.calendar.alarm_days_before,
    )


@app.get(
    "/api/person/{person_id}/calendar.ics",
    responses={**AUTH_ERRORS, **NOT_FOUND},
    response_class=Response,
)
def person_calendar(
    person_id: int,
    identity: Optional[Identity] = Depends(get_identity),
    service: TrainingService = Depends(get_training_service),
    config: ConfigManager = Depends(get_config_instance),
    now: datetime = Depends(get_now),
):
    """Subscribable calendar of a person's expiries (self or admin/manager)."""
    body = _person_calendar(person_id, identity, service, config, now, "calendar.feed")
    return _calendar_response(body, f"cert-expiries-{person_id}.ics", download=False)


@app.get(
    "/api/person/{person_id}/export.ics",
    responses={**AUTH_ERRORS, **NOT_FOUND},
    response_class=Response,
)
def person_calendar_export(
    person_id: int,
    identity: Optional[Identity] = Depends(get_identity),
    service: TrainingService = Depends(get_training_service),
    config: ConfigManager = Depends(get_config_instance),
    now: datetime = Depends(get_now),
):
    """The same calendar as a download."""
    body = _person_calendar(person_id, identity, service, config, now, "calendar.export")
    return _calendar_response(body, f"cert-expiries-{person_id}.ics", download=True)


# ============================================
# SYSTEM
# ============================================

@app.get("/api/health", response_model=HealthResponse, summary="Health check")
def health_check(db: Session = Depends(get_db)):
    """Report database connectivity. Always returns HTTP 200."""
    uptime_seconds = None
    if _startup_time:
        uptime_seconds = int((datetime.now(timezone.utc) - _startup_time).total_seconds())
    try:
        db.execute(text("SELECT 1"))
        return HealthResponse(version=API_VERSION, uptime_seconds=uptime_seconds)
    except SQLAlchemyError as e:
        logger.error("Health check failed: %s", e)
        return HealthResponse(
            status="degraded",
            database="unavailable",
            version=API_VERSION,
            uptime_seconds=uptime_seconds,
            error_message=str(e),
        )


if __name__ == "__main__":
    uvicorn.run(
        "api.server:app",
        host=os.getenv("API_HOST", _boot_config.server.host),
        port=int(os.getenv("API_PORT", str(_boot_config.server.port))),
        reload=False,
    )
