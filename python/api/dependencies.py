"""
FastAPI dependencies shared by the endpoints

Everything request-scoped (configuration, the reference date, the
service and the caller identity) is injected here so tests can swap
any of it through app.dependency_overrides.
"""

import logging
from datetime import date, datetime, timezone
from typing import Callable, Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from access_policy import Capability, Forbidden, Identity, Role, authorize
from config_manager import ConfigManager, get_config
from database.connection import get_db
from database.training_service import TrainingService
from security_logger import get_security_logger

logger = logging.getLogger(__name__)


def get_config_instance() -> ConfigManager:
    """Dependency to get the config instance."""
    return get_config()


def get_today() -> date:
    """Reference date for status classification."""
    return date.today()


def get_now() -> datetime:
    """Current UTC time, used for session expiry and DTSTAMP."""
    return datetime.now(timezone.utc)


def get_training_service(
    db: Session = Depends(get_db),
    config: ConfigManager = Depends(get_config_instance),
    today: date = Depends(get_today),
) -> TrainingService:
    return TrainingService(db, today=today, lookahead_days=config.status.lookahead_days)


def get_identity(
    request: Request,
    service: TrainingService = Depends(get_training_service),
    config: ConfigManager = Depends(get_config_instance),
    now: datetime = Depends(get_now),
) -> Optional[Identity]:
    """Resolve the session cookie to an identity, or None"""
    token = request.cookies.get(config.session.cookie_name)
    if not token:
        return None

    login_session = service.resolve_session(token, now)
    if login_session is None:
        return None

    identity = Identity(
        user_id=login_session.user_id,
        role=Role(login_session.role),
        person_id=login_session.person_id,
        email=login_session.user.email,
        username=login_session.user.username,
    )
    get_security_logger().set_request_context(
        request_id=getattr(request.state, "request_id", None),
        user_id=str(identity.user_id),
        source_ip=request.client.host if request.client else "",
    )
    return identity


def guard(
    identity: Optional[Identity],
    capability: Capability,
    resolve_owner: Optional[Callable[[], Optional[int]]] = None,
    source: str = "",
) -> Identity:
    """Run the access policy and record denials in the security log"""
    try:
        return authorize(identity, capability, resolve_owner)
    except Forbidden as exc:
        get_security_logger().log_access_denied(
            capability=capability.value,
            user_id=identity.user_id if identity else None,
            role=identity.role.value if identity else None,
            owner_person_id=exc.owner_person_id,
            source=source,
        )
        raise
