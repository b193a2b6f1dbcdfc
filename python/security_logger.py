"""
Security Event Logging Module

Provides structured logging for security-related events including:
- Failed logins and registrations
- Access control denials
- Role changes
- Validation failures

SECURITY: Ensures sensitive data is sanitized before logging. Passwords
are never passed to this module.
"""

import contextvars
import logging
import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any
from dataclasses import dataclass, field as dataclass_field

from text_utils import sanitize_for_logging

# Per-request dict; mutations made in worker threads stay visible to the request
_request_context: contextvars.ContextVar[Optional[Dict[str, str]]] = contextvars.ContextVar(
    "security_request_context", default=None
)


@dataclass
class SecurityEvent:
    """Structured security event for logging"""
    event_type: str  # e.g., LOGIN_FAILED, ACCESS_DENIED, ROLE_CHANGED
    severity: str  # INFO, WARNING, ERROR, CRITICAL
    field_name: str = ""
    error_code: str = ""
    sanitized_input: str = ""  # First 50 chars, sanitized
    source: str = ""
    request_id: str = ""
    user_id: str = ""
    source_ip: str = ""
    additional_context: Dict[str, Any] = dataclass_field(default_factory=dict)
    timestamp: str = dataclass_field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            'timestamp': self.timestamp,
            'event_type': self.event_type,
            'severity': self.severity,
            'field': self.field_name,
            'error_code': self.error_code,
            'sanitized_input': self.sanitized_input,
            'source': self.source,
            'request_id': self.request_id,
            'user_id': self.user_id,
            'source_ip': self.source_ip,
            'context': self.additional_context
        }

    def to_json(self) -> str:
        """Convert to JSON string"""
        return json.dumps(self.to_dict(), ensure_ascii=False)


class SecurityLogger:
    """Handles security event logging with structured output

    Features:
    - Separate security.log file
    - JSON-formatted events for easy parsing
    - Automatic sanitization of user-supplied values
    - Request ID correlation
    """

    def __init__(
        self,
        log_dir: str = "logs",
        log_level: int = logging.INFO,
        enable_console: bool = False,
        enable_file: bool = True
    ):
        """Initialize security logger

        Args:
            log_dir: Directory for log files
            log_level: Minimum log level to record
            enable_console: Also output to console
            enable_file: Write to security.log file
        """
        self.log_dir = Path(log_dir)

        self.logger = logging.getLogger('security')
        self.logger.setLevel(log_level)
        self.logger.handlers.clear()

        formatter = logging.Formatter(
            '%(asctime)s - SECURITY - %(levelname)s - %(message)s'
        )

        if enable_file:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            security_log_path = self.log_dir / "security.log"
            file_handler = logging.FileHandler(security_log_path, encoding='utf-8')
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

        if enable_console:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(log_level)
            console_handler.setFormatter(formatter)
            self.logger.addHandler(console_handler)

    def set_request_context(
        self,
        request_id: Optional[str] = None,
        user_id: str = "",
        source_ip: str = ""
    ) -> str:
        """Set context for the current request

        The context lives in a context variable, so concurrent requests
        never see each other's values. Empty arguments keep what an
        earlier call in the same request already set.

        Args:
            request_id: Unique request identifier (auto-generated if None)
            user_id: User identifier if available
            source_ip: Source IP address if available

        Returns:
            The request ID being used
        """
        context = _request_context.get()
        if context is None:
            context = {}
            _request_context.set(context)
        context['request_id'] = request_id or context.get('request_id') or f"REQ-{uuid.uuid4().hex[:8]}"
        if user_id:
            context['user_id'] = user_id
        if source_ip:
            context['source_ip'] = source_ip
        return context['request_id']

    def clear_request_context(self) -> None:
        """Start a fresh, empty context for the current request"""
        _request_context.set({})

    def _context_value(self, key: str) -> str:
        context = _request_context.get()
        return context.get(key, "") if context else ""

    def _sanitize_input(self, text: str, max_length: int = 50) -> str:
        """Sanitize input for safe logging

        Args:
            text: Input text to sanitize
            max_length: Maximum length to include

        Returns:
            Sanitized text safe for logging
        """
        if not text:
            return ""
        sanitized = sanitize_for_logging(text)
        if len(sanitized) > max_length:
            return sanitized[:max_length] + "...(truncated)"
        return sanitized

    def _sanitize_context(self, context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Sanitize all values in a context dictionary for safe logging

        Args:
            context: Dictionary with context data

        Returns:
            Sanitized dictionary safe for JSON logging
        """
        if not context:
            return {}

        sanitized = {}
        for key, value in context.items():
            safe_key = self._sanitize_input(str(key), max_length=100) if key else "unknown"

            if value is None or isinstance(value, (bool, int, float)):
                sanitized[safe_key] = value
            elif isinstance(value, dict):
                sanitized[safe_key] = self._sanitize_context(value)
            elif isinstance(value, (list, tuple)):
                sanitized[safe_key] = [
                    item if isinstance(item, (bool, int, float, type(None)))
                    else self._sanitize_input(str(item), max_length=200)
                    for item in value
                ]
            else:
                sanitized[safe_key] = self._sanitize_input(str(value), max_length=200)

        return sanitized

    def _emit(self, event: SecurityEvent) -> None:
        if event.severity == "CRITICAL":
            self.logger.critical(event.to_json())
        elif event.severity == "ERROR":
            self.logger.error(event.to_json())
        elif event.severity == "INFO":
            self.logger.info(event.to_json())
        else:
            self.logger.warning(event.to_json())

    def log_security_event(
        self,
        event_type: str,
        severity: str = "WARNING",
        field: str = "",
        error_code: str = "",
        input_value: str = "",
        source: str = "",
        additional_context: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log a security event

        Args:
            event_type: Type of security event (LOGIN_FAILED, ACCESS_DENIED, etc.)
            severity: INFO, WARNING, ERROR, or CRITICAL
            field: Related field if applicable
            error_code: Error code
            input_value: User-supplied value (will be sanitized)
            source: Source module/function
            additional_context: Additional context (will be sanitized)
        """
        event = SecurityEvent(
            event_type=event_type,
            severity=severity,
            field_name=field,
            error_code=error_code,
            sanitized_input=self._sanitize_input(input_value),
            source=source,
            request_id=self._context_value('request_id'),
            user_id=self._context_value('user_id'),
            source_ip=self._context_value('source_ip'),
            additional_context=self._sanitize_context(additional_context)
        )
        self._emit(event)

    def log_validation_failure(
        self,
        field: str,
        error_code: str,
        input_value: str,
        source: str = "",
        additional_context: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log a validation failure event"""
        self.log_security_event(
            event_type="VALIDATION_FAILED",
            severity="WARNING",
            field=field,
            error_code=error_code,
            input_value=input_value,
            source=source,
            additional_context=additional_context
        )

    def log_auth_failure(self, email: str, reason: str, source: str = "auth") -> None:
        """Log a failed login or registration attempt

        Args:
            email: Email the caller tried to use (sanitized, never the password)
            reason: Short machine-readable reason
            source: Endpoint that rejected the attempt
        """
        self.log_security_event(
            event_type="LOGIN_FAILED",
            severity="WARNING",
            field="email",
            error_code=reason,
            input_value=email,
            source=source
        )

    def log_access_denied(
        self,
        capability: str,
        user_id: Optional[int],
        role: Optional[str],
        owner_person_id: Optional[int] = None,
        source: str = ""
    ) -> None:
        """Log an authorization denial"""
        self.log_security_event(
            event_type="ACCESS_DENIED",
            severity="WARNING",
            error_code=capability,
            source=source,
            additional_context={
                'caller_user_id': user_id,
                'caller_role': role,
                'owner_person_id': owner_person_id,
            }
        )

    def log_role_change(
        self,
        actor_user_id: int,
        target_person_id: int,
        old_role: str,
        new_role: str
    ) -> None:
        """Log an administrative role change"""
        self.log_security_event(
            event_type="ROLE_CHANGED",
            severity="INFO",
            field="role",
            source="people.role",
            additional_context={
                'actor_user_id': actor_user_id,
                'target_person_id': target_person_id,
                'old_role': old_role,
                'new_role': new_role,
            }
        )


# Global security logger instance
_security_logger: Optional[SecurityLogger] = None


def get_security_logger(
    log_dir: str = "logs",
    enable_console: bool = False,
    enable_file: bool = True
) -> SecurityLogger:
    """Get or create the global security logger instance

    Args:
        log_dir: Directory for log files
        enable_console: Also output to console
        enable_file: Write to security.log file

    Returns:
        SecurityLogger instance
    """
    global _security_logger
    if _security_logger is None:
        _security_logger = SecurityLogger(
            log_dir=log_dir,
            enable_console=enable_console,
            enable_file=enable_file
        )
    return _security_logger


def reset_security_logger() -> None:
    """Reset the global security logger (for testing)"""
    global _security_logger
    _security_logger = None
