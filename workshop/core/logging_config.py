"""
Logging setup for the workshop backend.

Records are written to stdout. Production gets one JSON object per line so
the platform log shipper can index ``event_type`` and friends; other
environments get plain text. ``LOG_LEVEL`` and ``LOG_FORMAT`` override the
per-environment defaults.
"""

from datetime import UTC, datetime
import json
import logging
import sys

from workshop.core.config import settings

_DEFAULT_LEVELS = {
    "development": logging.DEBUG,
    "test": logging.WARNING,
    "production": logging.INFO,
}

_QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "asyncpg": logging.WARNING,
    "alembic": logging.INFO,
}


class JSONFormatter(logging.Formatter):
    """One JSON document per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "env": settings.ENVIRONMENT,
        }
        # Fields passed via extra={"extra_fields": {...}}
        fields = getattr(record, "extra_fields", None)
        if fields:
            entry.update(fields)
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Readable lines for local work; structured fields are appended."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
            datefmt="%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = getattr(record, "extra_fields", None)
        if fields:
            pairs = " ".join(f"{k}={v}" for k, v in fields.items() if v is not None)
            line = f"{line} | {pairs}"
        return line


def _resolve_level() -> int:
    if settings.LOG_LEVEL:
        return logging.getLevelName(settings.LOG_LEVEL.upper())
    return _DEFAULT_LEVELS.get(settings.ENVIRONMENT, logging.INFO)


def setup_logging() -> None:
    """Install the stdout handler on the root logger."""
    level = _resolve_level()
    use_json = (settings.LOG_FORMAT or "").lower() == "json" or (
        not settings.LOG_FORMAT and settings.ENVIRONMENT == "production"
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if use_json else TextFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(max(level, quiet_level))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class AuditLogger:
    """
    Access-control and gate events.

    Every record carries an ``event_type`` so failed logins, role denials and
    refused joins can be filtered without parsing messages.
    """

    def __init__(self, name: str = "workshop.audit") -> None:
        self.logger = get_logger(name)

    def _emit(self, level: int, message: str, event_type: str, **fields) -> None:
        self.logger.log(
            level, message, extra={"extra_fields": {"event_type": event_type, **fields}}
        )

    def log_login_attempt(
        self,
        email: str,
        success: bool,
        ip_address: str | None = None,
        reason: str | None = None,
    ) -> None:
        self._emit(
            logging.INFO if success else logging.WARNING,
            f"Login {'ok' if success else 'rejected'} for {email}",
            "login",
            email=email,
            success=success,
            ip_address=ip_address,
            reason=None if success else reason,
        )

    def log_token_creation(self, user_id: str, role: str) -> None:
        self._emit(
            logging.INFO, f"Issued token for {user_id}", "token_issued", user_id=user_id, role=role
        )

    def log_role_denied(self, resource: str, user_id: str | None, role: str | None) -> None:
        self._emit(
            logging.WARNING,
            f"Role {role} denied on {resource}",
            "role_denied",
            resource=resource,
            user_id=user_id,
            role=role,
        )

    def log_join_refused(self, user_id: str, pin: str, reason: str) -> None:
        """A PIN that matched no open session."""
        self._emit(
            logging.WARNING,
            f"Join refused for {user_id}",
            "join_refused",
            user_id=user_id,
            pin=pin,
            reason=reason,
        )

    def log_gate_blocked(self, user_id: str, session_id: str, gate: str) -> None:
        """A participant tried to vote or take the quiz before it was allowed."""
        self._emit(
            logging.INFO,
            f"{gate} gate blocked {user_id} in {session_id}",
            "gate_blocked",
            user_id=user_id,
            session_id=session_id,
            gate=gate,
        )


audit_logger = AuditLogger()
