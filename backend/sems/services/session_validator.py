"""
Session schedule validator.

Two passes:

1. validate_session_config: structural check of the raw JSON (version,
   dates, session records, HH:mm formats). Collects every problem.
2. detect_session_time_conflicts: internal consistency of one day's
   sessions. Findings carry a severity; only "error" findings block a save.

Cross-session overlap is checked between neighbours after sorting by
(period, direction), so morning-out is compared with afternoon-in, never
morning-in with evening-out.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from sems.domain.errors import ErrorDetail
from sems.domain.time_utils import (
    is_valid_date_string,
    is_valid_time_string,
    parse_time_to_minutes,
)
from sems.domain.types import (
    DIRECTION_ORDER,
    PERIOD_ORDER,
    Session,
    SessionConfig,
    SessionDirection,
    SessionPeriod,
)
from sems.services.validation import ValidationResult, pydantic_error_details

ERROR = "error"
WARNING = "warning"

_PERIOD_VALUES = {p.value for p in SessionPeriod}
_DIRECTION_VALUES = {d.value for d in SessionDirection}


@dataclass(frozen=True)
class SessionTimeFinding:
    session_id: str
    field: str  # "opens" | "closes" | "late_after"
    message: str
    severity: str

    @property
    def is_error(self) -> bool:
        return self.severity == ERROR


# ============================================================================
# Structural validation
# ============================================================================


def _validate_session(raw: Any, prefix: str) -> list[ErrorDetail]:
    if not isinstance(raw, Mapping):
        return [ErrorDetail(field=prefix, message="Session must be an object", code="INVALID_TYPE")]

    errors = []
    for key in ("id", "name"):
        value = raw.get(key)
        if not isinstance(value, str) or not value.strip():
            errors.append(ErrorDetail(field=f"{prefix}.{key}", message=f"Session {key} is required", code="REQUIRED"))

    if raw.get("period") not in _PERIOD_VALUES:
        errors.append(
            ErrorDetail(
                field=f"{prefix}.period",
                message="Session period must be morning, afternoon or evening",
                code="INVALID_VALUE",
            )
        )
    if raw.get("direction") not in _DIRECTION_VALUES:
        errors.append(
            ErrorDetail(field=f"{prefix}.direction", message="Session direction must be in or out", code="INVALID_VALUE")
        )

    for key in ("opens", "closes"):
        if not is_valid_time_string(raw.get(key)):
            errors.append(
                ErrorDetail(field=f"{prefix}.{key}", message=f"{key} must be a time in HH:mm format", code="INVALID_FORMAT")
            )

    late_after = raw.get("late_after")
    if late_after is not None and not is_valid_time_string(late_after):
        errors.append(
            ErrorDetail(
                field=f"{prefix}.late_after",
                message="late_after must be a time in HH:mm format",
                code="INVALID_FORMAT",
            )
        )
    return errors


def validate_session_config(raw: Any) -> ValidationResult[SessionConfig]:
    """Validate raw session JSON and build the typed config."""
    if not isinstance(raw, Mapping):
        return ValidationResult.failed(
            [ErrorDetail(field="session_config", message="Session configuration is required", code="REQUIRED")]
        )

    errors: list[ErrorDetail] = []
    if raw.get("version") != 2:
        errors.append(
            ErrorDetail(
                field="session_config.version",
                message="Session config version must be 2",
                code="INVALID_VERSION",
            )
        )

    dates = raw.get("dates")
    if not isinstance(dates, list):
        errors.append(
            ErrorDetail(field="session_config.dates", message="Session dates must be an array", code="INVALID_TYPE")
        )
        return ValidationResult.failed(errors)
    if not dates:
        errors.append(
            ErrorDetail(
                field="session_config.dates",
                message="At least one date must be configured",
                code="EMPTY_ARRAY",
            )
        )

    for i, entry in enumerate(dates):
        prefix = f"session_config.dates[{i}]"
        if not isinstance(entry, Mapping):
            errors.append(ErrorDetail(field=prefix, message="Date entry must be an object", code="INVALID_TYPE"))
            continue
        if not is_valid_date_string(entry.get("date")):
            errors.append(
                ErrorDetail(field=f"{prefix}.date", message="date must be in YYYY-MM-DD format", code="INVALID_FORMAT")
            )
        sessions = entry.get("sessions")
        if not isinstance(sessions, list):
            errors.append(
                ErrorDetail(field=f"{prefix}.sessions", message="sessions must be an array", code="INVALID_TYPE")
            )
            continue
        for j, session in enumerate(sessions):
            errors.extend(_validate_session(session, f"{prefix}.sessions[{j}]"))

    if errors:
        return ValidationResult.failed(errors)

    try:
        config = SessionConfig.model_validate(raw)
    except PydanticValidationError as exc:
        return ValidationResult.failed(pydantic_error_details(exc, "session_config"))
    return ValidationResult.ok(config)


# ============================================================================
# Consistency
# ============================================================================


def _sort_key(session: Session) -> tuple[int, int]:
    return PERIOD_ORDER.index(session.period), DIRECTION_ORDER.index(session.direction)


def _check_session(session: Session) -> list[SessionTimeFinding]:
    findings = []
    opens = parse_time_to_minutes(session.opens)
    closes = parse_time_to_minutes(session.closes)

    if opens is not None and closes is not None and opens >= closes:
        findings.append(
            SessionTimeFinding(
                session_id=session.id,
                field="closes",
                message=f'"Closes" ({session.closes}) must be after "Opens" ({session.opens})',
                severity=ERROR,
            )
        )

    if not session.supports_late_after:
        return findings

    late_after = parse_time_to_minutes(session.late_after)
    if late_after is None:
        findings.append(
            SessionTimeFinding(
                session_id=session.id,
                field="late_after",
                message=f'"{session.name}" has no "Late After" time; no scan will be marked late',
                severity=WARNING,
            )
        )
        return findings

    if opens is not None and late_after < opens:
        findings.append(
            SessionTimeFinding(
                session_id=session.id,
                field="late_after",
                message=f'"Late After" ({session.late_after}) should not be before "Opens" ({session.opens})',
                severity=WARNING,
            )
        )
    if closes is not None and late_after > closes:
        findings.append(
            SessionTimeFinding(
                session_id=session.id,
                field="late_after",
                message=f'"Late After" ({session.late_after}) should not be after "Closes" ({session.closes})',
                severity=WARNING,
            )
        )
    return findings


def detect_session_time_conflicts(
    sessions: Iterable[Session],
    enabled_periods: Optional[Iterable[SessionPeriod]] = None,
) -> list[SessionTimeFinding]:
    """
    Check one day's sessions.

    Sessions outside enabled_periods are ignored; by default every period
    present is enabled.
    """
    sessions = list(sessions)
    periods = set(enabled_periods) if enabled_periods is not None else {s.period for s in sessions}
    ordered = sorted((s for s in sessions if s.period in periods), key=_sort_key)

    findings: list[SessionTimeFinding] = []
    for session in ordered:
        findings.extend(_check_session(session))

    for current, following in zip(ordered, ordered[1:]):
        current_closes = parse_time_to_minutes(current.closes)
        next_opens = parse_time_to_minutes(following.opens)
        if current_closes is None or next_opens is None or current_closes <= next_opens:
            continue
        findings.append(
            SessionTimeFinding(
                session_id=current.id,
                field="closes",
                message=(
                    f'"{current.name}" closes at {current.closes}, but "{following.name}" '
                    f"opens at {following.opens}. Sessions overlap."
                ),
                severity=ERROR,
            )
        )
        findings.append(
            SessionTimeFinding(
                session_id=following.id,
                field="opens",
                message=(
                    f'"{following.name}" opens at {following.opens}, but "{current.name}" '
                    f"closes at {current.closes}. Sessions overlap."
                ),
                severity=ERROR,
            )
        )

    return findings


def schedule_errors(config: SessionConfig) -> list[tuple[date, SessionTimeFinding]]:
    """Every blocking finding across all configured dates, in configured order."""
    blocking = []
    for entry in config.dates:
        for finding in detect_session_time_conflicts(entry.sessions):
            if finding.is_error:
                blocking.append((entry.date, finding))
    return blocking


def first_blocking_issue(config: SessionConfig) -> Optional[tuple[date, SessionTimeFinding]]:
    errors = schedule_errors(config)
    return errors[0] if errors else None


def schedule_error_details(config: SessionConfig) -> list[ErrorDetail]:
    """Blocking findings as field errors for the controller's collect-all pass."""
    return [
        ErrorDetail(
            field=f"session_config.{day.isoformat()}.{finding.session_id}.{finding.field}",
            message=finding.message,
            code="SESSION_TIME_CONFLICT",
        )
        for day, finding in schedule_errors(config)
    ]
