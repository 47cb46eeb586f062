"""
Structural validation of event create/update payloads.

Both validators take raw JSON-like input, collect every field problem in
one pass, and only build the typed payload when nothing failed. Audience,
session and scanner configs are delegated to their own validators; the
session schedule's blocking findings are folded into the same error list.

For updates, a field counts as provided only when its key was present in
the input, so {"facility_id": null} clears the venue while a missing key
leaves it alone.
"""

from datetime import date, datetime
from typing import Any, Mapping, Optional

from sems.domain.errors import ErrorDetail
from sems.domain.time_utils import is_valid_date_string, is_valid_uuid, parse_timestamp
from sems.domain.types import EventCreate, EventUpdate, ScannerConfig, Visibility
from sems.services.audience_engine import validate_audience_config
from sems.services.session_validator import schedule_error_details, validate_session_config
from sems.services.validation import ValidationResult

DEFAULT_MAX_TITLE_LENGTH = 200

_VISIBILITY_VALUES = tuple(v.value for v in Visibility)

# Sentinel for "key not present in input"
_MISSING = object()


def _trimmed(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def validate_scanner_config(raw: Any) -> ValidationResult[ScannerConfig]:
    if not isinstance(raw, Mapping):
        return ValidationResult.failed(
            [ErrorDetail(field="scanner_config", message="Scanner configuration is required", code="REQUIRED")]
        )

    errors = []
    if raw.get("version") != 1:
        errors.append(
            ErrorDetail(
                field="scanner_config.version",
                message="Scanner config version must be 1",
                code="INVALID_VERSION",
            )
        )
    scanner_ids = raw.get("scanner_ids")
    if not isinstance(scanner_ids, list):
        errors.append(
            ErrorDetail(field="scanner_config.scanner_ids", message="scanner_ids must be an array", code="INVALID_TYPE")
        )
    elif not all(isinstance(s, str) for s in scanner_ids):
        errors.append(
            ErrorDetail(
                field="scanner_config.scanner_ids",
                message="scanner_ids must contain user ids",
                code="INVALID_TYPE",
            )
        )

    if errors:
        return ValidationResult.failed(errors)
    return ValidationResult.ok(ScannerConfig(scanner_ids=tuple(scanner_ids)))


def normalize_timestamp_field(
    value: Any, field: str, errors: list[ErrorDetail], required: bool = False
) -> Any:
    """
    Returns _MISSING when absent, None when explicitly cleared, otherwise
    the parsed datetime. Appends to errors on bad input.
    """
    if value is _MISSING:
        if required:
            errors.append(ErrorDetail(field=field, message=f"{field} is required", code="REQUIRED"))
        return _MISSING

    if value is None or value == "":
        return None

    parsed = parse_timestamp(value)
    if parsed is None:
        errors.append(ErrorDetail(field=field, message=f"{field} must be an ISO8601 timestamp", code="INVALID_FORMAT"))
        return _MISSING
    return parsed


def parse_capacity_limit(value: Any, field: str, errors: list[ErrorDetail]) -> Any:
    if value is _MISSING:
        return _MISSING
    if value is None or value == "":
        return None

    number: Optional[int] = None
    if isinstance(value, bool):
        number = None
    elif isinstance(value, int):
        number = value
    elif isinstance(value, float) and value.is_integer():
        number = int(value)
    elif isinstance(value, str):
        try:
            number = int(value.strip())
        except ValueError:
            number = None

    if number is None or number <= 0:
        errors.append(
            ErrorDetail(field=field, message="capacity_limit must be a positive integer", code="INVALID_VALUE")
        )
        return _MISSING
    return number


def _check_date_range(start: str, end: str, errors: list[ErrorDetail]) -> None:
    if start and end and is_valid_date_string(start) and is_valid_date_string(end) and start > end:
        errors.append(ErrorDetail(field="end_date", message="End date cannot be before start date", code="INVALID_RANGE"))


def _check_registration_window(opens: Any, closes: Any, errors: list[ErrorDetail]) -> None:
    if isinstance(opens, datetime) and isinstance(closes, datetime) and opens > closes:
        errors.append(
            ErrorDetail(
                field="registration_closes_at",
                message="registration_closes_at must be after registration_opens_at",
                code="INVALID_RANGE",
            )
        )


def _validate_configs(data: Mapping[str, Any], errors: list[ErrorDetail], only_present: bool) -> dict[str, Any]:
    configs: dict[str, Any] = {}

    if not only_present or "audience_config" in data:
        result = validate_audience_config(data.get("audience_config"))
        if result.is_valid:
            configs["audience_config"] = result.data
        else:
            errors.extend(result.errors)

    if not only_present or "session_config" in data:
        result = validate_session_config(data.get("session_config"))
        if result.is_valid:
            blocking = schedule_error_details(result.data)
            if blocking:
                errors.extend(blocking)
            else:
                configs["session_config"] = result.data
        else:
            errors.extend(result.errors)

    if not only_present or "scanner_config" in data:
        result = validate_scanner_config(data.get("scanner_config"))
        if result.is_valid:
            configs["scanner_config"] = result.data
        else:
            errors.extend(result.errors)

    return configs


def validate_create_event(
    raw: Any, max_title_length: int = DEFAULT_MAX_TITLE_LENGTH
) -> ValidationResult[EventCreate]:
    """Validate a create payload; every field problem is reported at once."""
    data: Mapping[str, Any] = raw if isinstance(raw, Mapping) else {}
    errors: list[ErrorDetail] = []

    title = _trimmed(data.get("title"))
    if not title:
        errors.append(ErrorDetail(field="title", message="Event title is required", code="REQUIRED"))
    elif len(title) > max_title_length:
        errors.append(
            ErrorDetail(
                field="title",
                message=f"Event title must be {max_title_length} characters or less",
                code="MAX_LENGTH",
            )
        )

    description = data.get("description")
    description = description.strip() if isinstance(description, str) else None
    poster_image_url = data.get("poster_image_url")
    poster_image_url = poster_image_url.strip() if isinstance(poster_image_url, str) else None

    start_date = _trimmed(data.get("start_date"))
    end_date = _trimmed(data.get("end_date"))
    for name, value, label in (("start_date", start_date, "Start"), ("end_date", end_date, "End")):
        if not value:
            errors.append(ErrorDetail(field=name, message=f"{label} date is required", code="REQUIRED"))
        elif not is_valid_date_string(value):
            errors.append(
                ErrorDetail(field=name, message=f"{label} date must be in YYYY-MM-DD format", code="INVALID_FORMAT")
            )
    _check_date_range(start_date, end_date, errors)

    facility_id = _trimmed(data.get("facility_id")) or None
    if facility_id and not is_valid_uuid(facility_id):
        errors.append(ErrorDetail(field="facility_id", message="Invalid facility ID format", code="INVALID_FORMAT"))

    configs = _validate_configs(data, errors, only_present=False)

    visibility = _trimmed(data.get("visibility")).lower()
    if not visibility:
        errors.append(ErrorDetail(field="visibility", message="Visibility is required", code="REQUIRED"))
    elif visibility not in _VISIBILITY_VALUES:
        errors.append(
            ErrorDetail(
                field="visibility",
                message="Visibility must be one of: internal, student, public",
                code="INVALID_VALUE",
            )
        )

    if not isinstance(data.get("registration_required"), bool):
        errors.append(
            ErrorDetail(field="registration_required", message="registration_required is required", code="REQUIRED")
        )
    registration_required = data.get("registration_required") is True

    opens_at = normalize_timestamp_field(
        data.get("registration_opens_at", _MISSING), "registration_opens_at", errors, required=registration_required
    )
    closes_at = normalize_timestamp_field(
        data.get("registration_closes_at", _MISSING), "registration_closes_at", errors, required=registration_required
    )
    _check_registration_window(opens_at, closes_at, errors)

    capacity_limit = parse_capacity_limit(data.get("capacity_limit", _MISSING), "capacity_limit", errors)

    owner_user_id = _trimmed(data.get("owner_user_id")) or None

    if errors:
        return ValidationResult.failed(errors)

    return ValidationResult.ok(
        EventCreate(
            title=title,
            description=description,
            poster_image_url=poster_image_url,
            start_date=date.fromisoformat(start_date),
            end_date=date.fromisoformat(end_date),
            facility_id=facility_id,
            visibility=Visibility(visibility),
            registration_required=registration_required,
            registration_opens_at=None if opens_at is _MISSING else opens_at,
            registration_closes_at=None if closes_at is _MISSING else closes_at,
            capacity_limit=None if capacity_limit is _MISSING else capacity_limit,
            owner_user_id=owner_user_id,
            **configs,
        )
    )


def validate_update_event(
    raw: Any, max_title_length: int = DEFAULT_MAX_TITLE_LENGTH
) -> ValidationResult[EventUpdate]:
    """Validate an update payload; only keys present in the input are checked and kept."""
    data: Mapping[str, Any] = raw if isinstance(raw, Mapping) else {}
    errors: list[ErrorDetail] = []
    fields: dict[str, Any] = {}

    event_id = _trimmed(data.get("id"))
    if not event_id:
        errors.append(ErrorDetail(field="id", message="Event ID is required", code="REQUIRED"))
    elif not is_valid_uuid(event_id):
        errors.append(ErrorDetail(field="id", message="Invalid event ID format", code="INVALID_FORMAT"))

    if "title" in data:
        title = _trimmed(data["title"])
        if not title:
            errors.append(ErrorDetail(field="title", message="Event title cannot be empty", code="REQUIRED"))
        elif len(title) > max_title_length:
            errors.append(
                ErrorDetail(
                    field="title",
                    message=f"Event title must be {max_title_length} characters or less",
                    code="MAX_LENGTH",
                )
            )
        else:
            fields["title"] = title

    if "description" in data:
        fields["description"] = _trimmed(data["description"]) or None

    if "poster_image_url" in data:
        poster = data["poster_image_url"]
        if poster is None:
            fields["poster_image_url"] = None
        elif isinstance(poster, str):
            fields["poster_image_url"] = poster.strip() or None

    start_date = end_date = ""
    for name, label in (("start_date", "Start"), ("end_date", "End")):
        if name not in data:
            continue
        value = _trimmed(data[name])
        if not value:
            continue
        if not is_valid_date_string(value):
            errors.append(
                ErrorDetail(field=name, message=f"{label} date must be in YYYY-MM-DD format", code="INVALID_FORMAT")
            )
            continue
        fields[name] = date.fromisoformat(value)
        if name == "start_date":
            start_date = value
        else:
            end_date = value
    _check_date_range(start_date, end_date, errors)

    if "facility_id" in data:
        facility_id = data["facility_id"]
        if facility_id is None or facility_id == "":
            fields["facility_id"] = None
        elif isinstance(facility_id, str):
            facility_id = facility_id.strip()
            if facility_id and not is_valid_uuid(facility_id):
                errors.append(
                    ErrorDetail(field="facility_id", message="Invalid facility ID format", code="INVALID_FORMAT")
                )
            else:
                fields["facility_id"] = facility_id or None

    fields.update(_validate_configs(data, errors, only_present=True))

    if "visibility" in data:
        visibility = _trimmed(data["visibility"]).lower()
        if visibility not in _VISIBILITY_VALUES:
            errors.append(
                ErrorDetail(
                    field="visibility",
                    message="Visibility must be one of: internal, student, public",
                    code="INVALID_VALUE",
                )
            )
        else:
            fields["visibility"] = Visibility(visibility)

    registration_required = None
    if "registration_required" in data:
        if not isinstance(data["registration_required"], bool):
            errors.append(
                ErrorDetail(
                    field="registration_required",
                    message="registration_required must be a boolean",
                    code="INVALID_TYPE",
                )
            )
        else:
            registration_required = data["registration_required"]
            fields["registration_required"] = registration_required

    opens_at = normalize_timestamp_field(data.get("registration_opens_at", _MISSING), "registration_opens_at", errors)
    closes_at = normalize_timestamp_field(
        data.get("registration_closes_at", _MISSING), "registration_closes_at", errors
    )
    if registration_required is True:
        if opens_at is _MISSING or opens_at is None:
            errors.append(
                ErrorDetail(
                    field="registration_opens_at",
                    message="registration_opens_at is required when registration is enabled",
                    code="REQUIRED",
                )
            )
        if closes_at is _MISSING or closes_at is None:
            errors.append(
                ErrorDetail(
                    field="registration_closes_at",
                    message="registration_closes_at is required when registration is enabled",
                    code="REQUIRED",
                )
            )
    _check_registration_window(opens_at, closes_at, errors)
    if opens_at is not _MISSING:
        fields["registration_opens_at"] = opens_at
    if closes_at is not _MISSING:
        fields["registration_closes_at"] = closes_at

    capacity_limit = parse_capacity_limit(data.get("capacity_limit", _MISSING), "capacity_limit", errors)
    if capacity_limit is not _MISSING:
        fields["capacity_limit"] = capacity_limit

    if errors:
        return ValidationResult.failed(errors)

    return ValidationResult.ok(EventUpdate(id=event_id, **fields))
