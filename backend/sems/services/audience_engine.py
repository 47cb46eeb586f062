"""
Audience rule engine.

Resolves an AudienceConfig either into an expected attendee count (via the
repository's counting queries) or into a yes/no answer for one student.

EXPECTED COUNT SEMANTICS
========================

The count reproduces the behaviour schools have been reporting against,
quirks included:

  - An include ALL_STUDENTS rule returns the total active-student count.
    Exclude rules are NOT subtracted; they only show up in the summary.
  - Otherwise the per-kind totals are summed without deduplication:
      count(active students in included levels)
    + count(active students in included sections)
    + len(explicit student ids)
    A student reachable through both a level and an explicit id rule is
    counted twice.

MEMBERSHIP SEMANTICS
====================

  eligible = any(include rule matches) and not any(exclude rule matches)

Exclude always wins, including over ALL_STUDENTS.
"""

from typing import Any, Iterable, Mapping, Optional, Protocol

from pydantic import ValidationError as PydanticValidationError

from sems.domain.errors import ErrorDetail
from sems.domain.types import (
    AUDIENCE_RULE_KINDS,
    AllStudentsRule,
    AudienceConfig,
    LevelRule,
    RuleEffect,
    SectionRule,
    StudentAudienceContext,
    StudentRule,
)
from sems.services.validation import ValidationResult, pydantic_error_details

_ID_FIELD_BY_KIND = {
    "LEVEL": "level_ids",
    "SECTION": "section_ids",
    "STUDENT": "student_ids",
}


class StudentCounter(Protocol):
    """The slice of the repository the expected-count algorithm needs."""

    async def count_students_by_levels(self, level_ids: list[str]) -> int: ...

    async def count_students_by_sections(self, section_ids: list[str]) -> int: ...


def _ids(rules: Iterable[Any], attr: str) -> list[str]:
    return [value for rule in rules for value in getattr(rule, attr)]


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"


# ============================================================================
# Structural validation
# ============================================================================


def validate_audience_rule(rule: Any, index: int) -> list[ErrorDetail]:
    prefix = f"audience_config.rules[{index}]"
    errors: list[ErrorDetail] = []

    if not isinstance(rule, Mapping):
        return [ErrorDetail(field=prefix, message="Rule must be an object", code="INVALID_TYPE")]

    kind = rule.get("kind")
    if not kind:
        return [ErrorDetail(field=f"{prefix}.kind", message="Rule kind is required", code="REQUIRED")]

    if rule.get("effect") not in (RuleEffect.INCLUDE.value, RuleEffect.EXCLUDE.value):
        errors.append(
            ErrorDetail(
                field=f"{prefix}.effect",
                message="Rule effect must be 'include' or 'exclude'",
                code="INVALID_VALUE",
            )
        )

    if kind not in AUDIENCE_RULE_KINDS:
        errors.append(
            ErrorDetail(field=f"{prefix}.kind", message=f"Unknown rule kind: {kind}", code="INVALID_VALUE")
        )
        return errors

    id_field = _ID_FIELD_BY_KIND.get(kind)
    if id_field:
        values = rule.get(id_field)
        if not isinstance(values, list) or len(values) == 0:
            errors.append(
                ErrorDetail(
                    field=f"{prefix}.{id_field}",
                    message=f"{id_field} are required for {kind} rules",
                    code="REQUIRED",
                )
            )
        elif not all(isinstance(v, str) and v.strip() for v in values):
            errors.append(
                ErrorDetail(
                    field=f"{prefix}.{id_field}",
                    message=f"{id_field} must be non-empty strings",
                    code="INVALID_TYPE",
                )
            )

    return errors


def validate_audience_config(raw: Any) -> ValidationResult[AudienceConfig]:
    """Validate raw audience JSON and build the typed config."""
    if not isinstance(raw, Mapping):
        return ValidationResult.failed(
            [ErrorDetail(field="audience_config", message="Audience configuration is required", code="REQUIRED")]
        )

    errors: list[ErrorDetail] = []
    if raw.get("version") != 1:
        errors.append(
            ErrorDetail(
                field="audience_config.version",
                message="Audience config version must be 1",
                code="INVALID_VERSION",
            )
        )

    rules = raw.get("rules")
    if not isinstance(rules, list):
        errors.append(
            ErrorDetail(field="audience_config.rules", message="Audience rules must be an array", code="INVALID_TYPE")
        )
        return ValidationResult.failed(errors)

    has_include = any(isinstance(r, Mapping) and r.get("effect") == RuleEffect.INCLUDE.value for r in rules)
    if not has_include:
        errors.append(
            ErrorDetail(
                field="audience_config.rules",
                message="At least one include rule is required",
                code="NO_INCLUDE_RULE",
            )
        )

    for index, rule in enumerate(rules):
        errors.extend(validate_audience_rule(rule, index))

    if errors:
        return ValidationResult.failed(errors)

    try:
        config = AudienceConfig.model_validate(raw)
    except PydanticValidationError as exc:
        return ValidationResult.failed(pydantic_error_details(exc, "audience_config"))
    return ValidationResult.ok(config)


# ============================================================================
# Evaluation
# ============================================================================


def rule_matches_context(rule: Any, context: StudentAudienceContext) -> bool:
    if isinstance(rule, AllStudentsRule):
        return True
    if isinstance(rule, LevelRule):
        return context.level_id is not None and context.level_id in rule.level_ids
    if isinstance(rule, SectionRule):
        return context.section_id is not None and context.section_id in rule.section_ids
    if isinstance(rule, StudentRule):
        return context.student_id in rule.student_ids
    return False


def is_context_eligible(config: AudienceConfig, context: StudentAudienceContext) -> bool:
    """True iff some include rule matches and no exclude rule does."""
    included = any(rule_matches_context(rule, context) for rule in config.include_rules)
    if not included:
        return False
    return not any(rule_matches_context(rule, context) for rule in config.exclude_rules)


def matches_any_context(config: Optional[AudienceConfig], contexts: Iterable[StudentAudienceContext]) -> bool:
    """An event is visible to a user if any of their students is eligible."""
    if config is None or not config.rules:
        return False
    return any(is_context_eligible(config, context) for context in contexts)


async def compute_expected_attendees(
    config: Optional[AudienceConfig],
    total_active_students: int,
    counter: StudentCounter,
) -> int:
    """Expected attendee count; see module docstring for the exact semantics."""
    if config is None or not config.rules:
        return 0

    includes = config.include_rules
    if any(isinstance(rule, AllStudentsRule) for rule in includes):
        return total_active_students

    count = 0

    level_ids = _ids((r for r in includes if isinstance(r, LevelRule)), "level_ids")
    if level_ids:
        count += await counter.count_students_by_levels(level_ids)

    section_ids = _ids((r for r in includes if isinstance(r, SectionRule)), "section_ids")
    if section_ids:
        count += await counter.count_students_by_sections(section_ids)

    # Explicit ids are counted literally, no lookup
    count += len(_ids((r for r in includes if isinstance(r, StudentRule)), "student_ids"))

    return count


def collect_level_ids(configs: Iterable[Optional[AudienceConfig]]) -> list[str]:
    """Distinct level ids referenced by any LEVEL rule, in first-seen order."""
    seen: dict[str, None] = {}
    for config in configs:
        if config is None:
            continue
        for rule in config.rules:
            if isinstance(rule, LevelRule):
                for level_id in rule.level_ids:
                    seen.setdefault(level_id, None)
    return list(seen)


def _level_label(level_ids: list[str], level_names: Mapping[str, str]) -> str:
    names = sorted(level_names.get(level_id, "Unknown") for level_id in level_ids)
    if len(names) <= 3:
        return ", ".join(names)
    return f"{', '.join(names[:2])} +{len(names) - 2} more"


def _exclusion_suffix(config: AudienceConfig) -> str:
    excludes = config.exclude_rules
    if not excludes:
        return ""

    parts = []
    if any(isinstance(r, AllStudentsRule) for r in excludes):
        parts.append("all students")
    level_count = len(_ids((r for r in excludes if isinstance(r, LevelRule)), "level_ids"))
    if level_count:
        parts.append(_plural(level_count, "level"))
    section_count = len(_ids((r for r in excludes if isinstance(r, SectionRule)), "section_ids"))
    if section_count:
        parts.append(_plural(section_count, "section"))
    student_count = len(_ids((r for r in excludes if isinstance(r, StudentRule)), "student_ids"))
    if student_count:
        parts.append(_plural(student_count, "student"))

    return f" (excluding {', '.join(parts)})"


def summarize_audience(config: Optional[AudienceConfig], level_names: Mapping[str, str]) -> str:
    """
    Human-readable audience summary, e.g.:

        "All Students"
        "Grade 7, Grade 8, 2 sections"
        "Grade 10 (excluding 3 students)"
    """
    if config is None or not config.rules:
        return "No audience"

    includes = config.include_rules
    if any(isinstance(rule, AllStudentsRule) for rule in includes):
        return "All Students" + _exclusion_suffix(config)

    parts = []

    level_ids = _ids((r for r in includes if isinstance(r, LevelRule)), "level_ids")
    if level_ids:
        parts.append(_level_label(level_ids, level_names))

    section_count = len(_ids((r for r in includes if isinstance(r, SectionRule)), "section_ids"))
    if section_count:
        parts.append(_plural(section_count, "section"))

    student_count = len(_ids((r for r in includes if isinstance(r, StudentRule)), "student_ids"))
    if student_count:
        parts.append(_plural(student_count, "student"))

    if not parts:
        return "No audience"
    return ", ".join(parts) + _exclusion_suffix(config)
