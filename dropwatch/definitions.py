"""Check configuration definitions read from YAML files.

A definitions file lists configurations under a top-level
``configurations`` key:

    configurations:
      - tenant_id: acme
        name: Daily sales export
        protocol: HTTPS
        settings:
          base_url: https://files.example.com
          auth_type: bearer
          secret_ref: acme-files-token
        path_pattern: /exports/{yyyy}/{mm}
        name_pattern: sales_{yyyymmdd}.csv
        file_extension: csv
        schedule:
          cron: "0 2 * * *"
          timezone: Europe/Berlin

Credentials never appear in a definition; settings hold references that
the secret resolver turns into credentials at check time.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from dropwatch.domain import Configuration, Protocol, settings_from_dict
from dropwatch.errors import ConfigurationError
from dropwatch.scheduler.schedule_evaluator import ScheduleEvaluator
from dropwatch.tokens import validate_patterns

MAX_NAME_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 1000
MAX_PATH_PATTERN_LENGTH = 500
MAX_NAME_PATTERN_LENGTH = 200
_EXTENSION_PATTERN = re.compile(r"^[a-zA-Z0-9]{1,10}$")

_PROTOCOL_ALIASES = {
    "ftp": Protocol.FTP,
    "ftps": Protocol.FTP,
    "https": Protocol.HTTPS,
    "http": Protocol.HTTPS,
    "objectstorage": Protocol.OBJECT_STORAGE,
    "object_storage": Protocol.OBJECT_STORAGE,
    "s3": Protocol.OBJECT_STORAGE,
}


def parse_protocol(value: Any) -> Protocol:
    """Parse a protocol name case-insensitively.

    Raises:
        ConfigurationError: If the protocol is not supported
    """
    protocol = _PROTOCOL_ALIASES.get(str(value).strip().lower())
    if protocol is None:
        supported = ", ".join(p.value for p in Protocol)
        raise ConfigurationError(f"Unsupported protocol '{value}'. Use one of: {supported}")
    return protocol


def _require(data: Dict[str, Any], key: str, max_length: int) -> str:
    value = data.get(key)
    if value is None or not str(value).strip():
        raise ConfigurationError(f"'{key}' is required")
    value = str(value)
    if len(value) > max_length:
        raise ConfigurationError(f"'{key}' must not exceed {max_length} characters")
    return value


def configuration_from_definition(
    data: Dict[str, Any],
    evaluator: Optional[ScheduleEvaluator] = None,
) -> Configuration:
    """Build and validate a Configuration from one definition mapping.

    Raises:
        ConfigurationError: If the definition is incomplete or invalid
    """
    if not isinstance(data, dict):
        raise ConfigurationError("Each configuration definition must be a mapping")

    evaluator = evaluator or ScheduleEvaluator()

    tenant_id = _require(data, "tenant_id", MAX_NAME_LENGTH)
    name = _require(data, "name", MAX_NAME_LENGTH)
    description = data.get("description")
    if description and len(description) > MAX_DESCRIPTION_LENGTH:
        raise ConfigurationError(
            f"'description' must not exceed {MAX_DESCRIPTION_LENGTH} characters"
        )

    protocol = parse_protocol(_require(data, "protocol", 32))
    raw_settings = data.get("settings")
    if not isinstance(raw_settings, dict) or not raw_settings:
        raise ConfigurationError("'settings' must be a non-empty mapping")
    settings = settings_from_dict(protocol, raw_settings)

    path_pattern = _require(data, "path_pattern", MAX_PATH_PATTERN_LENGTH)
    name_pattern = _require(data, "name_pattern", MAX_NAME_PATTERN_LENGTH)

    file_extension = data.get("file_extension")
    if file_extension:
        file_extension = str(file_extension).lstrip(".")
        if not _EXTENSION_PATTERN.match(file_extension):
            raise ConfigurationError(
                "'file_extension' must be 1-10 alphanumeric characters"
            )

    validation = validate_patterns(settings.location, path_pattern, name_pattern)
    if not validation.is_valid:
        raise ConfigurationError(validation.error)

    schedule = data.get("schedule")
    if not isinstance(schedule, dict) or not schedule.get("cron"):
        raise ConfigurationError("'schedule.cron' is required")
    cron = str(schedule["cron"]).strip()
    timezone_name = str(schedule.get("timezone") or "UTC")
    evaluator.validate(cron, timezone_name)

    kwargs: Dict[str, Any] = {}
    if data.get("id"):
        kwargs["id"] = str(data["id"])

    return Configuration(
        tenant_id=tenant_id,
        protocol=protocol,
        settings=settings,
        path_pattern=path_pattern,
        name_pattern=name_pattern,
        schedule_expression=cron,
        timezone=timezone_name,
        name=name,
        description=description,
        file_extension=file_extension or None,
        is_active=bool(data.get("active", True)),
        **kwargs,
    )


def load_definitions(path: Path, evaluator: Optional[ScheduleEvaluator] = None) -> List[Configuration]:
    """Read every configuration in a YAML definitions file.

    Raises:
        ConfigurationError: If the file cannot be parsed or any definition
            is invalid; the message names the offending entry
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            document = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read definitions from {path}: {e}") from e

    if isinstance(document, dict):
        entries = document.get("configurations")
    else:
        entries = document
    if not isinstance(entries, list):
        raise ConfigurationError(f"{path} must contain a 'configurations' list")

    evaluator = evaluator or ScheduleEvaluator()
    configurations = []
    for index, entry in enumerate(entries):
        label = entry.get("name", f"#{index + 1}") if isinstance(entry, dict) else f"#{index + 1}"
        try:
            configurations.append(configuration_from_definition(entry, evaluator))
        except ConfigurationError as e:
            raise ConfigurationError(f"Configuration {label}: {e}") from e
    return configurations


def merge_with_existing(incoming: Configuration, existing: Optional[Configuration]) -> Configuration:
    """Carry schedule progress over from a stored configuration being replaced.

    The stored ``next_due_at`` is kept only while the schedule and timezone
    are unchanged; otherwise it is cleared so the scheduler recomputes it.
    """
    if existing is None:
        return incoming
    incoming.created_at = existing.created_at
    incoming.last_evaluated_at = existing.last_evaluated_at
    if (
        incoming.schedule_expression == existing.schedule_expression
        and incoming.timezone == existing.timezone
        and incoming.is_active
    ):
        incoming.next_due_at = existing.next_due_at
    return incoming
