"""
Configuration Loader (``contract_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the frozen
``contract_config.schema`` dataclasses.  Callers use
``contract_config.get_active_config()``; nothing else reads the files.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Thresholds are parsed from strings into ``Decimal``, never via float.
* ``validate_config`` rejects out-of-range values with ``ValueError``.
* ``compute_checksum`` is deterministic for identical input.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``config_id`` / ``version``  -> ``KeyError`` propagates.
* Bad threshold or limit  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from contract_config.schema import (
    DiffConfig,
    LifecycleConfig,
    RoutingConfig,
    ValidationConfig,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, field_name: str) -> Decimal | None:
    """Parse an optional amount.  Floats are rejected to keep precision."""
    if value is None:
        return None
    if isinstance(value, float):
        raise ValueError(f"{field_name}: quote decimal amounts, got float {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{field_name}: not a decimal amount: {value!r}") from exc


def parse_bool(value: Any, field_name: str) -> bool:
    """Parse a flag.  Only YAML booleans are accepted; quoted strings are not."""
    if not isinstance(value, bool):
        raise ValueError(f"{field_name}: expected true or false, got {value!r}")
    return value


def parse_routing(data: dict[str, Any]) -> RoutingConfig:
    return RoutingConfig(
        finance_track_enabled=parse_bool(
            data.get("finance_track_enabled", True), "routing.finance_track_enabled",
        ),
        finance_amount_threshold=parse_decimal(
            data.get("finance_amount_threshold", "100000.00"),
            "routing.finance_amount_threshold",
        ),
        head_signoff_amount_threshold=parse_decimal(
            data.get("head_signoff_amount_threshold"),
            "routing.head_signoff_amount_threshold",
        ),
        currency=str(data.get("currency", "USD")),
    )


def parse_validation(data: dict[str, Any]) -> ValidationConfig:
    return ValidationConfig(
        cancel_reason_min_length=int(data.get("cancel_reason_min_length", 10)),
        require_escalation_reason=parse_bool(
            data.get("require_escalation_reason", True),
            "validation.require_escalation_reason",
        ),
    )


def parse_diff(data: dict[str, Any]) -> DiffConfig:
    return DiffConfig(
        modified_similarity_threshold=float(
            data.get("modified_similarity_threshold", 0.5)
        ),
        max_alignment_cells=int(data.get("max_alignment_cells", 4_000_000)),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 checksum of the canonical JSON serialization."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_config(data: dict[str, Any]) -> LifecycleConfig:
    """Parse a raw YAML mapping into a ``LifecycleConfig``."""
    return LifecycleConfig(
        config_id=data["config_id"],
        version=int(data["version"]),
        routing=parse_routing(data.get("routing") or {}),
        validation=parse_validation(data.get("validation") or {}),
        diff=parse_diff(data.get("diff") or {}),
        checksum=compute_checksum(data),
    )


def validate_config(config: LifecycleConfig) -> list[str]:
    """Return a list of validation errors (empty when valid)."""
    errors: list[str] = []
    routing = config.routing
    if routing.finance_amount_threshold is not None and routing.finance_amount_threshold < 0:
        errors.append("routing.finance_amount_threshold must not be negative")
    if (
        routing.head_signoff_amount_threshold is not None
        and routing.head_signoff_amount_threshold < 0
    ):
        errors.append("routing.head_signoff_amount_threshold must not be negative")
    if len(routing.currency) != 3 or not routing.currency.isalpha():
        errors.append(f"routing.currency must be an ISO 4217 code, got {routing.currency!r}")
    if config.validation.cancel_reason_min_length < 1:
        errors.append("validation.cancel_reason_min_length must be at least 1")
    if not 0.0 < config.diff.modified_similarity_threshold <= 1.0:
        errors.append("diff.modified_similarity_threshold must be in (0, 1]")
    if config.diff.max_alignment_cells < 1:
        errors.append("diff.max_alignment_cells must be at least 1")
    return errors


def load_config_set(path: Path) -> LifecycleConfig:
    """Load, parse and validate one configuration set file."""
    config = parse_config(load_yaml_file(path))
    errors = validate_config(config)
    if errors:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )
    return config
