"""
contract_config -- single public entrypoint for lifecycle configuration.

Responsibility:
    Provides the ONLY way to obtain lifecycle configuration at runtime
    through ``get_active_config()``.  No kernel component reads
    configuration files; the compiled ``LifecycleConfig`` (and the
    ``ApprovalRoutingPolicy`` it produces) is injected into
    ``LifecycleService``.

Architecture position:
    Configuration -- sits above ``contract_kernel``.  The kernel MUST NEVER
    import from ``contract_config``.

Failure modes:
    - ``FileNotFoundError`` -- no configuration set with the given name.
    - ``ValueError`` -- validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``lifecycle_config_loaded`` log entry with config_id, version and
    checksum, tying each routing decision to the configuration that
    governed it.
"""

from __future__ import annotations

from pathlib import Path

from contract_config.loader import load_config_set
from contract_config.schema import (
    DiffConfig,
    LifecycleConfig,
    RoutingConfig,
    ValidationConfig,
)
from contract_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_config(
    config_name: str = "default",
    config_dir: Path | None = None,
) -> LifecycleConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_name: Name of the set; resolves to ``<config_dir>/<name>.yaml``.
        config_dir: Override path to configuration sets directory.
            Defaults to contract_config/sets/.

    Raises:
        FileNotFoundError: If the configuration set does not exist.
        ValueError: If configuration validation fails.
    """
    sets_dir = config_dir or _DEFAULT_CONFIG_DIR
    path = sets_dir / f"{config_name}.yaml"
    if not path.exists():
        raise FileNotFoundError(f"No configuration set {config_name!r} in {sets_dir}")

    config = load_config_set(path)

    _logger.info(
        "lifecycle_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "finance_amount_threshold": config.routing.finance_amount_threshold,
            "head_signoff_amount_threshold": config.routing.head_signoff_amount_threshold,
        },
    )
    return config


__all__ = [
    "get_active_config",
    "LifecycleConfig",
    "RoutingConfig",
    "ValidationConfig",
    "DiffConfig",
]
