"""Matrix configuration and YAML profile loading.

Handles:
- Loading matrix profiles from YAML files.
- Building the variant registry from a profile's table or records.
- Merging CLI options with profile values (CLI wins).
- Validating the final configuration before execution.
"""

from __future__ import annotations

import logging
import shlex
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from buildbench.matrix.errors import ConfigurationError
from buildbench.matrix.variants import (
    DEFAULT_CODEGEN_UNITS,
    DEFAULT_NIGHTLY_THREADS,
    Channel,
    VariantRegistry,
    default_registry,
    expand_variants,
    variants_from_records,
)

log = logging.getLogger("buildbench")

DEFAULT_FETCH_COMMAND: tuple[str, ...] = ("cargo", "fetch")
DEFAULT_BUILD_COMMAND: tuple[str, ...] = ("cargo", "build", "--release")


# ---------------------------------------------------------------------------
# MatrixConfig
# ---------------------------------------------------------------------------


@dataclass
class MatrixConfig:
    """Resolved configuration for a matrix run."""

    name: str = ""
    registry: VariantRegistry = field(default_factory=default_registry)

    working_dir: Path = field(default_factory=lambda: Path("."))
    continue_on_failure: bool = False
    timeout: float | None = None  # Per-build limit in seconds; None = no limit

    build_command: tuple[str, ...] = DEFAULT_BUILD_COMMAND
    fetch_command: tuple[str, ...] | None = DEFAULT_FETCH_COMMAND

    # Base environment overrides (library paths and the like).
    env: dict[str, str] = field(default_factory=dict)

    log_dir: Path | None = None
    output: Path | None = None


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@dataclass
class ValidationError:
    """A single configuration validation error."""

    field: str
    message: str
    severity: str = "error"  # "error" or "warning"


def validate_config(config: MatrixConfig) -> list[ValidationError]:
    """Validate a matrix configuration.

    Returns a list of validation errors.  Empty list means valid.
    """
    errors: list[ValidationError] = []

    if len(config.registry) == 0:
        errors.append(
            ValidationError(field="variants", message="No variants defined; nothing to build.")
        )

    if not config.working_dir.exists():
        errors.append(
            ValidationError(
                field="working_dir",
                message=f"Working directory does not exist: {config.working_dir}",
            )
        )
    elif not config.working_dir.is_dir():
        errors.append(
            ValidationError(
                field="working_dir",
                message=f"Working directory is not a directory: {config.working_dir}",
            )
        )

    if not config.build_command:
        errors.append(ValidationError(field="build_command", message="Build command is empty."))

    if config.fetch_command is not None and not config.fetch_command:
        errors.append(
            ValidationError(
                field="fetch_command",
                message="Fetch command is empty; use null to disable fetching.",
            )
        )

    if config.timeout is not None and config.timeout <= 0:
        errors.append(
            ValidationError(
                field="timeout",
                message=f"Timeout must be positive (got {config.timeout}).",
            )
        )

    if "CARGO_BUILD_JOBS" in config.env and config.env["CARGO_BUILD_JOBS"] != "1":
        errors.append(
            ValidationError(
                field="env.CARGO_BUILD_JOBS",
                message="CARGO_BUILD_JOBS is pinned to 1 and cannot be overridden.",
            )
        )

    for name in ("RUSTFLAGS", "RUSTUP_TOOLCHAIN"):
        if name in config.env:
            errors.append(
                ValidationError(
                    field=f"env.{name}",
                    message=f"{name} is set per variant; the base value will be replaced.",
                    severity="warning",
                )
            )

    return errors


def check_config(config: MatrixConfig) -> None:
    """Log validation warnings and raise ConfigurationError on any error."""
    problems = validate_config(config)
    for w in problems:
        if w.severity == "warning":
            log.warning("Config warning: %s: %s", w.field, w.message)
    fatal = [e for e in problems if e.severity == "error"]
    if fatal:
        messages = [f"  {e.field}: {e.message}" for e in fatal]
        raise ConfigurationError("Invalid matrix configuration:\n" + "\n".join(messages))


# ---------------------------------------------------------------------------
# YAML profile loading
# ---------------------------------------------------------------------------


def load_profile(profile_path: Path) -> dict[str, Any]:
    """Load a matrix profile from a YAML file.

    Profile format::

        name: "fhir-sdk codegen matrix"
        working_dir: ./fhir-sdk
        continue_on_failure: false
        timeout: 3600
        fetch_command: [cargo, fetch]
        build_command: [cargo, build, --release]
        env:
          OPENSSL_INCLUDE_DIR: /usr/include/openssl
          OPENSSL_LIB_DIR: /usr/lib
        variants:
          codegen_units: [1, 10, 16]
          channels: [stable, nightly]
          nightly_threads: 8

    ``variants`` may instead be a list of explicit records
    (``id``, ``channel``, ``codegen_units``, ``threads``, ``description``).

    Returns:
        The parsed YAML as a dict.
    """
    import yaml

    if not profile_path.exists():
        raise FileNotFoundError(f"Profile not found: {profile_path}")

    try:
        data = yaml.safe_load(profile_path.read_text())
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Cannot parse profile {profile_path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Profile must be a YAML mapping, got {type(data).__name__}"
        )

    return data


def registry_from_profile(variants_data: Any) -> VariantRegistry:
    """Build a registry from a profile's ``variants`` entry.

    A mapping is treated as a table (codegen_units x channels); a list
    as explicit records; None yields the default matrix.
    """
    if variants_data is None:
        return default_registry()

    if isinstance(variants_data, dict):
        unknown = sorted(set(variants_data) - {"codegen_units", "channels", "nightly_threads"})
        if unknown:
            raise ConfigurationError(
                f"Unknown key(s) in variants table: {', '.join(unknown)}. "
                f"Valid keys: channels, codegen_units, nightly_threads"
            )
        units = variants_data.get("codegen_units", list(DEFAULT_CODEGEN_UNITS))
        channels = variants_data.get("channels", [c.value for c in Channel])
        if not isinstance(units, list) or not isinstance(channels, list):
            raise ConfigurationError("variants.codegen_units and variants.channels must be lists.")
        threads = variants_data.get("nightly_threads", DEFAULT_NIGHTLY_THREADS)
        return VariantRegistry(expand_variants(units, channels, nightly_threads=threads))

    if isinstance(variants_data, list):
        return VariantRegistry(variants_from_records(variants_data))

    raise ConfigurationError(
        f"Profile 'variants' must be a mapping or a list, got {type(variants_data).__name__}"
    )


def _as_command(value: Any, key: str) -> tuple[str, ...]:
    """Accept a command as a list of arguments or a shell-style string."""
    if isinstance(value, str):
        return tuple(shlex.split(value))
    if isinstance(value, list) and all(isinstance(part, (str, int, float)) for part in value):
        return tuple(str(part) for part in value)
    raise ConfigurationError(f"Profile '{key}' must be a string or a list of strings.")


def _as_bool(value: Any, key: str) -> bool:
    """Accept only a YAML boolean; quoted strings are rejected."""
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ConfigurationError(f"Profile '{key}' must be true or false, got {value!r}.")
    return value


def _as_timeout(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"Profile 'timeout' must be a number of seconds, got {value!r}.")
    return float(value)


def config_from_profile(
    profile_data: dict[str, Any],
    *,
    cli_overrides: dict[str, Any] | None = None,
    profile_dir: Path | None = None,
) -> MatrixConfig:
    """Build a MatrixConfig from a parsed YAML profile.

    CLI overrides take precedence over profile values.  Relative
    ``working_dir`` values in the profile are resolved against
    *profile_dir*.

    Args:
        profile_data: Parsed YAML profile dict.
        cli_overrides: Dict of CLI option values; None values are ignored.
            Keys match MatrixConfig field names.
        profile_dir: Directory containing the profile file.
    """
    cli = {k: v for k, v in (cli_overrides or {}).items() if v is not None}

    env_data = profile_data.get("env") or {}
    if not isinstance(env_data, dict):
        raise ConfigurationError("Profile 'env' must be a mapping of NAME -> value")

    config = MatrixConfig(
        name=cli.get("name") or str(profile_data.get("name", "")),
        registry=registry_from_profile(profile_data.get("variants")),
        continue_on_failure=_as_bool(profile_data.get("continue_on_failure"), "continue_on_failure")
        or bool(cli.get("continue_on_failure")),
        timeout=_as_timeout(cli.get("timeout", profile_data.get("timeout"))),
        env={str(k): str(v) for k, v in env_data.items()},
    )

    if "working_dir" in cli:
        config.working_dir = Path(cli["working_dir"])
    elif profile_data.get("working_dir"):
        working_dir = Path(str(profile_data["working_dir"]))
        if not working_dir.is_absolute() and profile_dir is not None:
            working_dir = profile_dir / working_dir
        config.working_dir = working_dir

    if "build_command" in profile_data:
        config.build_command = _as_command(profile_data["build_command"], "build_command")
    if "fetch_command" in profile_data:
        raw = profile_data["fetch_command"]
        config.fetch_command = None if raw is None else _as_command(raw, "fetch_command")
    if cli.get("no_fetch"):
        config.fetch_command = None

    config.env.update(cli.get("env", {}))

    if "log_dir" in cli:
        config.log_dir = Path(cli["log_dir"])
    if "output" in cli:
        config.output = Path(cli["output"])

    return config


def parse_env_pairs(pairs: Sequence[str]) -> dict[str, str]:
    """Parse ``KEY=VALUE`` strings from the CLI.

    Raises:
        ConfigurationError: If a pair has no ``=`` or an empty key.
    """
    env: dict[str, str] = {}
    for pair in pairs:
        if "=" not in pair:
            raise ConfigurationError(f"Invalid --env value '{pair}'. Expected KEY=VALUE.")
        key, value = pair.split("=", 1)
        key = key.strip()
        if not key:
            raise ConfigurationError(f"Invalid --env value '{pair}': empty variable name.")
        env[key] = value
    return env
