"""Environment construction for build invocations.

The base environment is captured once from the host, frozen, and passed
around as an explicit value.  Each variant's environment is a fresh copy
of the base with the variant's overrides layered on top.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from types import MappingProxyType

from buildbench.matrix.errors import ConfigurationError
from buildbench.matrix.variants import Variant

Environment = Mapping[str, str]

JOBS_VAR = "CARGO_BUILD_JOBS"
FLAGS_VAR = "RUSTFLAGS"
TOOLCHAIN_VAR = "RUSTUP_TOOLCHAIN"

# Native library locations supplied by the host; passed through untouched.
LIBRARY_PATH_VARS: tuple[str, ...] = ("OPENSSL_INCLUDE_DIR", "OPENSSL_LIB_DIR")

# Toolchain locations, passed through only when the host defines them.
TOOLCHAIN_LOCATION_VARS: tuple[str, ...] = ("CARGO_HOME", "RUSTUP_HOME")

REQUIRED_VARS: tuple[str, ...] = (JOBS_VAR, *LIBRARY_PATH_VARS)


def freeze_environment(variables: Mapping[str, str]) -> Environment:
    """Return a read-only copy of *variables*, preserving order."""
    return MappingProxyType(dict(variables))


def capture_base_environment(
    host_env: Mapping[str, str] | None = None,
    overrides: Mapping[str, str] | None = None,
) -> Environment:
    """Capture the shared base environment from the host.

    Job parallelism is pinned to 1 so timings are not skewed by host
    concurrency.  Library and toolchain locations come from *host_env*
    (defaults to ``os.environ``) and then *overrides*, which win.

    Raises:
        ConfigurationError: If a required library path is missing.
    """
    host = os.environ if host_env is None else host_env
    extra = dict(overrides or {})

    env: dict[str, str] = {JOBS_VAR: "1"}
    for name in LIBRARY_PATH_VARS:
        value = extra.pop(name, None) or host.get(name)
        if not value:
            raise ConfigurationError(
                f"{name} is not set. Export it or pass it with --env {name}=PATH."
            )
        env[name] = value
    for name in TOOLCHAIN_LOCATION_VARS:
        value = extra.pop(name, None) or host.get(name)
        if value:
            env[name] = value
    env.update(extra)

    validate_base_environment(env)
    return freeze_environment(env)


def validate_base_environment(base: Environment) -> None:
    """Raise ConfigurationError if *base* lacks a required key.

    Job parallelism must be exactly ``"1"``.
    """
    missing = [name for name in REQUIRED_VARS if not base.get(name)]
    if missing:
        raise ConfigurationError(
            f"Base environment is missing required variable(s): {', '.join(missing)}"
        )
    if base[JOBS_VAR] != "1":
        raise ConfigurationError(
            f"{JOBS_VAR} must be 1 in the base environment (got {base[JOBS_VAR]!r})."
        )


def build_environment(base: Environment, variant: Variant) -> Environment:
    """Return the environment for one variant's build.

    The result is the base plus the variant's compiler flags and
    toolchain channel selector.  *base* is never modified.
    """
    validate_base_environment(base)
    env = dict(base)
    env[FLAGS_VAR] = variant.rustflags
    env[TOOLCHAIN_VAR] = variant.channel.value
    return freeze_environment(env)
