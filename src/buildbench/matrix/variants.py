"""Variant definitions and the variant registry.

A variant is one named combination of toolchain channel and compiler
flags.  Variants are plain data: the matrix is built from a small table
(codegen granularities x channels) or from explicit profile records
rather than one hand-written block per combination.

Registry ordering is declaration order and never changes after the
registry is constructed.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from typing import Any

from buildbench.matrix.errors import ConfigurationError, DuplicateVariantError

DEFAULT_CODEGEN_UNITS: tuple[int, ...] = (1, 10, 16)
DEFAULT_NIGHTLY_THREADS = 8


class Channel(str, enum.Enum):
    """Toolchain release channel."""

    STABLE = "stable"
    NIGHTLY = "nightly"


def parse_channel(value: str | Channel) -> Channel:
    """Return the Channel for *value*, raising ConfigurationError if unknown."""
    if isinstance(value, Channel):
        return value
    try:
        return Channel(str(value).strip().lower())
    except ValueError:
        valid = ", ".join(c.value for c in Channel)
        raise ConfigurationError(
            f"Unknown toolchain channel '{value}'. Valid channels: {valid}"
        ) from None


def compose_rustflags(codegen_units: int, threads: int | None = None) -> str:
    """Build the compiler flag string for a variant.

    The codegen-units token always comes first; the parallel-frontend
    thread token follows only when *threads* is set.
    """
    tokens = [f"-Ccodegen-units={codegen_units}"]
    if threads is not None:
        tokens.append(f"-Zthreads={threads}")
    return " ".join(tokens)


# ---------------------------------------------------------------------------
# Variant
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Variant:
    """One benchmarked toolchain configuration."""

    id: str
    channel: Channel = Channel.STABLE
    codegen_units: int = 16
    threads: int | None = None
    description: str = ""

    def __post_init__(self) -> None:
        if not self.id or not self.id.strip():
            raise ConfigurationError("Variant id cannot be empty.")
        object.__setattr__(self, "channel", parse_channel(self.channel))
        if isinstance(self.codegen_units, bool) or not isinstance(self.codegen_units, int):
            raise ConfigurationError(
                f"Variant '{self.id}': codegen_units must be an integer "
                f"(got {self.codegen_units!r})."
            )
        if self.codegen_units < 1:
            raise ConfigurationError(
                f"Variant '{self.id}': codegen_units must be positive "
                f"(got {self.codegen_units})."
            )
        if self.threads is not None:
            if isinstance(self.threads, bool) or not isinstance(self.threads, int):
                raise ConfigurationError(
                    f"Variant '{self.id}': threads must be an integer (got {self.threads!r})."
                )
            if self.threads < 1:
                raise ConfigurationError(
                    f"Variant '{self.id}': threads must be positive (got {self.threads})."
                )
            if self.channel is not Channel.NIGHTLY:
                raise ConfigurationError(
                    f"Variant '{self.id}': threads requires the nightly channel "
                    f"(got {self.channel.value})."
                )

    @property
    def rustflags(self) -> str:
        """The derived compiler flag string."""
        return compose_rustflags(self.codegen_units, self.threads)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict (sparse: omits defaults)."""
        d: dict[str, Any] = {
            "id": self.id,
            "channel": self.channel.value,
            "codegen_units": self.codegen_units,
        }
        if self.threads is not None:
            d["threads"] = self.threads
        if self.description:
            d["description"] = self.description
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Variant:
        """Deserialize from a dict (a profile record or ``to_dict`` output)."""
        if "id" not in data:
            raise ConfigurationError(f"Variant record has no 'id': {data!r}")
        known = {"id", "channel", "codegen_units", "threads", "description"}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(
                f"Unknown key(s) {', '.join(unknown)} in variant '{data['id']}'. "
                f"Valid keys: {', '.join(sorted(known))}"
            )
        return cls(
            id=str(data["id"]),
            channel=parse_channel(data.get("channel", Channel.STABLE)),
            codegen_units=data.get("codegen_units", 16),
            threads=data.get("threads"),
            description=data.get("description", ""),
        )


def variant_id_for(codegen_units: int, channel: Channel) -> str:
    """Return the conventional id for a table-generated variant."""
    base = f"codegenunits-{codegen_units}"
    if channel is Channel.STABLE:
        return base
    return f"{base}-{channel.value}"


def expand_variants(
    codegen_units: Iterable[int] = DEFAULT_CODEGEN_UNITS,
    channels: Iterable[Channel | str] = (Channel.STABLE, Channel.NIGHTLY),
    *,
    nightly_threads: int | None = DEFAULT_NIGHTLY_THREADS,
) -> list[Variant]:
    """Expand a granularity x channel table into variants.

    Ordering is granularity-major: every channel of the first
    granularity, then every channel of the second, and so on.
    Nightly variants get *nightly_threads*; stable variants never do.
    """
    channel_list = [parse_channel(c) for c in channels]
    variants: list[Variant] = []
    for cu in codegen_units:
        for channel in channel_list:
            threads = nightly_threads if channel is Channel.NIGHTLY else None
            variants.append(
                Variant(
                    id=variant_id_for(cu, channel),
                    channel=channel,
                    codegen_units=cu,
                    threads=threads,
                )
            )
    return variants


def variants_from_records(records: Sequence[dict[str, Any]]) -> list[Variant]:
    """Build variants from a list of explicit profile records."""
    variants: list[Variant] = []
    for record in records:
        if not isinstance(record, dict):
            raise ConfigurationError(
                f"Variant record must be a mapping, got {type(record).__name__}"
            )
        variants.append(Variant.from_dict(record))
    return variants


# ---------------------------------------------------------------------------
# VariantRegistry
# ---------------------------------------------------------------------------


class VariantRegistry:
    """Read-only, ordered collection of uniquely named variants.

    All variants are registered at construction; there is no way to add
    or remove one afterwards.

    Usage::

        registry = VariantRegistry(expand_variants((1, 10)))
        for variant in registry.enumerate():
            ...
    """

    def __init__(self, variants: Iterable[Variant] = ()) -> None:
        by_id: dict[str, Variant] = {}
        for variant in variants:
            if variant.id in by_id:
                raise DuplicateVariantError(variant.id)
            by_id[variant.id] = variant
        self._by_id = by_id
        self._ordered = tuple(by_id.values())

    def enumerate(self) -> tuple[Variant, ...]:
        """Return every variant in declaration order."""
        return self._ordered

    def ids(self) -> list[str]:
        """Variant ids in declaration order."""
        return [v.id for v in self._ordered]

    def get(self, variant_id: str) -> Variant:
        """Look up a variant by id.

        Raises:
            KeyError: If no variant has that id.
        """
        try:
            return self._by_id[variant_id]
        except KeyError:
            known = ", ".join(self.ids()) or "(none)"
            raise KeyError(f"Unknown variant '{variant_id}'. Known variants: {known}") from None

    def select(self, variant_ids: Iterable[str]) -> VariantRegistry:
        """Return a registry restricted to *variant_ids*, keeping declaration order.

        Raises:
            ConfigurationError: If any id is not registered.
        """
        wanted = set(variant_ids)
        missing = sorted(wanted - set(self._by_id))
        if missing:
            raise ConfigurationError(
                f"Unknown variant(s): {', '.join(missing)}. "
                f"Known variants: {', '.join(self.ids()) or '(none)'}"
            )
        return VariantRegistry(v for v in self._ordered if v.id in wanted)

    def __len__(self) -> int:
        return len(self._ordered)

    def __iter__(self) -> Iterator[Variant]:
        return iter(self._ordered)

    def __contains__(self, variant_id: object) -> bool:
        return variant_id in self._by_id

    def __repr__(self) -> str:
        return f"VariantRegistry({self.ids()!r})"


def default_registry() -> VariantRegistry:
    """The stock matrix: codegen-units 1/10/16 on stable and nightly."""
    return VariantRegistry(expand_variants())
