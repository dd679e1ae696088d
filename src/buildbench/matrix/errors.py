"""Exception types for the variant matrix."""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Raised for configuration that can never produce a valid build.

    Covers malformed base environments, invalid variant definitions,
    bad profiles and unusable working directories.  Never retried.
    """


class DuplicateVariantError(ConfigurationError):
    """Raised when two variants in one registry share an identifier."""

    def __init__(self, variant_id: str) -> None:
        super().__init__(f"Duplicate variant id: '{variant_id}'")
        self.variant_id = variant_id
