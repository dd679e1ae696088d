"""buildbench: compare compile times of a project across toolchain variants."""

__version__ = "0.1.0"
