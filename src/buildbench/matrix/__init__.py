"""Variant-matrix benchmarking for buildbench.

Runs a project's release build once per toolchain/compiler-flag variant
under a pinned, reproducible environment and records how long each
variant takes.
"""
