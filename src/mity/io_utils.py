"""
I/O utilities for mity.

This module provides input handling helpers: prefix validation and
derivation, BAM list expansion, and scoped removal of intermediate files.
"""

import logging
import re
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, List, Sequence

logger = logging.getLogger(__name__)

# Prefix validation regex
PREFIX_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,128}$")

# Suffixes stripped from a VCF name to recover its prefix
VCF_NAME_PARTS = (".mity", ".call", ".normalise", ".merge", ".report", ".vcf.gz")


class ConfigError(ValueError):
    """Raised when configuration is ambiguous, missing or invalid."""

    pass


class ValidationError(ValueError):
    """
    Raised when input files fail validation.

    Always carries every offending file, not just the first.
    """

    def __init__(self, message: str, files: Sequence[Path] = ()):
        super().__init__(message)
        self.files = list(files)


def validate_prefix(prefix: str) -> str:
    """
    Validate an output prefix.

    Raises:
        ConfigError: If the prefix is empty or contains unsafe characters
    """
    if not prefix:
        raise ConfigError("Prefix cannot be empty")

    if not PREFIX_PATTERN.match(prefix):
        raise ConfigError(
            f"Prefix '{prefix}' is invalid. "
            "Must be 1-128 characters containing only letters, numbers, "
            "periods, underscores, and hyphens."
        )

    return prefix


def make_prefix(input_file: Path) -> str:
    """Derive a prefix from an input file: directory and extension stripped."""
    return input_file.stem


def make_vcf_prefix(vcf_path: Path) -> str:
    """
    Derive a prefix from a mity VCF name.

    Examples:
        "trio.mity.call.vcf.gz" -> "trio"
        "a.mity.normalise.vcf.gz" -> "a"
    """
    name = vcf_path.name
    for part in VCF_NAME_PARTS:
        name = name.replace(part, "")
    return name


def read_sample_list(list_file: Path) -> List[Path]:
    """
    Read alignment paths from a list file, one per line.

    Blank lines are skipped; order is preserved.

    Raises:
        ValidationError: If the list file does not exist
        ConfigError: If the list file names no files
    """
    if not list_file.exists():
        raise ValidationError(f"Missing file: {list_file}", files=[list_file])

    with open(list_file, "r") as f:
        files = [Path(line.strip()) for line in f if line.strip()]

    if not files:
        raise ConfigError(f"BAM/CRAM list file is empty: {list_file}")

    logger.debug(f"Read {len(files)} files from {list_file}")
    return files


def remove_files(paths: Iterable[Path]) -> None:
    """Remove files if present."""
    for path in paths:
        if path.exists():
            logger.debug(f"Removing {path}")
            path.unlink()


@contextmanager
def scratch_files(paths: Sequence[Path], keep: bool = False) -> Iterator[Sequence[Path]]:
    """
    Context manager that removes intermediate files on exit.

    Cleanup runs on success and on failure; nothing is removed when keep is set.
    """
    try:
        yield paths
    finally:
        if keep:
            logger.debug(f"Keeping intermediate files: {', '.join(map(str, paths))}")
        else:
            remove_files(paths)
