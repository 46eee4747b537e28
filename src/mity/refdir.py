"""
Reference asset resolution for mity.

This module handles:
- Resolution of the reference asset directory
- Mapping a genome build to its reference FASTA and .genome file
- Parsing .genome files into an ordered contig -> length mapping
"""

import os
from pathlib import Path
from typing import Dict, Optional, List, Union
import logging

from .models import GenomeBuild

logger = logging.getLogger(__name__)

FASTA_EXTENSIONS = (".fa", ".fasta", ".fna")
GENOME_EXTENSION = ".genome"


class ReferenceNotFoundError(Exception):
    """Raised when a reference asset cannot be resolved unambiguously."""

    pass


def bundled_reference_directory() -> Path:
    """Reference directory shipped inside the package."""
    return Path(__file__).parent / "reference"


def resolve_reference_directory(ref_dir: Optional[Path] = None) -> Path:
    """
    Resolve the reference asset directory path.

    Precedence:
    1. Provided ref_dir parameter
    2. MITY_REF_DIR environment variable
    3. Bundled package directory (mity/reference)

    Args:
        ref_dir: Explicit reference directory path

    Returns:
        Resolved reference directory path

    Raises:
        ReferenceNotFoundError: If directory doesn't exist or isn't readable
    """
    if ref_dir is not None:
        resolved_dir = ref_dir
    elif "MITY_REF_DIR" in os.environ:
        resolved_dir = Path(os.environ["MITY_REF_DIR"])
    else:
        resolved_dir = bundled_reference_directory()

    if not resolved_dir.exists():
        raise ReferenceNotFoundError(
            f"Reference directory does not exist: {resolved_dir}\n"
            f"Please create the directory or set the MITY_REF_DIR environment variable."
        )

    if not resolved_dir.is_dir():
        raise ReferenceNotFoundError(f"Reference path is not a directory: {resolved_dir}")

    try:
        list(resolved_dir.iterdir())
    except PermissionError:
        raise ReferenceNotFoundError(
            f"Cannot read reference directory: {resolved_dir}\n"
            f"Please check permissions."
        )

    logger.debug(f"Using reference directory: {resolved_dir}")
    return resolved_dir


def _build_name(build: Union[GenomeBuild, str]) -> str:
    if isinstance(build, GenomeBuild):
        return build.value
    try:
        return GenomeBuild(build).value
    except ValueError:
        valid = [b.value for b in GenomeBuild]
        raise ReferenceNotFoundError(
            f"Unknown genome build '{build}'. Valid options: {valid}"
        )


def _select_single(
    ref_dir: Path, build: str, extensions: tuple, kind: str
) -> Path:
    candidates: List[Path] = []
    for ext in extensions:
        candidates.extend(sorted(ref_dir.glob(f"{build}{ext}")))

    logger.debug(f"Reference {kind} candidates for {build}: {candidates}")

    if len(candidates) != 1:
        found = ", ".join(str(c) for c in candidates) if candidates else "none"
        raise ReferenceNotFoundError(
            f"Expected exactly one reference {kind} file for '{build}' in {ref_dir}, "
            f"found: {found}"
        )
    return candidates[0]


def select_reference_fasta(
    build: Union[GenomeBuild, str],
    override: Optional[Path] = None,
    ref_dir: Optional[Path] = None,
) -> Path:
    """
    Select the reference FASTA for a genome build.

    An existing override path is returned verbatim without searching.

    Raises:
        ReferenceNotFoundError: If zero or several candidate files match
    """
    if override is not None and override.exists():
        logger.info(f"Using reference fasta override: {override}")
        return override
    if override is not None:
        logger.warning(f"Reference fasta override not found, searching: {override}")

    name = _build_name(build)
    fasta = _select_single(
        resolve_reference_directory(ref_dir), name, FASTA_EXTENSIONS, "fasta"
    )
    logger.info(f"Resolved reference fasta for {name}: {fasta}")
    return fasta


def select_reference_genome(
    build: Union[GenomeBuild, str],
    override: Optional[Path] = None,
    ref_dir: Optional[Path] = None,
) -> Path:
    """
    Select the genome-length/order (.genome) file for a genome build.

    Raises:
        ReferenceNotFoundError: If zero or several candidate files match
    """
    if override is not None and override.exists():
        logger.info(f"Using genome file override: {override}")
        return override
    if override is not None:
        logger.warning(f"Genome file override not found, searching: {override}")

    name = _build_name(build)
    genome = _select_single(
        resolve_reference_directory(ref_dir), name, (GENOME_EXTENSION,), "genome"
    )
    logger.info(f"Resolved genome file for {name}: {genome}")
    return genome


def read_genome_file(genome_path: Path) -> Dict[str, int]:
    """
    Parse a .genome file into an ordered contig -> length mapping.

    Lines are ``name<TAB>length``; blank lines and ``#`` comments are skipped.

    Raises:
        ReferenceNotFoundError: If the file is missing or malformed
    """
    contigs: Dict[str, int] = {}
    try:
        with open(genome_path, "r") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                fields = line.split()
                if len(fields) < 2:
                    raise ReferenceNotFoundError(
                        f"Malformed genome file {genome_path} at line {line_no}: '{line}'"
                    )
                try:
                    contigs[fields[0]] = int(fields[1])
                except ValueError:
                    raise ReferenceNotFoundError(
                        f"Invalid contig length in {genome_path} at line {line_no}: "
                        f"'{fields[1]}'"
                    )
    except FileNotFoundError:
        raise ReferenceNotFoundError(f"Genome file not found: {genome_path}")

    logger.debug(f"Read {len(contigs)} contigs from {genome_path}")
    return contigs


def list_available_builds(ref_dir: Optional[Path] = None) -> Dict[str, Dict[str, bool]]:
    """
    Report which assets are present for each supported build.

    Returns:
        Mapping of build name to {"fasta": bool, "genome": bool}
    """
    status: Dict[str, Dict[str, bool]] = {}
    for build in GenomeBuild:
        entry = {"fasta": False, "genome": False}
        try:
            select_reference_fasta(build, ref_dir=ref_dir)
            entry["fasta"] = True
        except ReferenceNotFoundError:
            pass
        try:
            select_reference_genome(build, ref_dir=ref_dir)
            entry["genome"] = True
        except ReferenceNotFoundError:
            pass
        status[build.value] = entry
    return status
