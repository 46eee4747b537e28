"""
Header inspection and mitochondrial contig resolution.

Alignment (BAM/CRAM/SAM) and variant (VCF/BCF) headers are parsed once into a
HeaderSummary, which is then queried for declared sequences, read groups and
the mitochondrial region.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Tuple

import pysam

from .models import GenomicRegion

logger = logging.getLogger(__name__)

# Exact names only; no case folding or fuzzy matching.
MITO_CONTIG_NAMES: Tuple[str, ...] = ("MT", "chrM")

VARIANT_SUFFIXES = (".vcf", ".vcf.gz", ".vcf.bgz", ".bcf")


class ContigResolutionError(Exception):
    """Raised when zero or several mitochondrial contigs are declared."""

    def __init__(self, message: str, candidates: Tuple[str, ...] = ()):
        super().__init__(message)
        self.candidates = candidates


class HeaderReadError(OSError):
    """Raised when an alignment or variant header cannot be read."""

    pass


@dataclass
class HeaderSummary:
    """Parsed header of an alignment or variant file."""

    path: Path
    sequences: Dict[str, int] = field(default_factory=dict)
    read_groups: List[str] = field(default_factory=list)
    samples: List[str] = field(default_factory=list)

    @property
    def has_read_groups(self) -> bool:
        return len(self.read_groups) > 0

    def mito_candidates(self) -> Tuple[str, ...]:
        """Declared sequences named exactly MT or chrM, in header order."""
        return tuple(name for name in self.sequences if name in MITO_CONTIG_NAMES)


def is_variant_file(path: Path) -> bool:
    """True if the path looks like a VCF/BCF file."""
    name = path.name.lower()
    return any(name.endswith(suffix) for suffix in VARIANT_SUFFIXES)


def _alignment_mode(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix == ".cram":
        return "rc"
    if suffix == ".sam":
        return "r"
    return "rb"


def read_alignment_header(path: Path) -> HeaderSummary:
    """
    Read sequence and read-group declarations from a BAM/CRAM/SAM header.

    Raises:
        HeaderReadError: If the file cannot be opened as an alignment file
    """
    try:
        with pysam.AlignmentFile(
            str(path), _alignment_mode(path), check_sq=False
        ) as aln:
            header = aln.header.to_dict()
    except (ValueError, OSError) as e:
        raise HeaderReadError(f"Failed to read alignment header from {path}: {e}") from e

    sequences = {sq["SN"]: int(sq["LN"]) for sq in header.get("SQ", [])}
    read_groups = [rg.get("ID", "") for rg in header.get("RG", [])]
    samples = sorted({rg["SM"] for rg in header.get("RG", []) if "SM" in rg})

    logger.debug(
        f"Read alignment header {path}: {len(sequences)} sequences, "
        f"{len(read_groups)} read groups"
    )
    return HeaderSummary(
        path=path, sequences=sequences, read_groups=read_groups, samples=samples
    )


def read_variant_header(path: Path) -> HeaderSummary:
    """
    Read contig declarations and sample names from a VCF/BCF header.

    Contigs without a declared length are recorded with length 0.

    Raises:
        HeaderReadError: If the file cannot be opened as a variant file
    """
    try:
        with pysam.VariantFile(str(path)) as vcf:
            sequences = {
                str(name): int(record.length) if record.length is not None else 0
                for name, record in vcf.header.contigs.items()
            }
            samples = list(vcf.header.samples)
    except (ValueError, OSError) as e:
        raise HeaderReadError(f"Failed to read variant header from {path}: {e}") from e

    logger.debug(f"Read variant header {path}: {len(sequences)} contigs")
    return HeaderSummary(path=path, sequences=sequences, samples=samples)


def read_header(path: Path) -> HeaderSummary:
    """Read a header, choosing the reader from the file name."""
    if is_variant_file(path):
        return read_variant_header(path)
    return read_alignment_header(path)


def locate_mito_contig(header: HeaderSummary) -> GenomicRegion:
    """
    Resolve the single mitochondrial contig declared in a header.

    Returns:
        GenomicRegion spanning the whole contig (1 to declared length)

    Raises:
        ContigResolutionError: If zero or several of MT/chrM are declared
    """
    candidates = header.mito_candidates()
    if len(candidates) != 1:
        found = ", ".join(candidates) if candidates else "none"
        raise ContigResolutionError(
            f"Expected exactly one mitochondrial contig ({' or '.join(MITO_CONTIG_NAMES)}) "
            f"in {header.path}, found: {found}",
            candidates=candidates,
        )

    contig = candidates[0]
    length = header.sequences[contig]
    if length < 1:
        raise ContigResolutionError(
            f"Mitochondrial contig '{contig}' in {header.path} has no declared length",
            candidates=candidates,
        )

    region = GenomicRegion(contig=contig, start=1, end=length)
    logger.info(f"Resolved mitochondrial region from {header.path}: {region}")
    return region


def resolve_mito_region(path: Path) -> GenomicRegion:
    """Read a header and resolve its mitochondrial region."""
    return locate_mito_contig(read_header(path))
