"""
Core data models for mity.

This module defines the primary data structures used throughout the application,
including the immutable call request, genomic regions, filter thresholds and the
in-memory variant record used by the normalisation engine.
"""

from __future__ import annotations
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any, List, Tuple, FrozenSet, TYPE_CHECKING

if TYPE_CHECKING:
    from .config import MityConfig


# Ploidy passed to the caller. Mitochondrial heteroplasmy is modelled as diploid.
PLOIDY = 2

REGION_PATTERN = re.compile(r"^(?P<contig>[^:\s]+)(?::(?P<start>\d+)-(?P<end>\d+))?$")


class GenomeBuild(Enum):
    """Supported reference genome builds."""

    HS37D5 = "hs37d5"
    HG19 = "hg19"
    HG38 = "hg38"
    MM10 = "mm10"


@dataclass(frozen=True)
class GenomicRegion:
    """A contiguous 1-based, closed coordinate span on a contig."""

    contig: str
    start: int
    end: int

    def __post_init__(self) -> None:
        if not self.contig:
            raise ValueError("Region contig cannot be empty")
        if self.start < 1:
            raise ValueError(f"Region start must be >= 1, got {self.start}")
        if self.start > self.end:
            raise ValueError(
                f"Region start ({self.start}) must not exceed end ({self.end})"
            )

    def __str__(self) -> str:
        return f"{self.contig}:{self.start}-{self.end}"

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @classmethod
    def parse(
        cls, region: str, contig_lengths: Optional[Dict[str, int]] = None
    ) -> "GenomicRegion":
        """
        Parse a region string such as ``MT``, ``chrM:1-16569`` or ``MT:300-320``.

        A bare contig name spans the whole contig and needs its length from
        ``contig_lengths``.

        Raises:
            ValueError: If the string is malformed or the span is invalid
        """
        match = REGION_PATTERN.match(region.strip())
        if not match:
            raise ValueError(f"Invalid region '{region}'. Expected CONTIG[:START-END]")

        contig = match.group("contig")
        if match.group("start") is None:
            if not contig_lengths or contig not in contig_lengths:
                raise ValueError(
                    f"Region '{region}' has no coordinates and the length of "
                    f"'{contig}' is unknown"
                )
            return cls(contig=contig, start=1, end=contig_lengths[contig])

        return cls(
            contig=contig, start=int(match.group("start")), end=int(match.group("end"))
        )


@dataclass(frozen=True)
class CallThresholds:
    """Thresholds passed to the external variant caller."""

    min_mq: int = 30
    min_bq: int = 24
    min_af: float = 0.01
    min_ac: int = 4
    p: float = 0.002

    def __post_init__(self) -> None:
        if self.min_mq < 0:
            raise ValueError("min_mq must be >= 0")
        if self.min_bq < 0:
            raise ValueError("min_bq must be >= 0")
        if not 0.0 <= self.min_af <= 1.0:
            raise ValueError("min_af must be between 0.0 and 1.0")
        if self.min_ac < 0:
            raise ValueError("min_ac must be >= 0")
        if not 0.0 < self.p < 1.0:
            raise ValueError("p must be strictly between 0.0 and 1.0")

    @classmethod
    def from_config(
        cls, config: Optional["MityConfig"] = None, **overrides: Any
    ) -> "CallThresholds":
        """
        Create CallThresholds from configuration with optional overrides.

        Overrides that are None fall back to the configured value.
        """
        if config is None:
            from .config import get_config

            config = get_config()

        kwargs = {
            "min_mq": config.get_call_threshold("min_mq", 30),
            "min_bq": config.get_call_threshold("min_bq", 24),
            "min_af": config.get_call_threshold("min_af", 0.01),
            "min_ac": config.get_call_threshold("min_ac", 4),
            "p": config.get_call_threshold("p", 0.002),
        }
        kwargs.update({k: v for k, v in overrides.items() if v is not None})

        return cls(**kwargs)


@dataclass(frozen=True)
class FilterThresholds:
    """Fixed quality rules applied by the normalisation engine."""

    min_dp: int = 15
    min_mqmr: float = 30.0
    min_aqr: float = 20.0
    sb_low: float = 0.1
    sb_high: float = 0.9
    max_qual: float = 10000.0

    def __post_init__(self) -> None:
        if self.min_dp < 0:
            raise ValueError("min_dp must be >= 0")
        if not 0.0 <= self.sb_low <= self.sb_high <= 1.0:
            raise ValueError("strand bias range must satisfy 0 <= low <= high <= 1")
        if self.max_qual <= 0:
            raise ValueError("max_qual must be > 0")

    @classmethod
    def from_config(
        cls, config: Optional["MityConfig"] = None, **overrides: Any
    ) -> "FilterThresholds":
        """Create FilterThresholds from configuration with optional overrides."""
        if config is None:
            from .config import get_config

            config = get_config()

        sb_low, sb_high = config.get_filter_setting("sb_range", [0.1, 0.9])
        kwargs = {
            "min_dp": config.get_filter_setting("min_dp", 15),
            "min_mqmr": config.get_filter_setting("min_mqmr", 30.0),
            "min_aqr": config.get_filter_setting("min_aqr", 20.0),
            "sb_low": sb_low,
            "sb_high": sb_high,
            "max_qual": config.get_filter_setting("max_qual", 10000.0),
        }
        kwargs.update({k: v for k, v in overrides.items() if v is not None})

        return cls(**kwargs)


@dataclass(frozen=True)
class OutputPaths:
    """Deterministic output locations for one invocation."""

    call_vcf: Path
    normalise_vcf: Optional[Path] = None

    @property
    def call_index(self) -> Path:
        return Path(f"{self.call_vcf}.tbi")

    @property
    def normalise_index(self) -> Optional[Path]:
        if self.normalise_vcf is None:
            return None
        return Path(f"{self.normalise_vcf}.tbi")


def derive_output_paths(output_dir: Path, prefix: str, normalise: bool) -> OutputPaths:
    """
    Compute the output paths for a call run.

    ``<output_dir>/<prefix>.mity.call.vcf.gz`` always, plus
    ``<output_dir>/<prefix>.mity.normalise.vcf.gz`` when normalising.
    """
    return OutputPaths(
        call_vcf=output_dir / f"{prefix}.mity.call.vcf.gz",
        normalise_vcf=(
            output_dir / f"{prefix}.mity.normalise.vcf.gz" if normalise else None
        ),
    )


@dataclass(frozen=True)
class CallRequest:
    """
    Complete, immutable configuration for one ``mity call`` invocation.

    Built once from validated inputs; nothing downstream mutates it.
    """

    bams: Tuple[Path, ...]
    reference_fasta: Path
    genome_file: Optional[Path]
    region: GenomicRegion
    output_dir: Path
    prefix: str
    paths: OutputPaths
    thresholds: CallThresholds = field(default_factory=CallThresholds)
    filter_thresholds: FilterThresholds = field(default_factory=FilterThresholds)
    blacklist: FrozenSet[int] = frozenset()
    ploidy: int = PLOIDY
    normalise: bool = False
    keep: bool = False
    bam_list: bool = False
    all_samples: bool = False
    dry_run: bool = False


@dataclass(frozen=True)
class NormaliseRequest:
    """Inputs for one run of the normalisation engine."""

    input_vcf: Path
    reference_fasta: Path
    genome_file: Path
    output_dir: Path
    prefix: str
    p: float = 0.002
    thresholds: FilterThresholds = field(default_factory=FilterThresholds)
    blacklist: FrozenSet[int] = frozenset()
    all_samples: bool = False
    keep: bool = False
    # Files removed after a successful run unless keep is set
    consumed: Tuple[Path, ...] = ()

    @property
    def output_vcf(self) -> Path:
        return self.output_dir / f"{self.prefix}.mity.normalise.vcf.gz"

    @property
    def output_index(self) -> Path:
        return Path(f"{self.output_vcf}.tbi")

    @property
    def decomposed_vcf(self) -> Path:
        return self.output_dir / f"{self.prefix}.mity.decomposed.vcf"

    @property
    def filtered_vcf(self) -> Path:
        return self.output_dir / f"{self.prefix}.mity.filtered.vcf"


@dataclass(frozen=True)
class FilterDecision:
    """Outcome of applying the quality rules to a record or a sample."""

    passed: bool
    failed: Tuple[str, ...] = ()

    @property
    def filter_value(self) -> str:
        """Value for a VCF FILTER or FORMAT/FT field."""
        return "PASS" if self.passed else ";".join(self.failed)


@dataclass
class VariantRecord:
    """
    In-memory view of a single VCF record.

    ``info`` maps INFO keys to values and ``samples`` maps sample names (in
    header order) to their FORMAT values. Per-allele values are tuples.
    """

    contig: str
    pos: int
    ref: str
    alts: Tuple[str, ...]
    qual: Optional[float] = None
    filters: List[str] = field(default_factory=list)
    info: Dict[str, Any] = field(default_factory=dict)
    samples: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    id: Optional[str] = None

    @property
    def alleles(self) -> Tuple[str, ...]:
        return (self.ref,) + tuple(self.alts)

    @property
    def is_multiallelic(self) -> bool:
        return len(self.alts) > 1

    @property
    def depth(self) -> Optional[int]:
        return first_value(self.info.get("DP"))

    @property
    def alt_count(self) -> Optional[int]:
        return first_value(self.info.get("AO"))

    @property
    def ref_mapping_quality(self) -> Optional[float]:
        return first_value(self.info.get("MQMR"))

    @property
    def alt_base_quality(self) -> Optional[float]:
        return mean_alt_base_quality(self.info)

    @property
    def strand_bias_ratio(self) -> Optional[float]:
        """Fraction of alternate observations on the forward strand."""
        forward = first_value(self.info.get("SAF"))
        reverse = first_value(self.info.get("SAR"))
        if forward is None or reverse is None:
            return None
        total = forward + reverse
        if total == 0:
            return None
        return forward / total

    def key(self) -> Tuple[str, int, str, Tuple[str, ...]]:
        return (self.contig, self.pos, self.ref, tuple(self.alts))


def mean_alt_base_quality(values: Dict[str, Any]) -> Optional[float]:
    """Mean base quality of alternate observations (QA / AO)."""
    qa = first_value(values.get("QA"))
    ao = first_value(values.get("AO"))
    if qa is None or ao is None or ao == 0:
        return None
    return qa / ao


def first_value(value: Any) -> Any:
    """Collapse a single-element tuple/list to its value; None stays None."""
    if isinstance(value, (tuple, list)):
        if len(value) == 0:
            return None
        return value[0]
    return value
