"""
Main orchestration logic for mity commands.

This module turns command-line inputs into a validated, immutable CallRequest
and then drives the calling pipeline and the normalisation engine.
"""

from pathlib import Path
from typing import Dict, List, Optional, Sequence
import logging

from .config import MityConfig, get_config
from .contig import HeaderReadError, HeaderSummary, locate_mito_contig, read_header
from .io_utils import (
    ConfigError,
    ValidationError,
    make_prefix,
    make_vcf_prefix,
    read_sample_list,
    validate_prefix,
)
from .models import (
    CallRequest,
    CallThresholds,
    FilterThresholds,
    GenomeBuild,
    GenomicRegion,
    NormaliseRequest,
    PLOIDY,
    derive_output_paths,
)
from .normalise import normalise, request_after_call
from .pipeline import build_call_stages, index_stage, norm_stage, run_calling
from .refdir import (
    ReferenceNotFoundError,
    select_reference_fasta,
    select_reference_genome,
)

logger = logging.getLogger(__name__)

PREFIX_REQUIRED_MESSAGE = "If there is more than one BAM/CRAM file, --prefix must be set"


def expand_inputs(files: Sequence[Path], bam_list: bool) -> List[Path]:
    """
    Return the alignment files named on the command line.

    In list mode the single argument is a file listing one path per line.

    Raises:
        ConfigError: If list mode is given anything but exactly one list file
    """
    if not bam_list:
        return list(files)
    if len(files) != 1:
        raise ConfigError(
            f"--bam-file-list expects exactly one list file, got {len(files)}"
        )
    return read_sample_list(files[0])


def check_files_exist(files: Sequence[Path]) -> None:
    """
    Check that every input file exists.

    Raises:
        ValidationError: Naming every missing file
    """
    missing = [f for f in files if not f.exists()]
    if missing:
        raise ValidationError(
            "Missing input files: " + ", ".join(str(f) for f in missing),
            files=missing,
        )


def read_headers(files: Sequence[Path]) -> Dict[Path, HeaderSummary]:
    """
    Read each input header once and check it declares a read group.

    Every input is read before failing, so one error names all offenders.

    Raises:
        ValidationError: Naming every file that is unreadable or has no @RG line
    """
    headers: Dict[Path, HeaderSummary] = {}
    offenders: List[Path] = []
    reasons: List[str] = []
    for path in files:
        try:
            header = read_header(path)
        except HeaderReadError as e:
            logger.debug(f"Cannot read header of {path}: {e}")
            offenders.append(path)
            reasons.append(f"{path} (unreadable header)")
            continue
        if not header.has_read_groups:
            offenders.append(path)
            reasons.append(f"{path} (no @RG line)")
            continue
        headers[path] = header

    if offenders:
        raise ValidationError(
            "Input files have no usable read group (@RG) header: "
            + ", ".join(reasons),
            files=offenders,
        )
    return headers


def resolve_region(region: Optional[str], header: HeaderSummary) -> GenomicRegion:
    """Explicit region if given, otherwise the mitochondrial contig of ``header``."""
    if region is None:
        return locate_mito_contig(header)
    try:
        return GenomicRegion.parse(region, header.sequences)
    except ValueError as e:
        raise ConfigError(str(e)) from e


def create_call_request(
    files: Sequence[Path],
    reference: GenomeBuild = GenomeBuild.HS37D5,
    reference_fasta: Optional[Path] = None,
    genome: Optional[Path] = None,
    ref_dir: Optional[Path] = None,
    prefix: Optional[str] = None,
    output_dir: Optional[Path] = None,
    region: Optional[str] = None,
    min_mq: Optional[int] = None,
    min_bq: Optional[int] = None,
    min_af: Optional[float] = None,
    min_ac: Optional[int] = None,
    p: Optional[float] = None,
    bam_list: bool = False,
    normalise: bool = False,
    keep: bool = False,
    all_samples: bool = False,
    dry_run: bool = False,
    config: Optional[MityConfig] = None,
) -> CallRequest:
    """
    Validate call inputs and build an immutable CallRequest.

    Every check runs before any external process is started.

    Raises:
        ConfigError: If options are missing, ambiguous or invalid
        ValidationError: If input files are missing or lack read groups
        ReferenceNotFoundError: If the reference FASTA cannot be resolved
        ContigResolutionError: If no single mitochondrial contig is declared
    """
    config = config or get_config()

    bams = expand_inputs(files, bam_list)
    if not bams:
        raise ConfigError("At least one BAM/CRAM file is required")

    check_files_exist(bams)
    headers = read_headers(bams)

    if len(bams) > 1 and prefix is None:
        raise ConfigError(PREFIX_REQUIRED_MESSAGE)

    fasta = select_reference_fasta(reference, reference_fasta, ref_dir)

    genome_file: Optional[Path] = None
    try:
        genome_file = select_reference_genome(reference, genome, ref_dir)
    except ReferenceNotFoundError as e:
        if normalise:
            raise ConfigError(f"Normalisation needs a genome file: {e}") from e
        logger.debug(f"No genome file resolved: {e}")

    prefix = validate_prefix(prefix if prefix is not None else make_prefix(bams[0]))
    call_region = resolve_region(region, headers[bams[0]])
    out_dir = output_dir or Path(".")

    try:
        thresholds = CallThresholds.from_config(
            config, min_mq=min_mq, min_bq=min_bq, min_af=min_af, min_ac=min_ac, p=p
        )
        filter_thresholds = FilterThresholds.from_config(config)
    except ValueError as e:
        raise ConfigError(str(e)) from e

    request = CallRequest(
        bams=tuple(bams),
        reference_fasta=fasta,
        genome_file=genome_file,
        region=call_region,
        output_dir=out_dir,
        prefix=prefix,
        paths=derive_output_paths(out_dir, prefix, normalise),
        thresholds=thresholds,
        filter_thresholds=filter_thresholds,
        blacklist=config.get_blacklist(GenomeBuild(reference).value),
        ploidy=PLOIDY,
        normalise=normalise,
        keep=keep,
        bam_list=bam_list,
        all_samples=all_samples,
        dry_run=dry_run,
    )

    logger.info(
        f"Created call request for {len(bams)} file(s), prefix {prefix}, "
        f"region {call_region}"
    )
    return request


def print_call_plan(request: CallRequest) -> None:
    """Print the resolved request and the stages a run would start."""
    print("🔍 DRY RUN - mity call plan:")
    print(f"  📋 Prefix: {request.prefix}")
    print(f"  📁 Inputs: {', '.join(str(b) for b in request.bams)}")
    print(f"  🧬 Reference: {request.reference_fasta}")
    print(f"  📍 Region: {request.region}")
    t = request.thresholds
    print(
        f"  📊 Thresholds: min_mq={t.min_mq}, min_bq={t.min_bq}, "
        f"min_af={t.min_af}, min_ac={t.min_ac}, p={t.p}"
    )
    print("  ⚙️  Stages planned:")
    for i, stage in enumerate(build_call_stages(request), start=1):
        print(f"    {i}. {stage.command_line()}")
    print(f"  📄 Call output: {request.paths.call_vcf}")
    if request.normalise:
        after = request_after_call(request)
        stage = norm_stage(after.input_vcf, after.reference_fasta, after.decomposed_vcf)
        print(f"    normalise: {stage.command_line()}")
        print(f"  📄 Normalised output: {request.paths.normalise_vcf}")


def run_call(request: CallRequest) -> Path:
    """
    Execute a call request.

    Returns:
        Path to the final output (normalised VCF when requested, else call VCF)
    """
    if request.dry_run:
        print_call_plan(request)
        logger.info("Dry run completed - no files written")
        return request.paths.normalise_vcf or request.paths.call_vcf

    call_vcf = run_calling(request)
    if not request.normalise:
        return call_vcf
    return normalise(request_after_call(request))


def create_normalise_request(
    vcf: Path,
    reference: GenomeBuild = GenomeBuild.HS37D5,
    reference_fasta: Optional[Path] = None,
    genome: Optional[Path] = None,
    ref_dir: Optional[Path] = None,
    prefix: Optional[str] = None,
    output_dir: Optional[Path] = None,
    p: Optional[float] = None,
    keep: bool = False,
    all_samples: bool = False,
    config: Optional[MityConfig] = None,
) -> NormaliseRequest:
    """
    Validate inputs for a standalone normalisation run.

    Raises:
        ValidationError: If the VCF does not exist
        ConfigError: If the prefix or thresholds are invalid
        ReferenceNotFoundError: If the reference FASTA or genome file is missing
    """
    config = config or get_config()
    check_files_exist([vcf])

    prefix = validate_prefix(prefix if prefix is not None else make_vcf_prefix(vcf))
    try:
        call_thresholds = CallThresholds.from_config(config, p=p)
        filter_thresholds = FilterThresholds.from_config(config)
    except ValueError as e:
        raise ConfigError(str(e)) from e

    return NormaliseRequest(
        input_vcf=vcf,
        reference_fasta=select_reference_fasta(reference, reference_fasta, ref_dir),
        genome_file=select_reference_genome(reference, genome, ref_dir),
        output_dir=output_dir or Path("."),
        prefix=prefix,
        p=call_thresholds.p,
        thresholds=filter_thresholds,
        blacklist=config.get_blacklist(GenomeBuild(reference).value),
        all_samples=all_samples,
        keep=keep,
    )


def run_normalise(request: NormaliseRequest, dry_run: bool = False) -> Path:
    """Normalise an existing call VCF."""
    if dry_run:
        print("🔍 DRY RUN - mity normalise plan:")
        print(f"  📁 Input: {request.input_vcf}")
        print(f"  🧬 Reference: {request.reference_fasta}")
        print(f"  📏 Genome file: {request.genome_file}")
        stage = norm_stage(request.input_vcf, request.reference_fasta, request.decomposed_vcf)
        print(f"    split: {stage.command_line()}")
        print(f"  📄 Output: {request.output_vcf}")
        print(f"    index: {index_stage(request.output_vcf).command_line()}")
        logger.info("Dry run completed - no files written")
        return request.output_vcf
    return normalise(request)
