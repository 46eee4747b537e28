"""
Normalisation of mity call VCFs.

Splits multi-allelic records and left-aligns alleles with bcftools norm,
rescores QUAL, applies the quality filters, sorts by the genome file's
contig order and writes a bgzipped, indexed VCF.
"""

import logging
from pathlib import Path
from typing import Any, Dict, FrozenSet, Tuple

import pysam

from .filters import RULE_ORDER, apply_filters, filter_descriptions
from .io_utils import remove_files, scratch_files
from .models import (
    CallRequest,
    FilterThresholds,
    NormaliseRequest,
    VariantRecord,
)
from .pipeline import index_vcf, norm_stage, run_pipeline
from .refdir import read_genome_file
from .scoring import QualModel, binomial_qual, score_record

logger = logging.getLogger(__name__)

FORMAT_HEADER_LINES = {
    "q": '##FORMAT=<ID=q,Number=1,Type=Float,Description="Phred-scaled quality of the sample\'s alternate evidence">',
    "FT": '##FORMAT=<ID=FT,Number=1,Type=String,Description="Sample filter status">',
}


class NormalisationError(Exception):
    """Raised when a VCF cannot be normalised."""

    pass


# pysam conversion


def from_pysam(rec: pysam.VariantRecord) -> VariantRecord:
    """Copy a pysam record into a VariantRecord."""
    samples = {}
    for name in rec.samples:
        sample = rec.samples[name]
        samples[str(name)] = {key: sample[key] for key in sample.keys()}
    return VariantRecord(
        contig=rec.chrom,
        pos=rec.pos,
        ref=rec.ref,
        alts=tuple(rec.alts or ()),
        qual=rec.qual,
        filters=list(rec.filter.keys()),
        info={key: rec.info[key] for key in rec.info.keys()},
        samples=samples,
        id=rec.id,
    )


def _missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (tuple, list)):
        return all(v is None for v in value)
    return False


def to_pysam(record: VariantRecord, output: pysam.VariantFile) -> pysam.VariantRecord:
    """Build a pysam record for ``output`` from a VariantRecord."""
    new_record = output.new_record(
        contig=record.contig,
        start=record.pos - 1,
        stop=record.pos - 1 + len(record.ref),
        alleles=record.alleles,
        id=record.id,
        qual=record.qual,
    )

    for key, value in record.info.items():
        if not _missing(value):
            new_record.info[key] = value

    for name in record.filters:
        new_record.filter.add(name)

    for name, values in record.samples.items():
        # GT must be the first FORMAT key
        keys = sorted(values, key=lambda k: k != "GT")
        for key in keys:
            value = values[key]
            if value is None or (key != "GT" and _missing(value)):
                continue
            new_record.samples[name][key] = value

    return new_record


def prepare_header(
    header: pysam.VariantHeader, thresholds: FilterThresholds
) -> pysam.VariantHeader:
    """Copy a header and declare the FILTER and FORMAT fields written here."""
    header = header.copy()
    descriptions = filter_descriptions(thresholds)
    for name in RULE_ORDER:
        if name not in header.filters:
            header.add_line(
                f'##FILTER=<ID={name},Description="{descriptions[name]}">'
            )
    for key, line in FORMAT_HEADER_LINES.items():
        if key not in header.formats:
            header.add_line(line)
    return header


# Engine


def rescore_and_filter(
    record: VariantRecord,
    p: float,
    thresholds: FilterThresholds,
    blacklist: FrozenSet[int],
    all_samples: bool = False,
    model: QualModel = binomial_qual,
) -> VariantRecord:
    """Set QUAL, FILTER, FORMAT/q and FORMAT/FT on a decomposed record."""
    site_score, sample_scores = score_record(
        record, p, model=model, max_qual=thresholds.max_qual
    )
    if site_score is not None:
        record.qual = site_score
    for name, score in sample_scores.items():
        if score is not None:
            record.samples[name]["q"] = score

    decision, per_sample = apply_filters(record, thresholds, blacklist, all_samples)
    record.filters = ["PASS"] if decision.passed else list(decision.failed)
    for name, sample_decision in per_sample.items():
        record.samples[name]["FT"] = sample_decision.filter_value
    return record


def sort_key(contig_order: Dict[str, int]):
    """Sort key placing contigs in genome file order, unknown contigs last."""
    last = len(contig_order)

    def key(record) -> Tuple[int, str, int]:
        return (contig_order.get(record.chrom, last), record.chrom, record.pos)

    return key


def filter_records(
    request: NormaliseRequest, model: QualModel = binomial_qual
) -> int:
    """
    Rescore and filter the decomposed scratch VCF into the filtered scratch
    VCF. Returns the number of records written.

    Raises:
        NormalisationError: If a record still carries more than one ALT
    """
    written = 0
    with pysam.VariantFile(str(request.decomposed_vcf)) as decomposed:
        header = prepare_header(decomposed.header, request.thresholds)

        with pysam.VariantFile(str(request.filtered_vcf), "w", header=header) as output:
            for rec in decomposed:
                if not rec.alts:
                    logger.debug(f"Skipping {rec.chrom}:{rec.pos} with no ALT")
                    continue
                record = from_pysam(rec)
                if record.is_multiallelic:
                    raise NormalisationError(
                        f"Record {record.contig}:{record.pos} was not split: "
                        f"{record.ref}>{','.join(record.alts)}"
                    )
                rescore_and_filter(
                    record,
                    request.p,
                    request.thresholds,
                    request.blacklist,
                    request.all_samples,
                    model,
                )
                output.write(to_pysam(record, output))
                written += 1
    return written


def write_sorted(source: Path, destination: Path, contig_order: Dict[str, int]) -> int:
    """Write ``source`` to bgzipped ``destination`` sorted by contig order and position."""
    with pysam.VariantFile(str(source)) as vcf:
        records = sorted(vcf, key=sort_key(contig_order))
        with pysam.VariantFile(str(destination), "wz", header=vcf.header) as output:
            for rec in records:
                output.write(rec)
    return len(records)


def normalise(request: NormaliseRequest, model: QualModel = binomial_qual) -> Path:
    """
    Run the normalisation engine.

    Returns:
        Path to the bgzipped, indexed normalised VCF

    Raises:
        NormalisationError: If a record cannot be normalised
        ExternalToolError: If bcftools norm or indexing fails, including a
            REF allele that disagrees with the reference
        OSError: If an input cannot be read
    """
    logger.info(f"Normalising {request.input_vcf}")
    contig_order = {
        name: index
        for index, name in enumerate(read_genome_file(request.genome_file))
    }
    request.output_dir.mkdir(parents=True, exist_ok=True)

    scratch = [request.decomposed_vcf, request.filtered_vcf]
    with scratch_files(scratch, keep=request.keep):
        try:
            run_pipeline(
                [
                    norm_stage(
                        request.input_vcf,
                        request.reference_fasta,
                        request.decomposed_vcf,
                    )
                ]
            )
            filtered = filter_records(request, model)
            logger.debug(f"Filtered {filtered} records into {request.filtered_vcf}")
            written = write_sorted(
                request.filtered_vcf, request.output_vcf, contig_order
            )
            index_vcf(request.output_vcf)
        except Exception:
            remove_files([request.output_vcf, request.output_index])
            raise

    if request.consumed and not request.keep:
        remove_files(request.consumed)

    logger.info(f"Normalisation completed: {request.output_vcf} ({written} records)")
    return request.output_vcf


def request_after_call(call: CallRequest) -> NormaliseRequest:
    """Normalisation inputs for the output of a call run."""
    if call.genome_file is None:
        raise NormalisationError("A genome file is required for normalisation")
    return NormaliseRequest(
        input_vcf=call.paths.call_vcf,
        reference_fasta=call.reference_fasta,
        genome_file=call.genome_file,
        output_dir=call.output_dir,
        prefix=call.prefix,
        p=call.thresholds.p,
        thresholds=call.filter_thresholds,
        blacklist=call.blacklist,
        all_samples=call.all_samples,
        keep=call.keep,
        consumed=(call.paths.call_vcf, call.paths.call_index),
    )

