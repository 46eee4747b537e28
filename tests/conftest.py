"""Shared fixtures: small BAM, VCF and reference files written with pysam."""

from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pysam
import pytest

from mity.models import CallRequest, GenomicRegion, derive_output_paths

MT_LENGTH = 16569


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    """Every test starts from the bundled defaults."""
    for var in ("MITY_MIN_MQ", "MITY_MIN_BQ", "MITY_MIN_AF", "MITY_MIN_AC", "MITY_P",
                "MITY_MIN_DP", "MITY_REF_DIR"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr("mity.config._config", None)


def write_bam(
    path: Path,
    contigs: Sequence[tuple] = (("MT", MT_LENGTH),),
    read_groups: Sequence[str] = ("rg1",),
) -> Path:
    """Write a header-only BAM."""
    header: Dict = {
        "HD": {"VN": "1.6", "SO": "coordinate"},
        "SQ": [{"SN": name, "LN": length} for name, length in contigs],
    }
    if read_groups:
        header["RG"] = [{"ID": rg, "SM": rg} for rg in read_groups]
    with pysam.AlignmentFile(str(path), "wb", header=header):
        pass
    return path


@pytest.fixture
def make_bam(tmp_path):
    def _make(name: str = "sample.bam", **kwargs) -> Path:
        return write_bam(tmp_path / name, **kwargs)

    return _make


@pytest.fixture
def reference_dir(tmp_path):
    """Reference directory holding hs37d5.fa and hs37d5.genome."""
    ref_dir = tmp_path / "reference"
    ref_dir.mkdir()
    (ref_dir / "hs37d5.fa").write_text(">MT\n" + "ACGT" * 25 + "\n")
    (ref_dir / "hs37d5.genome").write_text(f"1\t249250621\nMT\t{MT_LENGTH}\n")
    return ref_dir


@pytest.fixture
def mito_fasta(tmp_path):
    """A 40 bp MT reference with a homopolymer run at positions 11-15."""
    sequence = "ACGTACGTAC" + "GGGGG" + "TCATCATCAT" + "ACGTACGTACGTACG"
    fasta = tmp_path / "mt.fa"
    fasta.write_text(">MT\n" + sequence + "\n")
    pysam.faidx(str(fasta))
    genome = tmp_path / "mt.genome"
    genome.write_text(f"MT\t{len(sequence)}\n")
    return fasta, genome, sequence


VCF_HEADER_LINES = [
    '##INFO=<ID=DP,Number=1,Type=Integer,Description="Total read depth">',
    '##INFO=<ID=AO,Number=A,Type=Integer,Description="Alternate allele observations">',
    '##INFO=<ID=RO,Number=1,Type=Integer,Description="Reference allele observations">',
    '##INFO=<ID=QA,Number=A,Type=Integer,Description="Sum of alternate base qualities">',
    '##INFO=<ID=SAF,Number=A,Type=Integer,Description="Alternate forward strand observations">',
    '##INFO=<ID=SAR,Number=A,Type=Integer,Description="Alternate reverse strand observations">',
    '##INFO=<ID=MQMR,Number=1,Type=Float,Description="Mean mapping quality of reference reads">',
    '##FORMAT=<ID=GT,Number=1,Type=String,Description="Genotype">',
    '##FORMAT=<ID=DP,Number=1,Type=Integer,Description="Read depth">',
    '##FORMAT=<ID=AD,Number=R,Type=Integer,Description="Allelic depths">',
    '##FORMAT=<ID=AO,Number=A,Type=Integer,Description="Alternate allele observations">',
    '##FORMAT=<ID=QA,Number=A,Type=Integer,Description="Sum of alternate base qualities">',
    '##FORMAT=<ID=GL,Number=G,Type=Float,Description="Genotype likelihoods">',
]


def write_vcf(
    path: Path,
    records: List[Dict],
    samples: Sequence[str] = ("s1",),
    contigs: Sequence[tuple] = (("MT", 40),),
) -> Path:
    """
    Write a VCF with pysam.

    Each record dict holds pos, ref, alts, info and optionally samples
    (name -> FORMAT dict) and contig.
    """
    header = pysam.VariantHeader()
    for name, length in contigs:
        header.contigs.add(name, length=length)
    for line in VCF_HEADER_LINES:
        header.add_line(line)
    for sample in samples:
        header.add_sample(sample)

    mode = "wz" if str(path).endswith(".gz") else "w"
    with pysam.VariantFile(str(path), mode, header=header) as vcf:
        for spec in records:
            rec = vcf.new_record(
                contig=spec.get("contig", "MT"),
                start=spec["pos"] - 1,
                alleles=(spec["ref"],) + tuple(spec["alts"]),
                qual=spec.get("qual", 50.0),
            )
            for key, value in spec.get("info", {}).items():
                rec.info[key] = value
            for name, values in spec.get("samples", {}).items():
                for key, value in values.items():
                    rec.samples[name][key] = value
            vcf.write(rec)
    return path


def good_site(pos: int, ref: str = "A", alt: str = "G", **overrides) -> Dict:
    """A single-sample site that passes every quality rule."""
    info = {"DP": 100, "AO": (20,), "RO": 80, "QA": (700,), "SAF": (10,),
            "SAR": (10,), "MQMR": 60.0}
    info.update(overrides)
    return {
        "pos": pos,
        "ref": ref,
        "alts": (alt,),
        "info": info,
        "samples": {"s1": {"GT": (0, 1), "DP": 100, "AO": (20,), "QA": (700,)}},
    }


def make_request(
    tmp_path: Path,
    bams: Sequence[Path],
    prefix: str = "sample",
    normalise: bool = False,
    keep: bool = False,
    genome_file: Optional[Path] = None,
) -> CallRequest:
    """CallRequest over tmp_path without touching headers or references."""
    return CallRequest(
        bams=tuple(bams),
        reference_fasta=tmp_path / "ref.fa",
        genome_file=genome_file,
        region=GenomicRegion("MT", 1, MT_LENGTH),
        output_dir=tmp_path,
        prefix=prefix,
        paths=derive_output_paths(tmp_path, prefix, normalise),
        normalise=normalise,
        keep=keep,
    )
