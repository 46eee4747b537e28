"""
Tests for models.py data structures.
"""

import pytest
from pathlib import Path

from mity.models import (
    CallThresholds,
    FilterDecision,
    FilterThresholds,
    GenomicRegion,
    NormaliseRequest,
    VariantRecord,
    derive_output_paths,
)


class TestGenomicRegion:
    """Test region parsing and validation."""

    def test_str_format(self):
        """Test regions render as contig:start-end."""
        assert str(GenomicRegion("MT", 1, 16569)) == "MT:1-16569"

    def test_parse_explicit_span(self):
        """Test parsing a region with coordinates."""
        region = GenomicRegion.parse("chrM:300-320")
        assert region == GenomicRegion("chrM", 300, 320)
        assert region.length == 21

    def test_parse_bare_contig_uses_length(self):
        """Test a bare contig spans its declared length."""
        region = GenomicRegion.parse("MT", {"MT": 16569})
        assert region == GenomicRegion("MT", 1, 16569)

    def test_parse_bare_contig_unknown_length(self):
        """Test a bare contig without a known length is rejected."""
        with pytest.raises(ValueError, match="length"):
            GenomicRegion.parse("MT")

    @pytest.mark.parametrize("bad", ["MT:10", "MT:a-b", "", "MT:1-2-3"])
    def test_parse_malformed(self, bad):
        """Test malformed region strings are rejected."""
        with pytest.raises(ValueError):
            GenomicRegion.parse(bad, {"MT": 16569})

    def test_start_after_end(self):
        """Test an inverted span is rejected."""
        with pytest.raises(ValueError, match="must not exceed"):
            GenomicRegion("MT", 20, 10)


class TestThresholds:
    """Test caller and filter thresholds."""

    def test_call_defaults(self):
        """Test the default caller thresholds."""
        t = CallThresholds()
        assert (t.min_mq, t.min_bq, t.min_af, t.min_ac, t.p) == (30, 24, 0.01, 4, 0.002)

    @pytest.mark.parametrize(
        "kwargs", [{"min_mq": -1}, {"min_af": 1.5}, {"p": 0.0}, {"p": 1.0}]
    )
    def test_call_invalid(self, kwargs):
        """Test out-of-range caller thresholds are rejected."""
        with pytest.raises(ValueError):
            CallThresholds(**kwargs)

    def test_from_config_ignores_none_overrides(self):
        """Test None overrides fall back to configured values."""
        t = CallThresholds.from_config(min_mq=None, min_ac=2)
        assert t.min_mq == 30
        assert t.min_ac == 2

    def test_filter_defaults(self):
        """Test the default filter thresholds."""
        t = FilterThresholds.from_config()
        assert t.min_dp == 15
        assert (t.sb_low, t.sb_high) == (0.1, 0.9)

    def test_filter_invalid_strand_range(self):
        """Test an inverted strand-bias range is rejected."""
        with pytest.raises(ValueError, match="strand bias"):
            FilterThresholds(sb_low=0.9, sb_high=0.1)


class TestOutputPaths:
    """Test deterministic output naming."""

    def test_call_only(self):
        """Test paths without normalisation."""
        paths = derive_output_paths(Path("out"), "trio", normalise=False)
        assert paths.call_vcf == Path("out/trio.mity.call.vcf.gz")
        assert paths.call_index == Path("out/trio.mity.call.vcf.gz.tbi")
        assert paths.normalise_vcf is None
        assert paths.normalise_index is None

    def test_with_normalise(self):
        """Test the normalised output sits beside the call output."""
        paths = derive_output_paths(Path("out"), "trio", normalise=True)
        assert paths.normalise_vcf == Path("out/trio.mity.normalise.vcf.gz")

    def test_normalise_request_paths_agree(self):
        """Test the engine writes where the call run expects it."""
        request = NormaliseRequest(
            input_vcf=Path("out/trio.mity.call.vcf.gz"),
            reference_fasta=Path("ref.fa"),
            genome_file=Path("ref.genome"),
            output_dir=Path("out"),
            prefix="trio",
        )
        paths = derive_output_paths(Path("out"), "trio", normalise=True)
        assert request.output_vcf == paths.normalise_vcf
        assert request.filtered_vcf == Path("out/trio.mity.filtered.vcf")


class TestVariantRecord:
    """Test derived metrics on VariantRecord."""

    def test_metrics_from_info(self):
        """Test depth, MQMR, AQR and strand bias come from INFO."""
        record = VariantRecord(
            contig="MT",
            pos=100,
            ref="A",
            alts=("G",),
            info={"DP": 50, "AO": (10,), "QA": (300,), "MQMR": 60.0,
                  "SAF": (3,), "SAR": (7,)},
        )
        assert record.depth == 50
        assert record.alt_count == 10
        assert record.alt_base_quality == 30.0
        assert record.ref_mapping_quality == 60.0
        assert record.strand_bias_ratio == pytest.approx(0.3)

    def test_missing_metrics_are_none(self):
        """Test absent or zero-count metrics give None."""
        record = VariantRecord(
            contig="MT", pos=1, ref="A", alts=("G",), info={"SAF": (0,), "SAR": (0,)}
        )
        assert record.depth is None
        assert record.alt_base_quality is None
        assert record.strand_bias_ratio is None

    def test_multiallelic(self):
        """Test multi-allelic detection and allele tuple."""
        record = VariantRecord(contig="MT", pos=1, ref="A", alts=("G", "T"))
        assert record.is_multiallelic
        assert record.alleles == ("A", "G", "T")


class TestFilterDecision:
    """Test FILTER value rendering."""

    def test_pass(self):
        assert FilterDecision(passed=True).filter_value == "PASS"

    def test_failed_rules_joined(self):
        decision = FilterDecision(passed=False, failed=("DP", "POS"))
        assert decision.filter_value == "DP;POS"
