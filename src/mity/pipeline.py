"""
External tool pipeline execution for mity.

Each stage is an explicit argument list with file handoff between stages.
Stages run one at a time and every exit status is checked before the next
stage starts, so an upstream failure can never be masked by a downstream
success.
"""

import logging
import os
import shlex
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, List, Optional, Sequence, Tuple

from .config import get_config
from .io_utils import remove_files, scratch_files
from .models import CallRequest

logger = logging.getLogger(__name__)

REQUIRED_TOOLS = ("freebayes", "sed", "bgzip", "tabix", "bcftools")

# Longest stderr excerpt carried in an error message.
STDERR_EXCERPT = 4000


class ExternalToolError(Exception):
    """Raised when an external tool is missing or exits non-zero."""

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
    ):
        super().__init__(message)
        self.stage = stage
        self.returncode = returncode
        self.stderr = stderr


@dataclass(frozen=True)
class Stage:
    """One external process invocation."""

    name: str
    args: Tuple[str, ...]
    stdin: Optional[Path] = None
    stdout: Optional[Path] = None

    def command_line(self) -> str:
        """Shell-style rendering for logs and dry runs."""
        line = shlex.join(self.args)
        if self.stdin is not None:
            line += f" < {shlex.quote(str(self.stdin))}"
        if self.stdout is not None:
            line += f" > {shlex.quote(str(self.stdout))}"
        return line


@dataclass
class StageResult:
    """Result of a completed stage."""

    stage: Stage
    returncode: int
    stderr: str
    runtime_seconds: float


def run_stage(stage: Stage) -> StageResult:
    """
    Run a single stage to completion.

    Raises:
        ExternalToolError: If the executable is missing or exits non-zero
    """
    logger.info(f"Running {stage.name}")
    logger.debug(stage.command_line())
    start_time = time.time()

    stdin_handle = None
    stdout_handle = None
    try:
        if stage.stdin is not None:
            stdin_handle = open(stage.stdin, "rb")
        if stage.stdout is not None:
            stage.stdout.parent.mkdir(parents=True, exist_ok=True)
            stdout_handle = open(stage.stdout, "wb")

        result = subprocess.run(
            list(stage.args),
            stdin=stdin_handle,
            stdout=stdout_handle if stdout_handle is not None else subprocess.PIPE,
            stderr=subprocess.PIPE,
            check=False,
        )
    except FileNotFoundError as e:
        if stage.stdin is not None and not stage.stdin.exists():
            raise ExternalToolError(
                f"{stage.name}: input not found: {stage.stdin}", stage=stage.name
            ) from e
        raise ExternalToolError(
            f"{stage.name}: executable not found: {stage.args[0]}", stage=stage.name
        ) from e
    finally:
        if stdin_handle is not None:
            stdin_handle.close()
        if stdout_handle is not None:
            stdout_handle.close()

    stderr = result.stderr.decode("utf-8", errors="replace") if result.stderr else ""
    runtime = time.time() - start_time

    if result.returncode != 0:
        excerpt = stderr.strip()[-STDERR_EXCERPT:]
        error_msg = f"{stage.name} failed (exit {result.returncode}): {excerpt}"
        logger.error(error_msg)
        raise ExternalToolError(
            error_msg, stage=stage.name, returncode=result.returncode, stderr=stderr
        )

    if stderr.strip():
        logger.debug(f"{stage.name} stderr: {stderr.strip()}")
    logger.debug(f"{stage.name} finished in {runtime:.1f}s")

    return StageResult(
        stage=stage, returncode=result.returncode, stderr=stderr, runtime_seconds=runtime
    )


def run_pipeline(
    stages: Sequence[Stage],
    scratch: Sequence[Path] = (),
    outputs: Sequence[Path] = (),
    keep: bool = False,
) -> List[StageResult]:
    """
    Run stages in order, stopping at the first failure.

    Args:
        stages: Stages to run; each must complete before the next starts
        scratch: Intermediate files removed on every exit path unless keep
        outputs: Final outputs removed if any stage fails
        keep: Keep intermediate files

    Returns:
        Results for every stage

    Raises:
        ExternalToolError: From the first failing stage
    """
    results: List[StageResult] = []
    with scratch_files(scratch, keep=keep):
        try:
            for stage in stages:
                results.append(run_stage(stage))
        except ExternalToolError:
            remove_files(outputs)
            raise
    return results


def _sed_escape(text: str, delimiter: str = "|") -> str:
    """Escape text for use as a sed replacement."""
    for char in ("\\", "&", delimiter):
        text = text.replace(char, "\\" + char)
    return text


def mity_commandline(request: CallRequest) -> str:
    """Header line recording how the call was produced."""
    t = request.thresholds
    args = [
        "mity call",
        f"--reference {request.reference_fasta}",
        f"--prefix {request.prefix}",
        f"--min-mapping-quality {t.min_mq}",
        f"--min-base-quality {t.min_bq}",
        f"--min-alternate-fraction {t.min_af}",
        f"--min-alternate-count {t.min_ac}",
        f"--p {t.p}",
        f"--region {request.region}",
    ]
    if request.normalise:
        args.append("--normalise")
    return f'##mityCommandline="{" ".join(args)}"'


def call_scratch_paths(request: CallRequest) -> Tuple[Path, Path]:
    """Intermediate files written by the calling stages."""
    base = request.output_dir / request.prefix
    return (
        Path(f"{base}.mity.freebayes.vcf"),
        Path(f"{base}.mity.header.vcf"),
    )


def build_call_stages(request: CallRequest) -> List[Stage]:
    """
    Build the calling stages for a request.

    1. freebayes on all inputs, restricted to the region
    2. sed header rewrite (##source, ##commandline, ##phasing)
    3. bgzip to the call output
    4. tabix index of the call output
    """
    config = get_config()
    t = request.thresholds
    raw_vcf, rewritten_vcf = call_scratch_paths(request)

    freebayes_args = [config.get_tool("freebayes"), "-f", str(request.reference_fasta)]
    for bam in request.bams:
        freebayes_args.extend(["-b", str(bam)])
    freebayes_args.extend(
        [
            "--min-mapping-quality",
            str(t.min_mq),
            "--min-base-quality",
            str(t.min_bq),
            "--min-alternate-fraction",
            str(t.min_af),
            "--min-alternate-count",
            str(t.min_ac),
            "--ploidy",
            str(request.ploidy),
            "--region",
            str(request.region),
        ]
    )

    sed_args = [
        config.get_tool("sed"),
        "-e",
        "s/^##source=/##freebayesSource=/",
        "-e",
        "s/^##commandline=/##freebayesCommandline=/",
        "-e",
        f"s|^##phasing=none|{_sed_escape(mity_commandline(request))}|",
    ]

    return [
        Stage(name="freebayes", args=tuple(freebayes_args), stdout=raw_vcf),
        Stage(
            name="header rewrite", args=tuple(sed_args), stdin=raw_vcf, stdout=rewritten_vcf
        ),
        Stage(
            name="bgzip",
            args=(config.get_tool("bgzip"), "-c"),
            stdin=rewritten_vcf,
            stdout=request.paths.call_vcf,
        ),
        index_stage(request.paths.call_vcf),
    ]


def index_stage(vcf_gz: Path) -> Stage:
    """Tabix index stage for a bgzipped VCF."""
    return Stage(
        name="tabix",
        args=(get_config().get_tool("tabix"), "-f", "-p", "vcf", str(vcf_gz)),
    )


def norm_stage(vcf_in: Path, reference_fasta: Path, vcf_out: Path) -> Stage:
    """
    bcftools norm stage splitting multi-allelic records and left-aligning
    alleles against the reference.

    A REF allele that disagrees with the reference is an error.
    """
    return Stage(
        name="bcftools norm",
        args=(
            get_config().get_tool("bcftools"),
            "norm",
            "-f",
            str(reference_fasta),
            "-m",
            "-both",
            "--check-ref",
            "e",
            "-O",
            "v",
            str(vcf_in),
        ),
        stdout=vcf_out,
    )


def run_calling(request: CallRequest) -> Path:
    """
    Run the calling pipeline for a request.

    Returns:
        Path to the compressed, indexed call VCF

    Raises:
        ExternalToolError: If any stage fails; no call output is retained
    """
    request.output_dir.mkdir(parents=True, exist_ok=True)
    stages = build_call_stages(request)
    run_pipeline(
        stages,
        scratch=call_scratch_paths(request),
        outputs=(request.paths.call_vcf, request.paths.call_index),
        keep=request.keep,
    )
    logger.info(f"Variant calling completed: {request.paths.call_vcf}")
    return request.paths.call_vcf


def index_vcf(vcf_gz: Path) -> Path:
    """Index a bgzipped VCF with tabix and return the index path."""
    run_stage(index_stage(vcf_gz))
    return Path(f"{vcf_gz}.tbi")


def check_required_tools() -> Dict[str, Dict[str, Any]]:
    """
    Check availability and versions of the external tools mity runs.

    Returns:
        Dictionary mapping tool names to availability and version info.
        Each tool entry contains:
        - 'available': boolean status
        - 'version': version string if available, or error message
    """
    config = get_config()
    tools: Dict[str, Dict[str, Any]] = {}

    for tool in REQUIRED_TOOLS:
        executable = config.get_tool(tool)
        tools[tool] = {"available": False, "version": "unknown"}

        if shutil.which(executable) is None:
            tools[tool]["version"] = "not found in PATH"
            logger.debug(f"Tool {tool}: not found")
            continue

        try:
            result = subprocess.run(
                [executable, "--version"], capture_output=True, text=True, timeout=5
            )
        except subprocess.TimeoutExpired:
            tools[tool]["version"] = "version check timed out"
            logger.debug(f"Tool {tool}: found but version check timed out")
            continue
        except OSError as e:
            tools[tool]["version"] = f"version check error: {e}"
            logger.debug(f"Tool {tool}: found but version check error: {e}")
            continue

        # Found on PATH is enough; not every tool supports --version cleanly
        tools[tool]["available"] = True
        output = (result.stdout or result.stderr or "").strip()
        tools[tool]["version"] = (
            output.split("\n")[0] if output else "version check not supported"
        )
        logger.debug(f"Tool {tool}: available, version: {tools[tool]['version']}")

    return tools


def available_threads() -> int:
    """Advisory count of CPUs available to this process."""
    if hasattr(os, "sched_getaffinity"):
        return len(os.sched_getaffinity(0))
    return os.cpu_count() or 1
