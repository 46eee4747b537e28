#!/usr/bin/env python3
"""
mity - mitochondrial variant calling

Command-line interface for calling low-heteroplasmy mitochondrial variants
with freebayes and normalising the resulting VCF.
"""

from pathlib import Path
from typing import List, Optional, Annotated
import logging
import sys
import os
import typer
from rich.console import Console
from rich.logging import RichHandler

from .version import __version__
from .models import GenomeBuild
from .runner import (
    create_call_request,
    create_normalise_request,
    run_call,
    run_normalise,
)
from .errors import ExitCode, handle_exception_with_exit

app = typer.Typer(
    name="mity",
    help="Mitochondrial variant calling and normalisation",
    add_completion=False,
    no_args_is_help=True,
)


# Configure console for better test compatibility
def _is_test_environment() -> bool:
    """Detect if we're running in a test environment."""
    return (
        "pytest" in sys.modules
        or os.getenv("PYTEST_CURRENT_TEST") is not None
        or os.getenv("CI") is not None
        or os.getenv("GITHUB_ACTIONS") is not None
        or "unittest" in sys.modules
    )


# Set NO_COLOR environment variable for test environments
if _is_test_environment():
    os.environ["NO_COLOR"] = "1"
    os.environ["FORCE_COLOR"] = "0"

console = Console(
    force_terminal=not _is_test_environment(),
    no_color=_is_test_environment(),
    width=80 if _is_test_environment() else None,
    legacy_windows=False,
)


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Send log records to stderr through rich."""
    level = logging.INFO
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=Console(stderr=True),
                show_path=verbose,
                rich_tracebacks=verbose,
            )
        ],
    )
    logging.getLogger("mity").setLevel(level)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"mity version {__version__}")
        raise typer.Exit()


def _dry_run(ctx: typer.Context) -> bool:
    return bool(ctx.parent.params.get("dry_run", False)) if ctx.parent else False


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    config: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to custom configuration file",
            exists=True,
            file_okay=True,
            dir_okay=False,
            readable=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose output"),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Suppress non-error output"),
    ] = False,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Show what would be done without executing"),
    ] = False,
) -> None:
    """
    Mitochondrial variant calling and normalisation.

    Call low-heteroplasmy variants on the mitochondrial genome from one or
    more BAM/CRAM files.
    """
    if verbose and quiet:
        console.print("[red]Error: --verbose and --quiet cannot be used together[/red]")
        raise typer.Exit(1)

    setup_logging(verbose=verbose, quiet=quiet)

    # Load configuration if specified
    if config:
        from .config import load_config

        try:
            load_config(config)
        except (OSError, ValueError) as e:
            console.print(f"[red]Error loading config file {config}: {e}[/red]")
            raise typer.Exit(1)
        if verbose:
            console.print(f"[green]Loaded configuration from: {config}[/green]")


ReferenceOption = Annotated[
    GenomeBuild,
    typer.Option("--reference", "-r", help="Reference genome build"),
]
ReferenceFastaOption = Annotated[
    Optional[Path],
    typer.Option(
        "--reference-fasta", help="Reference FASTA (overrides the build lookup)"
    ),
]
GenomeOption = Annotated[
    Optional[Path],
    typer.Option(
        "--genome", help="Genome file of contig lengths (overrides the build lookup)"
    ),
]
RefDirOption = Annotated[
    Optional[Path],
    typer.Option("--ref-dir", help="Reference directory (overrides $MITY_REF_DIR)"),
]
PrefixOption = Annotated[
    Optional[str],
    typer.Option(
        "--prefix", help="Output file prefix (required with several input files)"
    ),
]
OutputDirOption = Annotated[
    Optional[Path],
    typer.Option(
        "--output-dir", "-o", help="Output directory [default: current directory]"
    ),
]
KeepOption = Annotated[
    bool,
    typer.Option("--keep", "-k", help="Keep intermediate files"),
]
AllSamplesOption = Annotated[
    bool,
    typer.Option(
        "--allsamples",
        help="PASS a site only if every sample passes (default: any sample)",
    ),
]


@app.command()
def call(
    ctx: typer.Context,
    files: Annotated[
        List[Path],
        typer.Argument(help="BAM/CRAM files to call jointly"),
    ],
    reference: ReferenceOption = GenomeBuild.HS37D5,
    reference_fasta: ReferenceFastaOption = None,
    genome: GenomeOption = None,
    ref_dir: RefDirOption = None,
    prefix: PrefixOption = None,
    output_dir: OutputDirOption = None,
    region: Annotated[
        Optional[str],
        typer.Option(
            "--region", help="Region to call (default: the MT/chrM contig)"
        ),
    ] = None,
    min_mq: Annotated[
        Optional[int],
        typer.Option("--min-mapping-quality", help="Minimum mapping quality [30]"),
    ] = None,
    min_bq: Annotated[
        Optional[int],
        typer.Option("--min-base-quality", help="Minimum base quality [24]"),
    ] = None,
    min_af: Annotated[
        Optional[float],
        typer.Option(
            "--min-alternate-fraction", help="Minimum alternate allele fraction [0.01]"
        ),
    ] = None,
    min_ac: Annotated[
        Optional[int],
        typer.Option("--min-alternate-count", help="Minimum alternate read count [4]"),
    ] = None,
    p: Annotated[
        Optional[float],
        typer.Option("--p", help="Noise rate used to rescore QUAL [0.002]"),
    ] = None,
    bam_list: Annotated[
        bool,
        typer.Option(
            "--bam-file-list",
            help="Treat the single argument as a file listing BAM/CRAM paths",
        ),
    ] = False,
    normalise: Annotated[
        bool,
        typer.Option("--normalise", help="Normalise and filter the call output"),
    ] = False,
    keep: KeepOption = False,
    all_samples: AllSamplesOption = False,
) -> None:
    """
    Call variants on the mitochondrial genome.

    Writes <prefix>.mity.call.vcf.gz and, with --normalise,
    <prefix>.mity.normalise.vcf.gz.
    """
    try:
        dry_run = _dry_run(ctx)

        request = create_call_request(
            files=files,
            reference=reference,
            reference_fasta=reference_fasta,
            genome=genome,
            ref_dir=ref_dir,
            prefix=prefix,
            output_dir=output_dir,
            region=region,
            min_mq=min_mq,
            min_bq=min_bq,
            min_af=min_af,
            min_ac=min_ac,
            p=p,
            bam_list=bam_list,
            normalise=normalise,
            keep=keep,
            all_samples=all_samples,
            dry_run=dry_run,
        )

        output = run_call(request)

        if dry_run:
            console.print("[green]Dry run completed - no files written[/green]")
            return

        console.print(f"[green]mity call completed for {request.prefix}[/green]")
        console.print(f"Output: {output}")

    except Exception as e:
        handle_exception_with_exit(e, "mity call failed")


@app.command()
def normalise(
    ctx: typer.Context,
    vcf: Annotated[
        Path,
        typer.Argument(help="mity call VCF (*.mity.call.vcf.gz)"),
    ],
    reference: ReferenceOption = GenomeBuild.HS37D5,
    reference_fasta: ReferenceFastaOption = None,
    genome: GenomeOption = None,
    ref_dir: RefDirOption = None,
    prefix: PrefixOption = None,
    output_dir: OutputDirOption = None,
    p: Annotated[
        Optional[float],
        typer.Option("--p", help="Noise rate used to rescore QUAL [0.002]"),
    ] = None,
    keep: KeepOption = False,
    all_samples: AllSamplesOption = False,
) -> None:
    """
    Normalise and filter an existing mity call VCF.
    """
    try:
        dry_run = _dry_run(ctx)

        request = create_normalise_request(
            vcf=vcf,
            reference=reference,
            reference_fasta=reference_fasta,
            genome=genome,
            ref_dir=ref_dir,
            prefix=prefix,
            output_dir=output_dir,
            p=p,
            keep=keep,
            all_samples=all_samples,
        )

        output = run_normalise(request, dry_run=dry_run)

        if dry_run:
            console.print("[green]Dry run completed - no files written[/green]")
            return

        console.print(f"[green]mity normalise completed: {output}[/green]")

    except Exception as e:
        handle_exception_with_exit(e, "mity normalise failed")


@app.command()
def check(
    ref_dir: RefDirOption = None,
) -> None:
    """
    Check external tools and reference assets.

    Exits non-zero when a required tool is missing.
    """
    from .pipeline import available_threads, check_required_tools
    from .refdir import list_available_builds

    tools = check_required_tools()
    console.print("[bold]External tools:[/bold]")
    for name, info in tools.items():
        mark = "[green]✓[/green]" if info["available"] else "[red]✗[/red]"
        console.print(f"  {mark} {name}: {info['version']}")

    console.print(f"[bold]Threads available:[/bold] {available_threads()}")

    console.print("[bold]Reference assets:[/bold]")
    for build, assets in list_available_builds(ref_dir).items():
        fasta = "✓" if assets["fasta"] else "✗"
        genome = "✓" if assets["genome"] else "✗"
        console.print(f"  {build}: fasta {fasta}  genome {genome}")

    if not all(info["available"] for info in tools.values()):
        raise typer.Exit(ExitCode.EXTERNAL_TOOL_ERROR)


if __name__ == "__main__":
    app()
