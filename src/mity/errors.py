#!/usr/bin/env python3
"""
Centralized error handling and exit code mapping for mity.

Exit codes:
- 0: success
- 1: CLI/input errors (missing args/files, ambiguous prefix, missing read groups)
- 2: reference or mitochondrial contig resolution errors
- 4: external tool failure
"""

import typer
from pathlib import Path
from typing import List, Optional
from rich.console import Console
from rich.markup import escape

# Import all custom exceptions for mapping
from .io_utils import ConfigError, ValidationError
from .contig import ContigResolutionError, HeaderReadError
from .normalise import NormalisationError
from .pipeline import ExternalToolError
from .refdir import (
    ReferenceNotFoundError,
    list_available_builds,
    resolve_reference_directory,
)

console = Console(stderr=True)


class ExitCode:
    """Exit code constants."""

    SUCCESS = 0
    INPUT_ERROR = 1
    REFERENCE_ERROR = 2
    EXTERNAL_TOOL_ERROR = 4


def map_exception_to_exit_code(exception: Exception) -> int:
    """
    Map exception types to appropriate exit codes.

    Args:
        exception: The exception to map

    Returns:
        Appropriate exit code (1, 2 or 4)
    """
    # Reference and contig resolution errors (exit code 2)
    if isinstance(exception, (ReferenceNotFoundError, ContigResolutionError)):
        return ExitCode.REFERENCE_ERROR

    # External tool failures (exit code 4)
    if isinstance(exception, ExternalToolError):
        return ExitCode.EXTERNAL_TOOL_ERROR

    # CLI/Input errors (exit code 1)
    if isinstance(
        exception,
        (
            ValueError,  # ConfigError, ValidationError and bad values
            OSError,  # Missing or unreadable files, HeaderReadError
            NormalisationError,
            typer.BadParameter,
        ),
    ):
        return ExitCode.INPUT_ERROR

    # Default to input error for unknown exceptions
    return ExitCode.INPUT_ERROR


def _with_suggestions(message: str, suggestions: List[str]) -> str:
    return f"{message}\n\nSuggestions:\n" + "\n".join(f"  • {s}" for s in suggestions)


def format_helpful_error_message(exception: Exception) -> str:
    """
    Format exception with helpful suggestions.

    Args:
        exception: The exception to format

    Returns:
        User-friendly error message with suggestions
    """
    error_msg = str(exception)

    if isinstance(exception, ValidationError):
        suggestions = [
            "Check that every BAM/CRAM path is correct and readable",
            "Add read groups with samtools addreplacerg or picard AddOrReplaceReadGroups",
        ]
        return _with_suggestions(error_msg, suggestions)

    elif isinstance(exception, ConfigError):
        suggestions = [
            "Use --prefix to name the output when calling several files together",
            "Prefixes must match pattern: ^[A-Za-z0-9._-]{1,128}$",
            "Use --genome or --ref-dir when --normalise cannot find a .genome file",
        ]
        return _with_suggestions(error_msg, suggestions)

    elif isinstance(exception, ReferenceNotFoundError):
        suggestions = [
            "Use --reference-fasta to provide a direct reference file",
            "Check that $MITY_REF_DIR is set and contains <build>.fa and <build>.genome",
            "Keep exactly one FASTA per build in the reference directory",
            create_build_suggestion_message(None),
        ]
        return _with_suggestions(error_msg, suggestions)

    elif isinstance(exception, ContigResolutionError):
        suggestions = [
            "Inputs must declare exactly one mitochondrial contig named MT or chrM",
            "Use --region to choose the contig explicitly",
        ]
        return _with_suggestions(error_msg, suggestions)

    elif isinstance(exception, HeaderReadError):
        suggestions = [
            "Check that the file is a valid BAM, CRAM, SAM or VCF",
            "CRAM inputs need their reference available to htslib",
        ]
        return _with_suggestions(error_msg, suggestions)

    elif isinstance(exception, FileNotFoundError):
        suggestions = [
            "Check that the file path is correct",
            "Ensure the file exists and is readable",
            "Use absolute paths to avoid confusion",
        ]
        return _with_suggestions(error_msg, suggestions)

    elif isinstance(exception, ExternalToolError):
        suggestions = [
            "Ensure required tools are installed and in PATH",
            "Run 'mity check' to see which tools are available",
            "Use --dry-run to see which commands would be run",
            "Install tools via conda: conda install freebayes htslib",
        ]
        return _with_suggestions(error_msg, suggestions)

    # Default message for unknown exceptions
    return error_msg


def handle_exception_with_exit(exception: Exception, context: str = "") -> None:
    """
    Handle exception with appropriate exit code and helpful message.

    Args:
        exception: The exception to handle
        context: Additional context for the error
    """
    exit_code = map_exception_to_exit_code(exception)
    error_message = format_helpful_error_message(exception)

    # Add context if provided
    if context:
        full_message = f"{context}: {error_message}"
    else:
        full_message = error_message

    # Print error with appropriate styling
    console.print(
        f"[red]Error: {escape(full_message)}[/red]", highlight=False, soft_wrap=True
    )

    # Exit with appropriate code
    raise typer.Exit(exit_code)


def create_build_suggestion_message(ref_dir: Optional[Path]) -> str:
    """
    Describe which builds have complete reference assets.

    Args:
        ref_dir: Reference directory, or None for the resolved default

    Returns:
        Formatted message listing usable builds
    """
    try:
        ref_dir = resolve_reference_directory(ref_dir)
    except ReferenceNotFoundError:
        return "Set $MITY_REF_DIR or use --ref-dir to specify the reference directory."

    builds = list_available_builds(ref_dir)

    usable = [name for name, assets in builds.items() if all(assets.values())]
    if not usable:
        return "No build has both a FASTA and a .genome file in the reference directory."
    return "Builds with complete reference assets: " + ", ".join(usable)
