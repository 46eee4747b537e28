"""
mity - mitochondrial variant calling

A tool for calling low-heteroplasmy variants on the mitochondrial genome from
BAM/CRAM files and normalising the resulting VCF.
"""

from .version import __version__

__all__ = ["__version__"]
