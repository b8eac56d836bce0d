"""
countnorm: filtering and normalization of RNA-seq count matrices

This package provides tools for:
- Restricting a count matrix to the libraries in a sample design
- Filtering lowly expressed genes
- Library-size normalization (TMM and related methods)
- Reshaping counts for downstream tools such as WGCNA and limma
"""

__version__ = "0.1.0"

from countnorm.core import (
    DGECounts,
    FilterConfig,
    NormalizeConfig,
    TransformConfig,
    build_composite,
    calc_norm_counts,
    compute_norm_factors,
    counts_per_million,
    design_filter_counts,
    min_filter_counts,
    process,
)
from countnorm.exceptions import ConfigError, CountNormError, DataShapeError

__all__ = [
    # Version
    "__version__",
    # Pipeline
    "calc_norm_counts",
    "process",
    "FilterConfig",
    "NormalizeConfig",
    "TransformConfig",
    # Building blocks
    "DGECounts",
    "build_composite",
    "compute_norm_factors",
    "counts_per_million",
    "design_filter_counts",
    "min_filter_counts",
    # Errors
    "CountNormError",
    "ConfigError",
    "DataShapeError",
]
