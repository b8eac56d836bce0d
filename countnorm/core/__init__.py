"""Core module for count filtering and normalization.

This module contains the building blocks of the normalization pipeline:
- Count coercion, design-based library filtering and expression filtering
- Normalization factor estimation (TMM, TMMwsp, RLE, upper quartile)
- The DGECounts composite and counts-per-million scaling
- The pipeline orchestrator and its configuration
"""

from .preprocessing import (
    as_count_frame,
    design_filter_counts,
    min_filter_counts,
)
from .normalization import (
    NORM_METHODS,
    calc_norm_factors,
    check_norm_method,
)
from .dgelist import (
    DGECounts,
    build_composite,
    compute_norm_factors,
    counts_per_million,
)
from .pipeline import (
    FilterConfig,
    NormalizationResult,
    NormalizeConfig,
    TransformConfig,
    calc_norm_counts,
    limma_config,
    log2_plus_one,
    process,
    wgcna_config,
)

__all__ = [
    # Preprocessing
    "as_count_frame",
    "design_filter_counts",
    "min_filter_counts",
    # Normalization
    "NORM_METHODS",
    "calc_norm_factors",
    "check_norm_method",
    # Composite
    "DGECounts",
    "build_composite",
    "compute_norm_factors",
    "counts_per_million",
    # Pipeline
    "FilterConfig",
    "NormalizationResult",
    "NormalizeConfig",
    "TransformConfig",
    "calc_norm_counts",
    "limma_config",
    "log2_plus_one",
    "process",
    "wgcna_config",
]
