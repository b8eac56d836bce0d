"""Filter, normalize and reshape a count matrix in one call.

The pipeline runs a fixed sequence of steps:

1. Restrict libraries to those listed in the sample design.
2. Optionally drop lowly expressed genes.
3. Optionally estimate normalization factors (TMM by default).
4. Return either the composite (counts + factors) or a table of
   normalized counts per million, optionally log2-transformed and/or
   transposed.

Typical settings:

- WGCNA: ``log2_transform=True, transpose=True`` (see :func:`wgcna_config`).
- limma: ``return_composite=True`` (see :func:`limma_config`).
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Hashable, Union

import numpy as np
import pandas as pd

from countnorm.core.dgelist import (
    COMPOSITE_OPTIONS,
    DGECounts,
    build_composite,
    compute_norm_factors,
    counts_per_million,
)
from countnorm.core.normalization import DEFAULT_NORM_METHOD, check_norm_method
from countnorm.core.preprocessing import (
    DEFAULT_LIB_ID_COL,
    DEFAULT_MIN_LIBS_PERC,
    design_filter_counts,
    min_filter_counts,
)
from countnorm.exceptions import ConfigError, DataShapeError

if TYPE_CHECKING:
    import anndata as ad

logger = logging.getLogger(__name__)

NormalizationResult = Union[pd.DataFrame, DGECounts]


@dataclass(frozen=True)
class FilterConfig:
    """Thresholds for low-expression gene filtering.

    Attributes
    ----------
    min_count : float | None
        Minimum raw count for a library to pass a gene.
    min_cpm : float | None
        Minimum counts per million for a library to pass a gene.
    min_libs_perc : float
        Minimum fraction of libraries that must pass (default: 0.15).

    Gene filtering is skipped when both thresholds are None. A threshold
    of zero still filters.
    """

    min_count: float | None = None
    min_cpm: float | None = None
    min_libs_perc: float = DEFAULT_MIN_LIBS_PERC

    def __post_init__(self) -> None:
        for name in ("min_count", "min_cpm"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ConfigError(f"{name} must be non-negative, got {value}")
        if not 0 <= self.min_libs_perc <= 1:
            raise ConfigError(
                f"min_libs_perc must be between 0 and 1, got {self.min_libs_perc}"
            )

    @property
    def enabled(self) -> bool:
        return self.min_count is not None or self.min_cpm is not None


@dataclass(frozen=True)
class NormalizeConfig:
    """Normalization settings.

    Attributes
    ----------
    normalize : bool
        Whether to estimate normalization factors (default: True).
    norm_method : str
        'TMM', 'TMMwsp', 'RLE', 'upperquartile' or 'none'.
    norm_options : tuple[tuple[str, Any], ...]
        Extra keyword arguments for factor estimation. A mapping may be
        passed; it is stored as sorted key/value pairs.

    ``norm_method`` is only checked when ``normalize`` is True.
    """

    normalize: bool = True
    norm_method: str = DEFAULT_NORM_METHOD
    norm_options: tuple[tuple[str, Any], ...] = ()

    def __post_init__(self) -> None:
        options = self.norm_options
        if isinstance(options, Mapping):
            options = options.items()
        object.__setattr__(self, "norm_options", tuple(sorted(options)))
        if self.normalize:
            check_norm_method(self.norm_method)


@dataclass(frozen=True)
class TransformConfig:
    """Output shaping settings.

    Attributes
    ----------
    log2_transform : bool
        Apply ``log2(x + 1)`` to the output table.
    transpose : bool
        Return samples as rows and genes as columns.
    return_composite : bool
        Return the :class:`DGECounts` composite instead of a table. The
        other two flags are then ignored.
    """

    log2_transform: bool = False
    transpose: bool = False
    return_composite: bool = False


def wgcna_config() -> TransformConfig:
    """Output settings for WGCNA: log2 values, samples as rows."""
    return TransformConfig(log2_transform=True, transpose=True)


def limma_config() -> TransformConfig:
    """Output settings for limma: the normalized composite."""
    return TransformConfig(return_composite=True)


def _check_shape(counts: pd.DataFrame, step: str) -> None:
    n_genes, n_samples = counts.shape
    if n_genes == 0 or n_samples == 0:
        raise DataShapeError(
            f"No {'genes' if n_genes == 0 else 'libraries'} remaining after {step} "
            f"({n_genes} genes x {n_samples} libraries)"
        )


def log2_plus_one(table: pd.DataFrame) -> pd.DataFrame:
    """Element-wise ``log2(x + 1)``."""
    return np.log2(table + 1)


def process(
    counts: pd.DataFrame | ad.AnnData | np.ndarray,
    metadata: pd.DataFrame,
    key_column: Hashable | int = DEFAULT_LIB_ID_COL,
    filter_config: FilterConfig | None = None,
    normalize_config: NormalizeConfig | None = None,
    transform_config: TransformConfig | None = None,
    extra_options: dict[str, Any] | None = None,
) -> NormalizationResult:
    """Filter, normalize and reshape a count matrix.

    Parameters
    ----------
    counts : pd.DataFrame, AnnData or np.ndarray
        Count matrix. DataFrame: genes x samples. AnnData: samples x genes.
    metadata : pd.DataFrame
        Sample information; ``key_column`` holds library identifiers
        matching the sample labels of ``counts``.
    key_column : str or int, default="lib.id"
        Name or integer position of the library identifier column.
    filter_config : FilterConfig, optional
        Gene filtering thresholds. Filtering is skipped by default.
    normalize_config : NormalizeConfig, optional
        Normalization settings. TMM normalization by default.
    transform_config : TransformConfig, optional
        Output shaping settings.
    extra_options : dict, optional
        Keyword arguments for :func:`build_composite` (``lib_size``,
        ``norm_factors``, ``group``, ``genes``, ``remove_zeros``).

    Returns
    -------
    pd.DataFrame or DGECounts
        The composite if ``transform_config.return_composite`` is True,
        otherwise a table of (normalized) counts.

    Raises
    ------
    DataShapeError
        If no genes or libraries remain after filtering.
    ConfigError
        If the configuration is invalid.

    Examples
    --------
    >>> from countnorm.core.pipeline import FilterConfig, process
    >>> cpm = process(counts, design, filter_config=FilterConfig(min_cpm=1))
    """
    filter_config = filter_config or FilterConfig()
    normalize_config = normalize_config or NormalizeConfig()
    transform_config = transform_config or TransformConfig()
    extra_options = dict(extra_options or {})

    unknown = set(extra_options) - set(COMPOSITE_OPTIONS)
    if unknown:
        raise ConfigError(
            f"Unknown composite options: {sorted(unknown)}. "
            f"Supported options: {', '.join(COMPOSITE_OPTIONS)}"
        )

    # Trim counts to the libraries described in the design
    counts = design_filter_counts(counts, metadata, key_column)
    _check_shape(counts, "design filtering")
    logger.info(f"Counts after design filtering: {counts.shape[0]} genes x {counts.shape[1]} libraries")

    if filter_config.enabled:
        counts = min_filter_counts(
            counts,
            min_count=filter_config.min_count,
            min_cpm=filter_config.min_cpm,
            min_libs_perc=filter_config.min_libs_perc,
        )
        _check_shape(counts, "expression filtering")

    normalize = normalize_config.normalize
    composite = None
    if normalize or transform_config.return_composite:
        composite = build_composite(counts, **extra_options)
        _check_shape(composite.counts, "zero-count removal")
        if normalize:
            composite = compute_norm_factors(
                composite,
                method=normalize_config.norm_method,
                **dict(normalize_config.norm_options),
            )

    if transform_config.return_composite:
        logger.info(f"Returning composite ({composite.n_genes} genes x {composite.n_samples} libraries)")
        return composite

    if normalize:
        result = counts_per_million(composite, normalized_lib_sizes=True)
    else:
        result = counts

    if transform_config.log2_transform:
        logger.info("Applying log2(x + 1) transform")
        result = log2_plus_one(result)
    if transform_config.transpose:
        logger.info("Transposing counts to libraries x genes")
        result = result.T

    return result


def calc_norm_counts(
    counts: pd.DataFrame | ad.AnnData | np.ndarray,
    design: pd.DataFrame,
    lib_id_col: Hashable | int = DEFAULT_LIB_ID_COL,
    min_count: float | None = None,
    min_cpm: float | None = None,
    min_libs_perc: float = DEFAULT_MIN_LIBS_PERC,
    normalize: bool = True,
    norm_method: str = DEFAULT_NORM_METHOD,
    log2_transform: bool = False,
    transpose: bool = False,
    return_composite: bool = False,
    **kwargs: Any,
) -> NormalizationResult:
    """Filter, normalize and/or convert counts using flat arguments.

    Groups the arguments into :class:`FilterConfig`,
    :class:`NormalizeConfig` and :class:`TransformConfig` and runs
    :func:`process`. Configuration is validated before any filtering.

    Parameters
    ----------
    counts : pd.DataFrame, AnnData or np.ndarray
        Count matrix with samples in columns and genes in rows.
    design : pd.DataFrame
        Sample information containing the library ID column.
    lib_id_col : str or int, default="lib.id"
        Name or integer position of the library ID column in ``design``.
    min_count : float, optional
        Minimum count for a library to pass a gene.
    min_cpm : float, optional
        Minimum counts per million for a library to pass a gene.
    min_libs_perc : float, default=0.15
        Minimum fraction of libraries that must pass for a gene to be kept.
    normalize : bool, default=True
        Whether to normalize counts.
    norm_method : str, default="TMM"
        Normalization method.
    log2_transform : bool, default=False
        Whether to log2-transform the counts (with a pseudocount of 1).
    transpose : bool, default=False
        Whether to transpose the output table.
    return_composite : bool, default=False
        Return a :class:`DGECounts` instead of a DataFrame.
    **kwargs
        Passed to :func:`build_composite`.

    Returns
    -------
    pd.DataFrame or DGECounts
        The processed counts.

    Examples
    --------
    >>> from countnorm import calc_norm_counts
    >>> wgcna_input = calc_norm_counts(
    ...     counts, design, min_cpm=1, log2_transform=True, transpose=True
    ... )
    """
    return process(
        counts,
        design,
        key_column=lib_id_col,
        filter_config=FilterConfig(
            min_count=min_count, min_cpm=min_cpm, min_libs_perc=min_libs_perc
        ),
        normalize_config=NormalizeConfig(normalize=normalize, norm_method=norm_method),
        transform_config=TransformConfig(
            log2_transform=log2_transform,
            transpose=transpose,
            return_composite=return_composite,
        ),
        extra_options=kwargs,
    )
