"""Count-table coercion and filtering utilities.

This module turns the supported count inputs into a genes x samples
DataFrame and implements the two filters that run before normalization:
restricting samples to those described by a design table, and dropping
genes with too little expression across libraries.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Hashable

import numpy as np
import pandas as pd
from scipy.sparse import issparse

from countnorm.exceptions import ConfigError

if TYPE_CHECKING:
    import anndata as ad

logger = logging.getLogger(__name__)

DEFAULT_LIB_ID_COL = "lib.id"
DEFAULT_MIN_LIBS_PERC = 0.15

# Tolerance applied before rounding the required library count up
LIBS_TOLERANCE = 1e-9


def as_count_frame(
    counts: pd.DataFrame | ad.AnnData | np.ndarray,
) -> pd.DataFrame:
    """Convert a count input to a genes x samples DataFrame.

    Parameters
    ----------
    counts : pd.DataFrame, AnnData or np.ndarray
        Count matrix. DataFrame and ndarray: genes x samples.
        AnnData: samples x genes (transposed here), dense or sparse.

    Returns
    -------
    pd.DataFrame
        A copy of the counts with genes as rows and samples as columns.

    Raises
    ------
    TypeError
        If the input type is not supported.
    """
    if isinstance(counts, pd.DataFrame):
        return counts.copy()

    if isinstance(counts, np.ndarray):
        if counts.ndim != 2:
            raise ValueError(f"counts must be 2-dimensional, got {counts.ndim} dimensions")
        return pd.DataFrame(counts.copy())

    try:
        import anndata as ad

        if isinstance(counts, ad.AnnData):
            # AnnData is samples x genes, we need genes x samples
            if issparse(counts.X):
                data = counts.X.toarray().T
            else:
                data = np.asarray(counts.X).T.copy()
            return pd.DataFrame(
                data, index=counts.var_names.copy(), columns=counts.obs_names.copy()
            )
    except ImportError:
        pass

    raise TypeError(
        f"counts must be pd.DataFrame, np.ndarray or AnnData, got {type(counts)}"
    )


def _resolve_key_column(design: pd.DataFrame, lib_id_col: Hashable | int) -> Hashable:
    """Return the design column label referred to by name or position."""
    if lib_id_col in design.columns:
        return lib_id_col

    if isinstance(lib_id_col, (int, np.integer)) and not isinstance(lib_id_col, bool):
        try:
            return design.columns[lib_id_col]
        except IndexError:
            raise ConfigError(
                f"Column position {lib_id_col} out of range for design "
                f"with {design.shape[1]} columns"
            ) from None

    raise ConfigError(
        f"Library ID column {lib_id_col!r} not found in design. "
        f"Available columns: {list(design.columns)}"
    )


def design_filter_counts(
    counts: pd.DataFrame | ad.AnnData | np.ndarray,
    design: pd.DataFrame,
    lib_id_col: Hashable | int = DEFAULT_LIB_ID_COL,
) -> pd.DataFrame:
    """Restrict counts to the libraries listed in a design table.

    Libraries are returned in the order they appear in the design. IDs
    present in only one of the two tables are dropped without error.

    Parameters
    ----------
    counts : pd.DataFrame, AnnData or np.ndarray
        Count matrix (genes x samples).
    design : pd.DataFrame
        Sample information, one row per library.
    lib_id_col : str or int, default="lib.id"
        Name, or integer position, of the design column holding library
        identifiers that match the column names of ``counts``.

    Returns
    -------
    pd.DataFrame
        Counts restricted to the intersecting libraries.

    Raises
    ------
    ConfigError
        If ``lib_id_col`` does not identify a design column.

    Examples
    --------
    >>> from countnorm.core.preprocessing import design_filter_counts
    >>> filtered = design_filter_counts(counts, design, lib_id_col="lib.id")
    """
    counts = as_count_frame(counts)
    key = _resolve_key_column(design, lib_id_col)

    lib_ids = pd.unique(design[key].dropna())
    keep = [lib_id for lib_id in lib_ids if lib_id in counts.columns]

    n_removed = counts.shape[1] - len(keep)
    logger.info(f"Filtered {n_removed} libraries by design ({len(keep)} remaining)")

    return counts.loc[:, keep].copy()


def min_filter_counts(
    counts: pd.DataFrame | ad.AnnData | np.ndarray,
    min_count: float | None = None,
    min_cpm: float | None = None,
    min_libs_perc: float = DEFAULT_MIN_LIBS_PERC,
) -> pd.DataFrame:
    """Drop genes that are not expressed in enough libraries.

    A library passes a gene when its count is at least ``min_count`` or
    its counts per million are at least ``min_cpm``. A gene is kept when
    at least ``ceil(min_libs_perc * n_libraries)`` libraries pass.

    Parameters
    ----------
    counts : pd.DataFrame, AnnData or np.ndarray
        Count matrix (genes x samples).
    min_count : float, optional
        Minimum raw count for a library to pass.
    min_cpm : float, optional
        Minimum counts per million for a library to pass. Library sizes
        are the column sums of ``counts``.
    min_libs_perc : float, default=0.15
        Minimum fraction of libraries that must pass.

    Returns
    -------
    pd.DataFrame
        Counts for the retained genes, in their original order.

    Raises
    ------
    ConfigError
        If neither threshold is given.
    """
    if min_count is None and min_cpm is None:
        raise ConfigError("At least one of min_count or min_cpm must be set")

    counts = as_count_frame(counts)
    n_libs = counts.shape[1]

    passing = np.zeros(counts.shape, dtype=bool)
    if min_count is not None:
        passing |= counts.to_numpy() >= min_count
    if min_cpm is not None:
        from countnorm.core.dgelist import counts_per_million

        with np.errstate(invalid="ignore"):
            passing |= counts_per_million(counts).to_numpy() >= min_cpm

    min_libs = math.ceil(min_libs_perc * n_libs - LIBS_TOLERANCE)
    keep = passing.sum(axis=1) >= min_libs

    n_removed = int((~keep).sum())
    logger.info(
        f"Filtered {n_removed} genes (min_count={min_count}, min_cpm={min_cpm}, "
        f"min_libs={min_libs}/{n_libs}); {int(keep.sum())} remaining"
    )

    return counts.loc[keep].copy()
