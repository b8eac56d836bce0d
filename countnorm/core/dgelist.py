"""Composite count container with library-size bookkeeping.

``DGECounts`` bundles a filtered count matrix with per-library sizes,
normalization factors and group labels, mirroring the ``DGEList``
object used by edgeR and limma. It is the object on which
normalization factors are computed and from which normalized counts
per million are derived.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Sequence

import numpy as np
import pandas as pd

from countnorm.core.normalization import DEFAULT_NORM_METHOD, calc_norm_factors
from countnorm.core.preprocessing import as_count_frame
from countnorm.exceptions import ConfigError

if TYPE_CHECKING:
    import anndata as ad

logger = logging.getLogger(__name__)

COMPOSITE_OPTIONS = ("lib_size", "norm_factors", "group", "genes", "remove_zeros")

# Scale for counts per million
CPM_SCALE = 1e6
PRIOR_COUNT = 2.0


@dataclass
class DGECounts:
    """Raw counts with per-library sizes and normalization factors.

    Attributes
    ----------
    counts : pd.DataFrame
        Raw counts (genes x samples).
    samples : pd.DataFrame
        Per-library information indexed by sample, with columns
        'group', 'lib_size' and 'norm_factors'.
    genes : pd.DataFrame | None
        Optional gene annotation indexed like ``counts``.

    Examples
    --------
    >>> from countnorm.core.dgelist import build_composite
    >>> dge = build_composite(counts).calc_norm_factors("TMM")
    >>> dge.cpm().head()
    """

    counts: pd.DataFrame
    samples: pd.DataFrame
    genes: pd.DataFrame | None = field(default=None)

    @property
    def n_genes(self) -> int:
        return self.counts.shape[0]

    @property
    def n_samples(self) -> int:
        return self.counts.shape[1]

    @property
    def shape(self) -> tuple[int, int]:
        return self.counts.shape

    @property
    def lib_size(self) -> pd.Series:
        return self.samples["lib_size"]

    @property
    def norm_factors(self) -> pd.Series:
        return self.samples["norm_factors"]

    @property
    def effective_lib_sizes(self) -> pd.Series:
        """Library sizes multiplied by normalization factors."""
        return (self.samples["lib_size"] * self.samples["norm_factors"]).rename(
            "effective_lib_size"
        )

    def copy(self) -> DGECounts:
        return DGECounts(
            counts=self.counts.copy(),
            samples=self.samples.copy(),
            genes=None if self.genes is None else self.genes.copy(),
        )

    def calc_norm_factors(self, method: str = DEFAULT_NORM_METHOD, **options: Any) -> DGECounts:
        """Return a copy with normalization factors estimated by ``method``."""
        return compute_norm_factors(self, method=method, **options)

    def cpm(
        self,
        normalized_lib_sizes: bool = True,
        log: bool = False,
        prior_count: float = PRIOR_COUNT,
    ) -> pd.DataFrame:
        """Counts per million; see :func:`counts_per_million`."""
        return counts_per_million(
            self,
            normalized_lib_sizes=normalized_lib_sizes,
            log=log,
            prior_count=prior_count,
        )

    def to_anndata(self) -> ad.AnnData:
        """Convert to AnnData (samples x genes).

        Raw counts go in ``X``; library information in ``obs`` and gene
        annotation, if any, in ``var``.
        """
        import anndata as ad

        obs = self.samples.copy()
        obs.index = obs.index.astype(str)
        adata = ad.AnnData(
            X=self.counts.T.to_numpy(dtype=np.float64),
            obs=obs,
        )
        adata.var_names = self.counts.index.astype(str)
        if self.genes is not None:
            genes = self.genes.copy()
            genes.index = genes.index.astype(str)
            adata.var = genes
        return adata


def _per_sample(
    values: Sequence[Any] | np.ndarray | pd.Series,
    name: str,
    n_samples: int,
) -> np.ndarray:
    values = np.asarray(values)
    if values.ndim == 0:
        values = np.repeat(values, n_samples)
    if values.shape[0] != n_samples:
        raise ConfigError(
            f"Length of {name} ({values.shape[0]}) must match the number of "
            f"libraries ({n_samples})"
        )
    return values


def build_composite(
    counts: pd.DataFrame | ad.AnnData | np.ndarray,
    lib_size: Sequence[float] | np.ndarray | None = None,
    norm_factors: Sequence[float] | np.ndarray | None = None,
    group: Sequence[Any] | np.ndarray | None = None,
    genes: pd.DataFrame | None = None,
    remove_zeros: bool = False,
) -> DGECounts:
    """Wrap a count table with library-size bookkeeping.

    Parameters
    ----------
    counts : pd.DataFrame, AnnData or np.ndarray
        Count matrix (genes x samples). Must be finite and non-negative.
    lib_size : array-like, optional
        Library sizes. Defaults to the column sums of ``counts``.
    norm_factors : array-like, optional
        Normalization factors. Defaults to 1 for every library.
    group : array-like, optional
        Group label per library. Defaults to a single group "1".
    genes : pd.DataFrame, optional
        Gene annotation, one row per gene.
    remove_zeros : bool, default=False
        Drop genes with zero counts in every library.

    Returns
    -------
    DGECounts
        The composite container.

    Raises
    ------
    ValueError
        If counts are negative, missing or infinite.
    ConfigError
        If per-library options do not match the number of libraries.
    """
    counts = as_count_frame(counts)
    values = counts.to_numpy(dtype=np.float64)

    if np.isnan(values).any():
        raise ValueError("NA counts not allowed")
    if np.isinf(values).any():
        raise ValueError("Infinite counts not allowed")
    if (values < 0).any():
        raise ValueError("Negative counts not allowed")

    n_samples = counts.shape[1]

    if lib_size is None:
        lib_size = values.sum(axis=0)
    lib_size = _per_sample(lib_size, "lib_size", n_samples).astype(np.float64)
    if np.isnan(lib_size).any() or (lib_size < 0).any():
        raise ValueError("Library sizes must be non-negative numbers")

    if norm_factors is None:
        norm_factors = np.ones(n_samples)
    norm_factors = _per_sample(norm_factors, "norm_factors", n_samples).astype(np.float64)

    if group is None:
        group = np.repeat("1", n_samples)
    group = _per_sample(group, "group", n_samples)

    samples = pd.DataFrame(
        {
            "group": pd.Categorical(group),
            "lib_size": lib_size,
            "norm_factors": norm_factors,
        },
        index=counts.columns,
    )

    if genes is not None:
        if len(genes) != counts.shape[0]:
            raise ConfigError(
                f"genes annotation has {len(genes)} rows, counts has {counts.shape[0]}"
            )
        genes = genes.copy()
        genes.index = counts.index

    if remove_zeros:
        nonzero = (values > 0).any(axis=1)
        n_removed = int((~nonzero).sum())
        logger.info(f"Removing {n_removed} genes with zero counts in all libraries")
        counts = counts.loc[nonzero]
        if genes is not None:
            genes = genes.loc[nonzero]

    logger.debug(f"Built composite with {counts.shape[0]} genes x {n_samples} libraries")
    return DGECounts(counts=counts, samples=samples, genes=genes)


def compute_norm_factors(
    composite: DGECounts,
    method: str = DEFAULT_NORM_METHOD,
    **options: Any,
) -> DGECounts:
    """Estimate normalization factors for a composite.

    Parameters
    ----------
    composite : DGECounts
        The composite to normalize. Left unchanged.
    method : str, default="TMM"
        Normalization method; see
        :func:`countnorm.core.normalization.calc_norm_factors`.
    **options
        Passed to ``calc_norm_factors`` (``logratio_trim``, ``sum_trim``,
        ``do_weighting``, ``a_cutoff``, ``p``, ``ref_column``).

    Returns
    -------
    DGECounts
        A new composite carrying the estimated factors.
    """
    factors = calc_norm_factors(
        composite.counts.to_numpy(dtype=np.float64),
        lib_size=composite.samples["lib_size"].to_numpy(),
        method=method,
        **options,
    )

    samples = composite.samples.copy()
    samples["norm_factors"] = factors
    logger.info(
        f"Computed {method} normalization factors "
        f"(range {factors.min():.4f}-{factors.max():.4f})"
    )
    return replace(composite, counts=composite.counts.copy(), samples=samples)


def counts_per_million(
    data: DGECounts | pd.DataFrame,
    normalized_lib_sizes: bool = True,
    log: bool = False,
    prior_count: float = PRIOR_COUNT,
) -> pd.DataFrame:
    """Scale counts to counts per million.

    Parameters
    ----------
    data : DGECounts or pd.DataFrame
        A composite, or a genes x samples count table whose column sums
        are used as library sizes.
    normalized_lib_sizes : bool, default=True
        Multiply library sizes by the composite's normalization factors.
        Ignored for plain tables.
    log : bool, default=False
        Return log2 counts per million using a library-size scaled prior.
    prior_count : float, default=2
        Average count added to each observation when ``log`` is True.

    Returns
    -------
    pd.DataFrame
        Counts per million with the same labels as the input counts.
    """
    if isinstance(data, DGECounts):
        counts = data.counts
        lib_size = data.samples["lib_size"].to_numpy(dtype=np.float64)
        if normalized_lib_sizes:
            lib_size = lib_size * data.samples["norm_factors"].to_numpy(dtype=np.float64)
    else:
        counts = data
        lib_size = counts.to_numpy(dtype=np.float64).sum(axis=0)

    values = counts.to_numpy(dtype=np.float64)

    if log:
        prior_scaled = lib_size / np.mean(lib_size) * prior_count
        lib_size = lib_size + 2 * prior_scaled
        with np.errstate(divide="ignore", invalid="ignore"):
            scaled = np.log2((values + prior_scaled) / lib_size * CPM_SCALE)
    else:
        with np.errstate(divide="ignore", invalid="ignore"):
            scaled = values / lib_size * CPM_SCALE

    return pd.DataFrame(scaled, index=counts.index.copy(), columns=counts.columns.copy())
