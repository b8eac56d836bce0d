"""Library-size normalization factors for RNA-seq counts.

Scale factors follow the definitions used by edgeR's ``calcNormFactors``,
so that results can be compared directly with R-based workflows.

Methods
-------
TMM
    Weighted trimmed mean of M-values against a reference library.
TMMwsp
    TMM with singleton pairing, more robust for sparse data.
RLE
    Relative log expression (median ratio to the geometric mean).
upperquartile
    Upper-quartile (or any ``p`` quantile) scaling.
none
    Unit factors.

References:
    Robinson & Oshlack (2010) "A scaling normalization method for
    differential expression analysis of RNA-seq data" Genome Biology.
"""

from __future__ import annotations

import logging

import numpy as np
from scipy.stats import rankdata

from countnorm.exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_NORM_METHOD = "TMM"
NORM_METHODS = ("TMM", "TMMwsp", "RLE", "upperquartile", "none")

# TMM trimming defaults
LOGRATIO_TRIM = 0.3
SUM_TRIM = 0.05
A_CUTOFF = -1e10
UPPER_QUARTILE = 0.75


def check_norm_method(method: str) -> str:
    """Validate a normalization method name.

    Parameters
    ----------
    method : str
        Method name, one of ``NORM_METHODS``.

    Returns
    -------
    str
        The validated method name.

    Raises
    ------
    ConfigError
        If the method is not recognized.
    """
    if method not in NORM_METHODS:
        raise ConfigError(
            f"Unknown normalization method: {method!r}. "
            f"Available methods: {', '.join(NORM_METHODS)}"
        )
    return method


def calc_norm_factors(
    counts: np.ndarray,
    lib_size: np.ndarray | None = None,
    method: str = DEFAULT_NORM_METHOD,
    ref_column: int | None = None,
    logratio_trim: float = LOGRATIO_TRIM,
    sum_trim: float = SUM_TRIM,
    do_weighting: bool = True,
    a_cutoff: float = A_CUTOFF,
    p: float = UPPER_QUARTILE,
) -> np.ndarray:
    """Estimate per-library normalization factors.

    Parameters
    ----------
    counts : np.ndarray
        Count matrix (genes x samples).
    lib_size : np.ndarray, optional
        Library sizes. Defaults to the column sums of ``counts``.
    method : str, default="TMM"
        One of 'TMM', 'TMMwsp', 'RLE', 'upperquartile', 'none'.
    ref_column : int, optional
        Position of the reference library for TMM/TMMwsp. Chosen
        automatically if None.
    logratio_trim : float, default=0.3
        Fraction of M-values trimmed from each end (TMM/TMMwsp).
    sum_trim : float, default=0.05
        Fraction of A-values trimmed from each end (TMM/TMMwsp).
    do_weighting : bool, default=True
        Use precision weights for the trimmed mean (TMM/TMMwsp).
    a_cutoff : float, default=-1e10
        Genes with A-values at or below this are ignored (TMM).
    p : float, default=0.75
        Quantile used by 'upperquartile'.

    Returns
    -------
    np.ndarray
        One factor per library; the factors multiply to one.

    Raises
    ------
    ConfigError
        If the method is unknown.
    ValueError
        If counts contain missing values, or a library is empty (size
        zero) for any method other than 'none'.
    """
    check_norm_method(method)

    x = np.asarray(counts, dtype=np.float64)
    if x.ndim != 2:
        raise ValueError(f"counts must be 2-dimensional, got {x.ndim} dimensions")
    if np.isnan(x).any():
        raise ValueError("NA counts not permitted")
    n_samples = x.shape[1]

    if lib_size is None:
        lib_size = x.sum(axis=0)
    else:
        lib_size = np.asarray(lib_size, dtype=np.float64)
        if np.isnan(lib_size).any():
            raise ValueError("NA lib sizes not permitted")

    # Genes with no counts carry no information about scaling
    x = x[(x > 0).any(axis=1)]
    if x.shape[0] == 0 or n_samples == 1:
        method = "none"

    if method != "none" and (lib_size <= 0).any():
        empty = np.flatnonzero(lib_size <= 0).tolist()
        raise ValueError(
            f"Library sizes must be positive for {method} normalization; "
            f"libraries at positions {empty} are empty"
        )

    logger.debug(f"Computing {method} factors for {n_samples} libraries ({x.shape[0]} genes)")

    if method == "TMM":
        if ref_column is None:
            f75 = _factor_quantile(x, lib_size, p=UPPER_QUARTILE, warn=False)
            if np.median(f75) < 1e-20:
                ref_column = int(np.argmax(np.sqrt(x).sum(axis=0)))
            else:
                ref_column = int(np.argmin(np.abs(f75 - f75.mean())))
        factors = np.array([
            _factor_tmm(
                obs=x[:, i],
                ref=x[:, ref_column],
                libsize_obs=lib_size[i],
                libsize_ref=lib_size[ref_column],
                logratio_trim=logratio_trim,
                sum_trim=sum_trim,
                do_weighting=do_weighting,
                a_cutoff=a_cutoff,
            )
            for i in range(n_samples)
        ])
    elif method == "TMMwsp":
        if ref_column is None:
            ref_column = int(np.argmax(np.sqrt(x).sum(axis=0)))
        factors = np.array([
            _factor_tmmwsp(
                obs=x[:, i],
                ref=x[:, ref_column],
                libsize_obs=lib_size[i],
                libsize_ref=lib_size[ref_column],
                logratio_trim=logratio_trim,
                sum_trim=sum_trim,
                do_weighting=do_weighting,
            )
            for i in range(n_samples)
        ])
    elif method == "RLE":
        factors = _factor_rle(x) / lib_size
    elif method == "upperquartile":
        factors = _factor_quantile(x, lib_size, p=p)
    else:
        factors = np.ones(n_samples)

    # Factors multiply to one
    factors = factors / np.exp(np.mean(np.log(factors)))
    return factors


def _factor_quantile(
    x: np.ndarray,
    lib_size: np.ndarray,
    p: float = UPPER_QUARTILE,
    warn: bool = True,
) -> np.ndarray:
    """Upper-quartile factors: the ``p`` quantile of each library over its size."""
    f = np.quantile(x, p, axis=0)
    if warn and f.min() == 0:
        logger.warning("One or more quantiles are zero")
    return f / lib_size


def _factor_rle(x: np.ndarray) -> np.ndarray:
    """Median ratio of each library to the per-gene geometric mean."""
    with np.errstate(divide="ignore"):
        gm = np.exp(np.log(x).mean(axis=1))
    keep = gm > 0
    return np.median(x[keep] / gm[keep, None], axis=0)


def _factor_tmm(
    obs: np.ndarray,
    ref: np.ndarray,
    libsize_obs: float,
    libsize_ref: float,
    logratio_trim: float = LOGRATIO_TRIM,
    sum_trim: float = SUM_TRIM,
    do_weighting: bool = True,
    a_cutoff: float = A_CUTOFF,
) -> float:
    """TMM factor of one library against the reference library."""
    n_o = libsize_obs
    n_r = libsize_ref

    with np.errstate(divide="ignore", invalid="ignore"):
        log_r = np.log2((obs / n_o) / (ref / n_r))
        abs_e = (np.log2(obs / n_o) + np.log2(ref / n_r)) / 2
        v = (n_o - obs) / n_o / obs + (n_r - ref) / n_r / ref

    fin = np.isfinite(log_r) & np.isfinite(abs_e) & (abs_e > a_cutoff)
    log_r = log_r[fin]
    abs_e = abs_e[fin]
    v = v[fin]

    if log_r.size == 0 or np.max(np.abs(log_r)) < 1e-6:
        return 1.0

    n = log_r.size
    lo_l = np.floor(n * logratio_trim) + 1
    hi_l = n + 1 - lo_l
    lo_s = np.floor(n * sum_trim) + 1
    hi_s = n + 1 - lo_s

    rank_r = rankdata(log_r)
    rank_e = rankdata(abs_e)
    keep = (rank_r >= lo_l) & (rank_r <= hi_l) & (rank_e >= lo_s) & (rank_e <= hi_s)

    if do_weighting:
        f = np.nansum(log_r[keep] / v[keep]) / np.nansum(1 / v[keep])
    else:
        f = np.nanmean(log_r[keep]) if keep.any() else np.nan

    if np.isnan(f):
        f = 0.0
    return float(2**f)


def _factor_tmmwsp(
    obs: np.ndarray,
    ref: np.ndarray,
    libsize_obs: float,
    libsize_ref: float,
    logratio_trim: float = LOGRATIO_TRIM,
    sum_trim: float = SUM_TRIM,
    do_weighting: bool = True,
) -> float:
    """TMM with singleton pairing.

    Genes observed in only one of the two libraries are paired up by
    abundance instead of being discarded, which keeps the estimate
    usable when most genes are zero in at least one library.
    """
    eps = 1e-14
    npos = 2 * (obs > eps).astype(int) + (ref > eps).astype(int)

    present = npos != 0
    obs = obs[present]
    ref = ref[present]
    npos = npos[present]

    zero_obs = npos == 1
    zero_ref = npos == 2
    single = zero_obs | zero_ref
    n_singles = min(int(zero_obs.sum()), int(zero_ref.sum()))
    if n_singles > 0:
        ref_k = np.sort(ref[single])[::-1][:n_singles]
        obs_k = np.sort(obs[single])[::-1][:n_singles]
        obs = np.concatenate([obs[~single], obs_k])
        ref = np.concatenate([ref[~single], ref_k])
    else:
        obs = obs[~single]
        ref = ref[~single]

    n = obs.size
    if n == 0:
        return 1.0

    obs_p = obs / libsize_obs
    ref_p = ref / libsize_ref
    m = np.log2(obs_p / ref_p)
    a = 0.5 * np.log2(obs_p * ref_p)

    if np.max(np.abs(m)) < 1e-6:
        return 1.0

    obs_p_shrunk = (obs + 0.5) / (libsize_obs + 0.5)
    ref_p_shrunk = (ref + 0.5) / (libsize_ref + 0.5)
    m_shrunk = np.log2(obs_p_shrunk / ref_p_shrunk)

    # Ties in M are broken by the shrunk M-values
    order_m = np.lexsort((m_shrunk, m))
    order_a = np.argsort(a, kind="stable")

    lo_m = int(n * logratio_trim)
    hi_m = n - lo_m
    keep_m = np.zeros(n, dtype=bool)
    keep_m[order_m[lo_m:hi_m]] = True

    lo_a = int(n * sum_trim)
    hi_a = n - lo_a
    keep_a = np.zeros(n, dtype=bool)
    keep_a[order_a[lo_a:hi_a]] = True

    keep = keep_m & keep_a
    m = m[keep]

    if do_weighting:
        obs_p = obs_p[keep]
        ref_p = ref_p[keep]
        v = (1 - obs_p) / obs_p / libsize_obs + (1 - ref_p) / ref_p / libsize_ref
        w = (1 + 1e-6) / (v + 1e-6)
        tmm = np.sum(w * m) / np.sum(w)
    else:
        tmm = np.mean(m)

    return float(2**tmm)
