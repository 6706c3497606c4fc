from __future__ import annotations

import numpy as np
from scipy import stats

# Smallest positive normal float32; q-values are never reported below it.
Q_VALUE_FLOOR = float(np.finfo(np.float32).tiny)


def benjamini_hochberg(p_values: list[float]) -> list[float]:
    n = len(p_values)
    if n == 0:
        return []
    order = np.argsort(p_values, kind="mergesort")
    ranked = np.array([p_values[i] for i in order], dtype=float)
    adjusted = np.empty(n, dtype=float)
    prev = 1.0
    for i in range(n - 1, -1, -1):
        rank = i + 1
        candidate = min(prev, ranked[i] * n / rank)
        adjusted[i] = candidate
        prev = candidate

    result = np.empty(n, dtype=float)
    for sorted_idx, original_idx in enumerate(order):
        result[original_idx] = adjusted[sorted_idx]
    return result.tolist()


def chi_square_2x2(tables: np.ndarray) -> np.ndarray:
    """Pearson chi-square independence test with Yates correction, one per row.

    ``tables`` holds rows ``(a, b, c, d)`` for the table ``[[a, b], [c, d]]``.
    Tables with an empty row or column have no defined statistic and get p = 1.
    """
    t = np.asarray(tables, dtype=float)
    if t.ndim != 2 or t.shape[1] != 4:
        raise ValueError("tables must be an (n, 4) array.")
    if t.shape[0] == 0:
        return np.empty(0, dtype=float)
    if np.any(t < 0) or not np.all(np.isfinite(t)):
        raise ValueError("contingency counts must be finite and non-negative.")

    observed = t.reshape(-1, 2, 2)
    rows = observed.sum(axis=2, keepdims=True)
    cols = observed.sum(axis=1, keepdims=True)
    total = observed.sum(axis=(1, 2), keepdims=True)
    with np.errstate(divide="ignore", invalid="ignore"):
        expected = rows * cols / total
        diff = np.abs(observed - expected)
        corrected = np.maximum(diff - np.minimum(0.5, diff), 0.0)
        statistic = np.sum(corrected**2 / expected, axis=(1, 2))
    defined = np.all(expected > 0, axis=(1, 2))
    p_values = np.ones(t.shape[0], dtype=float)
    p_values[defined] = stats.chi2.sf(statistic[defined], df=1)
    return np.clip(p_values, 0.0, 1.0)


def mean_and_std_err(values: np.ndarray) -> tuple[float, float]:
    """Mean and population standard deviation / sqrt(n); (0, 0) when empty."""
    v = np.asarray(values, dtype=float)
    if v.size == 0:
        return 0.0, 0.0
    mean = float(np.mean(v))
    return mean, float(np.std(v, ddof=0) / np.sqrt(v.size))
