import numpy as np
import pytest
from scipy.stats import chi2_contingency

from rtsim.stats import Q_VALUE_FLOOR, benjamini_hochberg, chi_square_2x2, mean_and_std_err


def test_bh_known_toy_example() -> None:
    p = [0.01, 0.04, 0.03, 0.002]
    q = benjamini_hochberg(p)
    expected = [0.02, 0.04, 0.04, 0.008]
    assert np.allclose(np.asarray(q, dtype=float), np.asarray(expected, dtype=float), atol=1e-12)


def test_bh_monotone_in_sorted_p_order() -> None:
    p = np.asarray([0.12, 0.8, 0.05, 0.01, 0.2, 0.6], dtype=float)
    q = np.asarray(benjamini_hochberg(p.tolist()), dtype=float)
    order = np.argsort(p)
    assert np.all(np.diff(q[order]) >= -1e-15)
    assert np.all(q >= p)


def test_chi_square_matches_scipy_with_yates_correction() -> None:
    tables = np.array(
        [
            [10, 20, 30, 40],
            [120, 80, 100, 100],
            [3, 0, 1, 5],
            [500, 510, 490, 520],
        ]
    )
    p = chi_square_2x2(tables)
    for row, p_value in zip(tables, p):
        expected = chi2_contingency(row.reshape(2, 2), correction=True)[1]
        assert p_value == pytest.approx(expected, rel=1e-9, abs=1e-12)


def test_chi_square_undefined_tables_get_p_one() -> None:
    tables = np.array([[0, 0, 5, 7], [4, 0, 9, 0]])
    assert chi_square_2x2(tables).tolist() == [1.0, 1.0]


def test_chi_square_rejects_bad_input() -> None:
    with pytest.raises(ValueError):
        chi_square_2x2(np.array([[1, 2, 3]]))
    with pytest.raises(ValueError):
        chi_square_2x2(np.array([[1, -2, 3, 4]]))
    assert chi_square_2x2(np.empty((0, 4))).size == 0


def test_mean_and_std_err() -> None:
    assert mean_and_std_err(np.array([])) == (0.0, 0.0)
    mean, err = mean_and_std_err(np.array([1.0, 3.0]))
    assert mean == pytest.approx(2.0)
    assert err == pytest.approx(1.0 / np.sqrt(2.0))


def test_q_value_floor_is_smallest_normal_float32() -> None:
    assert Q_VALUE_FLOOR == pytest.approx(1.1754943508222875e-38)
