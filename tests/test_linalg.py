# SPDX-FileCopyrightText: 2020 Lukas Schrangl <lukas.schrangl@tuwien.ac.at>
#
# SPDX-License-Identifier: BSD-3-Clause

import numpy as np
import pytest

from psffit import PrecisionUnavailable
from psffit.fitting import linalg


@pytest.fixture
def spd():
    rng = np.random.default_rng(5)
    m = rng.normal(size=(6, 6))
    return m @ m.T + 0.5 * np.eye(6)


class TestSolveDamped:
    def test_undamped(self, spd):
        """linalg.solve_damped: no damping"""
        b = np.arange(1., 7.)
        x = np.empty(6)
        assert linalg.solve_damped(spd, b, 0., x)
        np.testing.assert_allclose(x, np.linalg.solve(spd, b))

    def test_damped(self, spd):
        """linalg.solve_damped: damping scales the diagonal"""
        b = np.arange(1., 7.)
        x = np.empty(6)
        assert linalg.solve_damped(spd, b, 0.3, x)
        a = spd + 0.3 * np.diag(np.diag(spd))
        np.testing.assert_allclose(x, np.linalg.solve(a, b))
        # input is left alone
        assert not np.any(spd != spd.T)

    def test_lower_triangle(self, spd):
        """linalg.solve_damped: only the lower triangle is used"""
        b = np.ones(6)
        x = np.empty(6)
        lower = np.tril(spd)
        assert linalg.solve_damped(lower, b, 0.1, x)
        a = spd + 0.1 * np.diag(np.diag(spd))
        np.testing.assert_allclose(x, np.linalg.solve(a, b))

    def test_singular(self):
        """linalg.solve_damped: singular matrix"""
        x = np.empty(3)
        a = np.zeros((3, 3))
        assert not linalg.solve_damped(a, np.ones(3), 1., x)
        a = np.ones((3, 3))
        assert not linalg.solve_damped(a, np.ones(3), 0., x)
        a = np.diag([1., -1., 1.])
        assert not linalg.solve_damped(a, np.ones(3), 1., x)

    def test_nan(self, spd):
        """linalg.solve_damped: non-finite input"""
        x = np.empty(6)
        b = np.ones(6)
        b[2] = np.nan
        assert not linalg.solve_damped(spd, b, 0.1, x)


class TestInvertSPD:
    def test_invert(self, spd):
        """linalg.invert_spd"""
        np.testing.assert_allclose(linalg.invert_spd(spd),
                                   np.linalg.inv(spd), rtol=1e-10)

    def test_not_pd(self):
        """linalg.invert_spd: not positive definite"""
        with pytest.raises(PrecisionUnavailable):
            linalg.invert_spd(np.diag([1., 0., 2.]))
        with pytest.raises(PrecisionUnavailable):
            linalg.invert_spd(np.diag([1., -1., 2.]))
        with pytest.raises(PrecisionUnavailable):
            linalg.invert_spd(np.diag([1., np.inf, 2.]))
