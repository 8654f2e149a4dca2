# SPDX-FileCopyrightText: 2020 Lukas Schrangl <lukas.schrangl@tuwien.ac.at>
#
# SPDX-License-Identifier: BSD-3-Clause

import numpy as np
import pytest

from psffit.fitting import ParameterBounds, ParameterClamp
from psffit.model import GaussianModel


class TestParameterBounds:
    def test_apply(self):
        """ParameterBounds.apply_bounds"""
        b = ParameterBounds([0., np.nan, -1.], [10., 5., np.nan])
        cur = np.array([5., 0., 0.])
        np.testing.assert_array_equal(
            b.apply_bounds(cur, np.array([-7., 8., -3.])), [0., 5., -1.])
        np.testing.assert_array_equal(
            b.apply_bounds(cur, np.array([20., -100., 100.])),
            [10., -100., 100.])
        np.testing.assert_array_equal(cur, [5., 0., 0.])

    def test_apply_out(self):
        """ParameterBounds.apply_bounds: write to `out`"""
        b = ParameterBounds(upper=[1., 1.])
        out = np.empty(2)
        r = b.apply_bounds(np.zeros(2), np.array([0.5, 3.]), out=out)
        assert r is out
        np.testing.assert_array_equal(out, [0.5, 1.])

    def test_clip(self):
        """ParameterBounds.clip"""
        b = ParameterBounds([0., 0.], [1., 2.])
        np.testing.assert_array_equal(b.clip(np.array([-1., 3.])), [0., 2.])

    def test_unconstrained(self):
        """ParameterBounds: no limits"""
        b = ParameterBounds(n_params=3)
        assert b.n_params == 3
        np.testing.assert_array_equal(b.lower, -np.inf)
        np.testing.assert_array_equal(b.upper, np.inf)

    def test_invalid(self):
        """ParameterBounds: invalid limits"""
        with pytest.raises(ValueError):
            ParameterBounds([2., 0.], [1., 1.])
        with pytest.raises(ValueError):
            ParameterBounds([0., 0.], [1., 1., 1.])
        with pytest.raises(ValueError):
            ParameterBounds()
        with pytest.raises(ValueError):
            ParameterBounds([0., 0.], n_params=3)


class TestParameterClamp:
    def test_apply(self):
        """ParameterClamp.apply"""
        c = ParameterClamp([1., 10., 0., np.inf])
        step = np.array([1., -10., 5., 5.])
        np.testing.assert_allclose(c.apply(step), [0.5, -5., 5., 5.])
        # Large steps approach the clamp value
        assert c.apply(np.array([1e9, 0., 0., 0.]))[0] == pytest.approx(1.)
        with pytest.raises(ValueError):
            c.apply(np.ones(3))

    def test_static(self):
        """ParameterClamp: static clamp does not change"""
        c = ParameterClamp([2., 2.])
        c.commit(np.array([1., 1.]))
        np.testing.assert_allclose(c.apply(np.array([-2., 2.])), [-1., 1.])

    def test_dynamic(self):
        """ParameterClamp: dynamic clamp halves on sign change"""
        c = ParameterClamp([2., 2.], dynamic=True)
        step = np.array([2., 2.])
        np.testing.assert_allclose(c.apply(step), [1., 1.])
        c.commit(step)

        step = np.array([-2., 2.])
        # apply is pure
        np.testing.assert_allclose(c.apply(step), [-2. / 3., 1.])
        np.testing.assert_allclose(c.apply(step), [-2. / 3., 1.])
        np.testing.assert_array_equal(c.clamp, [2., 2.])

        c.commit(step)
        np.testing.assert_array_equal(c.clamp, [1., 2.])
        np.testing.assert_array_equal(c.sign, [-1, 1])

        c.reset()
        np.testing.assert_array_equal(c.clamp, [2., 2.])
        np.testing.assert_array_equal(c.sign, [0, 0])

    def test_for_model(self):
        """ParameterClamp.for_model"""
        model = GaussianModel((5, 5), 2, "circular")
        c = ParameterClamp.for_model(model, signal=500.)
        np.testing.assert_array_equal(
            c.initial, [100., 500., 1., 1., 0.3, 500., 1., 1., 0.3])
        assert not c.dynamic
        assert ParameterClamp.for_model(model, dynamic=True).dynamic
