# SPDX-FileCopyrightText: 2020 Lukas Schrangl <lukas.schrangl@tuwien.ac.at>
#
# SPDX-License-Identifier: BSD-3-Clause

import numpy as np
import pytest

from psffit import sim
from psffit.model import GaussianModel, make_params


class TestSimulate:
    params = make_params(10., [dict(signal=1000., x=4.5, y=3.2, sx=1.3)])

    def test_noise_free(self):
        """sim.simulate: model values"""
        model = GaussianModel((8, 9))
        img = sim.simulate(model, self.params)
        assert img.shape == (8, 9)
        np.testing.assert_array_equal(img.ravel(), model.values())

    def test_poisson(self):
        """sim.simulate: Poisson noise"""
        model = GaussianModel((8, 9))
        img1 = sim.simulate(model, self.params, noise="poisson", rng=3)
        img2 = sim.simulate(model, self.params, noise="poisson",
                            rng=np.random.default_rng(3))
        np.testing.assert_array_equal(img1, img2)
        np.testing.assert_array_equal(img1, np.round(img1))
        assert np.all(img1 >= 0)
        assert img1.sum() == pytest.approx(1000. + 72 * 10., rel=0.1)

    def test_unknown_noise(self):
        """sim.simulate: unknown noise model"""
        with pytest.raises(ValueError):
            sim.simulate(GaussianModel((8, 9)), self.params, noise="gauss")

    def test_simulate_gauss(self):
        """sim.simulate_gauss"""
        peaks = [dict(signal=1000., x=4.5, y=3.2, sx=1.3, sy=1.3),
                 dict(signal=500., x=1.5, y=6.2, sx=1., sy=1.)]
        img = sim.simulate_gauss((8, 9), 5., peaks)
        model = GaussianModel((8, 9), 2, "circular")
        expected = sim.simulate(model, make_params(5., peaks))
        np.testing.assert_allclose(img, expected)
