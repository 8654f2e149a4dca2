# SPDX-FileCopyrightText: 2020 Lukas Schrangl <lukas.schrangl@tuwien.ac.at>
#
# SPDX-License-Identifier: BSD-3-Clause

import numpy as np
import pytest

import psffit
from psffit import config, sim, FitStatus, PrecisionUnavailable
from psffit.fitting import PrecisionEstimator
from psffit.model import (GaussianModel, astigmatism, make_params,
                          param_index)


@pytest.fixture
def model():
    return GaussianModel((9, 9), capabilities="circular")


@pytest.fixture
def truth():
    return make_params(10., [dict(signal=1000., x=4.3, y=4.6, sx=1.1)])


@pytest.fixture
def guess():
    return make_params(5., [dict(signal=700., x=4., y=4., sx=1.4)])


class TestFit:
    def test_lsq(self, model, truth, guess):
        """api.fit: least squares"""
        img = sim.simulate(model, truth)
        res = psffit.fit(model, "lsq", guess, img)
        assert isinstance(res, psffit.FitResult)
        assert res.status == FitStatus.CONVERGED
        assert res.converged
        gi = model.gradient_indices
        np.testing.assert_allclose(res.params[gi], truth[gi], rtol=1e-5)
        assert res.log_likelihood_ratio is None
        assert res.q_value is None
        assert res.variances.shape == (model.n_gradients,)
        np.testing.assert_allclose(res.precision, np.sqrt(res.variances))

    def test_mle(self, model, truth, guess):
        """api.fit: maximum likelihood"""
        img = sim.simulate(model, truth, noise="poisson", rng=10)
        res = psffit.fit(model, "mle", guess, img)
        assert res.status == FitStatus.CONVERGED
        assert res.log_likelihood_ratio == pytest.approx(2 * res.score)
        assert res.log_likelihood_ratio >= 0
        assert 0 <= res.q_value <= 1
        assert res.params[param_index(0, "x")] == pytest.approx(4.3, abs=0.3)
        assert np.all(res.variances > 0)

    def test_no_precision(self, model, truth, guess):
        """api.fit: skip precision calculation"""
        img = sim.simulate(model, truth)
        res = psffit.fit(model, "lsq", guess, img, precision=False)
        assert res.variances is None
        assert res.precision is None

    def test_precision_unavailable(self, model, truth, guess, monkeypatch):
        """api.fit: precision failure does not change status"""
        def fail(self, params):
            raise PrecisionUnavailable("test")

        monkeypatch.setattr(PrecisionEstimator, "variances", fail)
        img = sim.simulate(model, truth)
        res = psffit.fit(model, "mle", guess, img)
        assert res.status == FitStatus.CONVERGED
        assert res.variances is None

    def test_failed(self, model, truth):
        """api.fit: failures are reported via status"""
        img = sim.simulate(model, truth)
        guess = make_params(10., [dict(signal=0., x=4., y=4., sx=1.)])
        res = psffit.fit(model, "lsq", guess, img)
        assert res.status == FitStatus.SINGULAR_MATRIX
        assert not res.converged
        assert res.variances is None
        np.testing.assert_array_equal(res.params, guess)

    def test_rc(self, model, truth, guess, monkeypatch):
        """api.fit: defaults from config.rc"""
        tol = dict(config.rc["tolerance"], max_iterations=1)
        monkeypatch.setitem(config.rc, "tolerance", tol)
        img = sim.simulate(model, truth)
        res = psffit.fit(model, "lsq", guess, img)
        assert res.status == FitStatus.MAX_ITERATIONS
        assert res.iterations == 1

    def test_depth(self):
        """api.fit: astigmatism, z is bounded by calibration range"""
        zp = astigmatism.Parameters(z_range=(-0.5, 0.5))
        zp.x = zp.Tuple(1.3, 0.15, 0.4, np.array([0.5, 0.1]))
        zp.y = zp.Tuple(1.2, -0.15, 0.4, np.array([0.5, -0.1]))
        model = GaussianModel((11, 11), capabilities="astigmatism",
                              z_params=zp)
        truth = make_params(10., [dict(signal=2000., x=5.2, y=4.9, z=0.2)])
        img = sim.simulate(model, truth)

        guess = make_params(8., [dict(signal=1500., x=5., y=5., z=0.)])
        res = psffit.fit(model, "lsq", guess, img,
                         tolerance=dict(max_iterations=200))
        assert res.status == FitStatus.CONVERGED
        assert res.params[param_index(0, "z")] == pytest.approx(0.2,
                                                                abs=1e-4)

        guess = make_params(8., [dict(signal=1500., x=5., y=5., z=2.)])
        res = psffit.fit(model, "lsq", guess, img,
                         tolerance=dict(max_iterations=1))
        assert -0.5 <= res.params[param_index(0, "z")] <= 0.5


class TestBatch:
    def test_batch(self, model, truth, guess):
        """api.batch"""
        xs = [3.8, 4.3, 5.1]
        imgs = []
        for x in xs:
            t = truth.copy()
            t[param_index(0, "x")] = x
            imgs.append(sim.simulate(model, t))
        res = psffit.batch(imgs, [guess] * 3, model, "lsq")

        assert len(res) == 3
        assert list(res.columns) == [
            "window", "peak", "bg", "mass", "x", "y", "angle", "size_x",
            "size_y", "z", "bg_var", "mass_var", "x_var", "y_var",
            "angle_var", "size_x_var", "size_y_var", "z_var", "status",
            "iterations", "evaluations", "score", "llr", "q"]
        np.testing.assert_array_equal(res["window"], [0, 1, 2])
        np.testing.assert_array_equal(res["peak"], 0)
        assert (res["status"] == "CONVERGED").all()
        np.testing.assert_allclose(res["x"], xs, rtol=1e-5)
        np.testing.assert_allclose(res["mass"], 1000., rtol=1e-5)
        assert res["x_var"].notna().all()
        assert res["angle_var"].isna().all()
        assert res["llr"].isna().all()

    def test_threads(self, model, truth, guess):
        """api.batch: same result for any number of threads"""
        imgs = [sim.simulate(model, truth, noise="poisson", rng=i)
                for i in range(6)]
        clamp = psffit.ParameterClamp.for_model(model, dynamic=True)
        r1 = psffit.batch(imgs, [guess] * 6, model, "mle", num_threads=1,
                          clamp=clamp)
        r4 = psffit.batch(imgs, [guess] * 6, model, "mle", num_threads=4,
                          clamp=clamp)
        np.testing.assert_array_equal(r1["x"], r4["x"])
        np.testing.assert_array_equal(r1["iterations"], r4["iterations"])
        # the clamp passed in is left untouched
        np.testing.assert_array_equal(clamp.sign, 0)

    def test_multi_peak(self, truth):
        """api.batch: one row per peak"""
        model = GaussianModel((9, 14), 2, "circular")
        t = make_params(10., [dict(signal=1000., x=4.3, y=4.6, sx=1.1),
                              dict(signal=800., x=9.6, y=4.1, sx=1.1)])
        g = make_params(10., [dict(signal=900., x=4., y=4.5, sx=1.2),
                              dict(signal=900., x=9.5, y=4.5, sx=1.2)])
        img = sim.simulate(model, t)
        res = psffit.batch([img, img], [g, g], model, "mle")
        assert len(res) == 4
        np.testing.assert_array_equal(res["window"], [0, 0, 1, 1])
        np.testing.assert_array_equal(res["peak"], [0, 1, 0, 1])
        np.testing.assert_allclose(res["x"], [4.3, 9.6, 4.3, 9.6], rtol=1e-4)
        np.testing.assert_allclose(res["bg"], 10., rtol=1e-4)

    def test_columns(self, model, truth, guess):
        """api.batch: custom column names"""
        img = sim.simulate(model, truth)
        res = psffit.batch([img], [guess], model, "lsq",
                           columns={"mass": "photons", "coords": ["c", "r"],
                                    "var_suffix": "_v"})
        assert "photons" in res
        assert "photons_v" in res
        assert "c" in res and "r" in res
        assert "mass" not in res

    def test_errors(self, model, guess):
        """api.batch: invalid input"""
        with pytest.raises(ValueError):
            psffit.batch([], [], model, "lsq")
        with pytest.raises(ValueError):
            psffit.batch([np.zeros((9, 9))] * 2, [guess], model, "lsq")
