# SPDX-FileCopyrightText: 2020 Lukas Schrangl <lukas.schrangl@tuwien.ac.at>
#
# SPDX-License-Identifier: BSD-3-Clause

import numpy as np
import pytest

from psffit import config
from psffit.fitting import convergence
from psffit.fitting.convergence import ToleranceConfig, ConvergenceChecker


def tol(**kwargs):
    d = dict(relative=1e-3, absolute=1e-6, check_score=True,
             check_sequence=True, max_iterations=10)
    d.update(kwargs)
    return ToleranceConfig(**d)


class TestConvergenceChecker:
    def test_no_criterion(self):
        """ConvergenceChecker: unreachable criteria"""
        with pytest.raises(ValueError):
            ConvergenceChecker(tol(check_score=False, check_sequence=False,
                                   max_iterations=0))
        with pytest.raises(ValueError):
            ConvergenceChecker(tol(relative=0., absolute=0.,
                                   max_iterations=0))
        with pytest.raises(ValueError):
            ConvergenceChecker(tol(max_iterations=-1))
        # Iteration limit alone is fine
        ConvergenceChecker(tol(check_score=False, check_sequence=False))

    def test_score(self):
        """ConvergenceChecker: score criteria"""
        c = ConvergenceChecker(tol(check_sequence=False))
        p = np.zeros(2)
        assert c.converged(1000., p, 999.5, p)
        assert not c.converged(1000., p, 998., p)
        assert c.converged(1e-7, p, 5e-7, p)
        assert not c.converged(1., p, np.inf, p)

        c = ConvergenceChecker(tol(check_sequence=False, relative=0.))
        assert not c.converged(1000., p, 999.5, p)
        c = ConvergenceChecker(tol(check_sequence=False, absolute=0.))
        assert not c.converged(1e-7, p, 5e-7, p)

    def test_score_within_absolute(self):
        """ConvergenceChecker.score_within_absolute"""
        c = ConvergenceChecker(tol())
        assert c.score_within_absolute(1., 1. + 1e-7)
        assert not c.score_within_absolute(1., 1.001)
        c = ConvergenceChecker(tol(absolute=0.))
        assert not c.score_within_absolute(1., 1.)

    def test_sequence(self):
        """ConvergenceChecker: sequence criteria"""
        c = ConvergenceChecker(tol(check_score=False))
        p = np.array([10., 100., 0.])
        assert c.converged(0., p, 0., p + [0.005, 0.05, 1e-7])
        assert not c.converged(0., p, 0., p + [0.02, 0.05, 1e-7])
        assert not c.converged(0., p, 0., p + [0.005, 0.05, 1e-5])

    def test_sequence_indices(self):
        """ConvergenceChecker: only selected parameters are compared"""
        c = ConvergenceChecker(tol(check_score=False), indices=[0, 2])
        p = np.array([10., 100., 0.])
        assert c.converged(0., p, 0., p + [0.005, 50., 0.])

    def test_angle(self):
        """ConvergenceChecker: angles wrap around"""
        c = ConvergenceChecker(tol(check_score=False), angle_indices=[1])
        p = np.array([1., 0.01])
        assert c.converged(0., p, 0., p + [0., 2 * np.pi])
        assert not c.converged(0., p, 0., p + [0., 0.1])
        assert not c.converged(0., p, 0., p + [0., 2 * np.pi + 0.1])

    def test_max_iterations(self):
        """ConvergenceChecker.max_iterations_reached"""
        c = ConvergenceChecker(tol(max_iterations=3))
        assert not c.max_iterations_reached(2)
        assert c.max_iterations_reached(3)
        c = ConvergenceChecker(tol(max_iterations=0))
        assert not c.max_iterations_reached(10**6)


def test_angle_difference():
    """convergence.angle_difference"""
    assert convergence.angle_difference(0.1, 0.1 + 2 * np.pi) == \
        pytest.approx(0., abs=1e-12)
    assert convergence.angle_difference(0., np.pi / 2) == pytest.approx(1.)
    assert convergence.angle_difference(-0.1, 0.1) == \
        pytest.approx(0.2 / (np.pi / 2))


def test_get_tolerance():
    """convergence.get_tolerance"""
    t = convergence.get_tolerance({"max_iterations": 3})
    assert t.max_iterations == 3
    assert t.relative == config.rc["tolerance"]["relative"]
    assert convergence.get_tolerance(t) is t
    assert convergence.get_tolerance() == ToleranceConfig(
        **config.rc["tolerance"])
