# SPDX-FileCopyrightText: 2020 Lukas Schrangl <lukas.schrangl@tuwien.ac.at>
#
# SPDX-License-Identifier: BSD-3-Clause

"""Deciding when a fit has converged"""
import collections
import math

import numpy as np

from .. import config


ToleranceConfig = collections.namedtuple(
    "ToleranceConfig", ["relative", "absolute", "check_score",
                        "check_sequence", "max_iterations"])
ToleranceConfig.__doc__ = """Convergence criteria

Attributes
----------
relative : float
    Relative tolerance. Non-positive disables the relative criterion.
absolute : float
    Absolute tolerance. Non-positive disables the absolute criterion.
check_score : bool
    Whether to compare consecutive scores
check_sequence : bool
    Whether to compare consecutive parameter vectors
max_iterations : int
    Maximum number of accepted iterations. 0 means unlimited.
"""


def get_tolerance(tolerance=None):
    """Turn `tolerance` into a :py:class:`ToleranceConfig`

    Parameters
    ----------
    tolerance : ToleranceConfig or dict or None, optional
        If a dict, missing entries are taken from ``config.rc["tolerance"]``.
        If `None`, use ``config.rc["tolerance"]``.

    Returns
    -------
    ToleranceConfig
    """
    if isinstance(tolerance, ToleranceConfig):
        return tolerance
    d = dict(config.rc["tolerance"])
    if tolerance is not None:
        d.update(tolerance)
    return ToleranceConfig(**d)


def angle_difference(a, b):
    """Smallest rotational difference, as a fraction of a quarter turn

    Parameters
    ----------
    a, b : float or numpy.ndarray
        Angles in radians

    Returns
    -------
    float or numpy.ndarray
        Absolute difference divided by :math:`\\pi / 2`
    """
    d = a - b
    return np.abs(np.arctan2(np.sin(d), np.cos(d)) / (np.pi / 2))


class ConvergenceChecker:
    """Compare consecutive iterations against tolerances

    Two values :math:`p, c` are considered equal if
    :math:`|p - c| \\le \\max(|p|, |c|) \\cdot r` or :math:`|p - c| \\le a`,
    where :math:`r` and :math:`a` are the relative and absolute tolerances.
    For angles, the difference is replaced by :py:func:`angle_difference`.
    """
    def __init__(self, tolerance, indices=None, angle_indices=()):
        """Parameters
        ----------
        tolerance : ToleranceConfig
            Convergence criteria
        indices : array-like of int or None, optional
            Parameters to compare when checking the sequence. If `None`, use
            all.
        angle_indices : array-like of int, optional
            Parameters which are angles

        Raises
        ------
        ValueError
            The criteria can never be met.
        """
        t = tolerance
        can_converge = t.max_iterations > 0
        if t.check_score or t.check_sequence:
            can_converge |= t.relative > 0 or t.absolute > 0
        if not can_converge:
            raise ValueError("No valid convergence criteria.")
        if t.max_iterations < 0:
            raise ValueError("`max_iterations` must not be negative.")
        self.tolerance = t
        self.indices = None if indices is None else np.asarray(indices, int)
        self.angle_indices = np.asarray(angle_indices, dtype=int)

    def _equal(self, p, c, diff=None):
        t = self.tolerance
        if diff is None:
            diff = np.abs(p - c)
        ok = np.zeros(np.shape(diff), dtype=bool)
        if t.relative > 0:
            ok |= diff <= np.maximum(np.abs(p), np.abs(c)) * t.relative
        if t.absolute > 0:
            ok |= diff <= t.absolute
        return ok

    def score_converged(self, previous, current):
        """Whether two scores are equal within the tolerances"""
        return bool(self._equal(previous, current))

    def score_within_absolute(self, previous, current):
        """Whether two scores differ at most by the absolute tolerance"""
        return (self.tolerance.absolute > 0 and
                abs(previous - current) <= self.tolerance.absolute)

    def sequence_converged(self, previous, current):
        """Whether two parameter vectors are equal within the tolerances"""
        p = np.asarray(previous, dtype=float)
        c = np.asarray(current, dtype=float)
        ok = self._equal(p, c)
        a = self.angle_indices
        if len(a):
            # Already normalized, compare to the tolerances directly
            ok[a] = self._equal(0., 1., angle_difference(p[a], c[a]))
        if self.indices is not None:
            ok = ok[self.indices]
        return bool(np.all(ok))

    def converged(self, previous_score, previous_params, score, params):
        """Check whether the fit has converged

        Parameters
        ----------
        previous_score, score : float
            Scores before and after the last accepted step
        previous_params, params : numpy.ndarray
            Parameters before and after the last accepted step

        Returns
        -------
        bool
            `True` if any enabled criterion is met
        """
        t = self.tolerance
        if (t.check_score and math.isfinite(score) and
                self.score_converged(previous_score, score)):
            return True
        if (t.check_sequence and
                self.sequence_converged(previous_params, params)):
            return True
        return False

    def max_iterations_reached(self, iterations):
        """Whether the iteration limit was reached"""
        m = self.tolerance.max_iterations
        return m > 0 and iterations >= m
