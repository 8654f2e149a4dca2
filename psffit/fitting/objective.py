# SPDX-FileCopyrightText: 2020 Lukas Schrangl <lukas.schrangl@tuwien.ac.at>
#
# SPDX-License-Identifier: BSD-3-Clause

r"""Objective functions minimized by the fit

- :py:class:`LeastSquares`: sum of squared residuals. The curvature matrix is
  :math:`\sum_k \nabla f_k \nabla f_k^T` and the gradient vector is
  :math:`\sum_k (y_k - f_k) \nabla f_k`.
- :py:class:`MaximumLikelihood`: Poisson negative log-likelihood ratio
  (half of it, to be precise). For a sample with observation :math:`x` and
  prediction :math:`f > 0`, the score is :math:`f - x - x \ln(f / x)` (or
  :math:`f` if :math:`x = 0`), the curvature is
  :math:`\frac{x}{f^2} \nabla f \nabla f^T` and the gradient vector is
  :math:`-(1 - \frac{x}{f}) \nabla f`.

Both provide a per-sample :py:meth:`Objective.add` method used for
accumulating sample after sample. Loops over whole arrays are implemented in
:py:mod:`psffit.fitting.accumulator`.
"""
import math

import numpy as np
from scipy import stats


class Objective:
    """Base class for objective functions"""
    name = None
    """Identifier, also used to look up accumulation kernels"""

    def prepare(self, data, variances=None):
        """Turn data into observed values suitable for the objective

        Parameters
        ----------
        data : array-like
            Pixel data, flattened in the same way as the model samples
        variances : float or array-like or None, optional
            Per-pixel read noise variances added to the data. The same has to
            be added to the model values (see :py:class:`OffsetModel`).

        Returns
        -------
        numpy.ndarray
            Observed values (a new array)
        """
        y = np.array(data, dtype=float).ravel()
        if not np.all(np.isfinite(y)):
            raise ValueError("Data contains non-finite values.")
        if variances is not None:
            y += variances
        return y

    def add(self, observed, value, gradient, alpha, beta):
        """Add a single sample's contribution

        Only the lower triangle of `alpha` is updated.

        Parameters
        ----------
        observed, value : float
            Observed and predicted value
        gradient : numpy.ndarray
            Model gradient
        alpha : numpy.ndarray
            Curvature matrix, updated in place
        beta : numpy.ndarray
            Gradient vector, updated in place

        Returns
        -------
        float
            Score contribution
        """
        raise NotImplementedError("add() needs to be implemented")

    def score(self, observed, values):
        """Objective value for given observed and predicted values"""
        raise NotImplementedError("score() needs to be implemented")

    def log_likelihood_ratio(self, score):
        """Log-likelihood ratio corresponding to a score

        Returns
        -------
        float or None
            `None` if the objective is not a likelihood.
        """
        return None


class LeastSquares(Objective):
    """Least squares objective"""
    name = "lsq"

    def add(self, observed, value, gradient, alpha, beta):
        dy = observed - value
        for i in range(len(gradient)):
            w = gradient[i]
            for j in range(i + 1):
                alpha[i, j] += w * gradient[j]
            beta[i] += w * dy
        return dy * dy

    def score(self, observed, values):
        return float(np.sum((observed - values)**2))


class MaximumLikelihood(Objective):
    """Poisson maximum likelihood objective

    Observations must not be negative. :py:meth:`prepare` sets negative
    values to 0.
    """
    name = "mle"

    def prepare(self, data, variances=None):
        y = np.array(data, dtype=float).ravel()
        if not np.all(np.isfinite(y)):
            raise ValueError("Data contains non-finite values.")
        np.clip(y, 0., None, out=y)
        if variances is not None:
            y += variances
        return y

    def add(self, observed, value, gradient, alpha, beta):
        if not value > 0.:
            return math.inf if observed > 0. else 0.
        if observed == 0.:
            for i in range(len(gradient)):
                beta[i] -= gradient[i]
            return value
        xf2 = observed / value / value
        e = 1. - observed / value
        for i in range(len(gradient)):
            w = gradient[i] * xf2
            for j in range(i + 1):
                alpha[i, j] += w * gradient[j]
            beta[i] -= e * gradient[i]
        return value - observed - observed * np.log(value / observed)

    def score(self, observed, values):
        observed = np.asarray(observed, dtype=float)
        values = np.asarray(values, dtype=float)
        pos = values > 0
        if np.any(observed[~pos] > 0):
            return math.inf
        f = values[pos]
        x = observed[pos]
        nz = x > 0
        return float(np.sum(f[~nz]) +
                     np.sum(f[nz] - x[nz] - x[nz] * np.log(f[nz] / x[nz])))

    def log_likelihood_ratio(self, score):
        return 2 * score


def q_value(llr, dof):
    """Goodness of fit from the log-likelihood ratio

    The log-likelihood ratio is asymptotically :math:`\\chi^2` distributed.
    The q-value is the probability of obtaining a value at least as large by
    chance.

    Parameters
    ----------
    llr : float
        Log-likelihood ratio
    dof : int
        Degrees of freedom, i.e., number of samples minus number of fitted
        parameters

    Returns
    -------
    float
        q-value, between 0 and 1
    """
    if llr <= 0:
        return 1.
    if dof < 1:
        return 0.
    return float(stats.chi2.sf(llr, dof))


_objectives = {"lsq": LeastSquares, "least_squares": LeastSquares,
               "mle": MaximumLikelihood, "maximum_likelihood": MaximumLikelihood}


def get_objective(objective):
    """Get an objective instance

    Parameters
    ----------
    objective : str or Objective
        Instance or one of "lsq", "least_squares", "mle", and
        "maximum_likelihood".

    Returns
    -------
    Objective
    """
    if isinstance(objective, Objective):
        return objective
    try:
        return _objectives[objective]()
    except (KeyError, TypeError):
        raise ValueError(f"Unknown objective: {objective}")
