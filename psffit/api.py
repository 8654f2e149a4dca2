# SPDX-FileCopyrightText: 2020 Lukas Schrangl <lukas.schrangl@tuwien.ac.at>
#
# SPDX-License-Identifier: BSD-3-Clause

"""API for fitting PSF models to image windows"""
import collections
import copy
import logging
import multiprocessing
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pandas as pd

from . import config
from .exceptions import PrecisionUnavailable
from .fitting.bounds import ParameterBounds
from .fitting.objective import q_value
from .fitting.precision import PrecisionEstimator
from .fitting.solver import FitStatus, StepSolver
from .model import layout
from .model.layout import Capability


_logger = logging.getLogger(__name__)

num_cpus = multiprocessing.cpu_count()


_FitResult = collections.namedtuple(
    "FitResult", ["status", "params", "iterations", "evaluations", "score",
                  "log_likelihood_ratio", "q_value", "variances"])
_FitResult.__new__.__doc__ = ""


class FitResult(_FitResult):
    """Result of a fit

    Attributes
    ----------
    status : FitStatus
        Why the fit terminated
    params : numpy.ndarray
        Best parameters found
    iterations : int
        Number of accepted steps
    evaluations : int
        Number of model evaluations
    score : float
        Objective value at `params`
    log_likelihood_ratio : float or None
        Only for the maximum likelihood objective
    q_value : float or None
        Goodness of fit derived from `log_likelihood_ratio`
    variances : numpy.ndarray or None
        Cramér-Rao lower bounds for the variances of the fitted parameters
        (ordered as :py:attr:`Model.gradient_indices`). `None` if not
        computed or not available.
    """
    @property
    def converged(self):
        return self.status == FitStatus.CONVERGED

    @property
    def precision(self):
        """Square root of :py:attr:`variances`"""
        if self.variances is None:
            return None
        return np.sqrt(self.variances)


def _depth_bounds(model):
    lower = np.full(model.n_params, -np.inf)
    upper = np.full(model.n_params, np.inf)
    z_min, z_max = model.z_range
    for p in range(model.n_peaks):
        i = layout.param_index(p, "z")
        lower[i] = z_min
        upper[i] = z_max
    return ParameterBounds(lower, upper)


@config.use_defaults
def fit(model, objective, params, data, bounds=None, clamp=None,
        tolerance=None, variances=None, initial_lambda=None,
        lambda_factor=None, max_retries=None, precision=None):
    """Fit a PSF model to an image window

    Parameters
    ----------
    model : Model
        Model to fit. It is re-initialised during the fit and must not be used
        concurrently by other fits.
    objective : {"lsq", "mle"} or Objective
        Least squares or Poisson maximum likelihood
    params : array-like
        Initial parameters, see :py:mod:`psffit.model.layout`
    data : array-like
        Image window. Its shape has to match ``model.shape`` (or be the
        flattened equivalent).
    bounds : ParameterBounds or None, optional
        Limits for the parameters. If `None` and the model fits the z
        position, restrict it to the model's valid z range.
    clamp : ParameterClamp or None, optional
        Step size limitation for the fitted parameters, see
        :py:meth:`ParameterClamp.for_model`.
    tolerance : ToleranceConfig or dict or None, optional
        Convergence criteria. If `None`, use ``config.rc["tolerance"]``.
    variances : float or array-like or None, optional
        Per-pixel read noise variances, added to both data and model

    Returns
    -------
    FitResult
        Fit result. Fits failing due to the data (singular matrix, invalid
        gradients, no improvement) are reported via the status instead of an
        exception.

    Other parameters
    ----------------
    initial_lambda : float or None, optional
        Initial damping factor. If `None`, use ``config.rc``.
    lambda_factor : float or None, optional
        Factor by which the damping is changed. If `None`, use ``config.rc``.
    max_retries : int or None, optional
        Maximum number of consecutive damping increases. If `None`, use
        ``config.rc``.
    precision : bool or None, optional
        Whether to compute Cramér-Rao lower bounds. If `None`, use
        ``config.rc``.
    """
    if bounds is None and model.evaluates(Capability.DEPTH):
        bounds = _depth_bounds(model)

    solver = StepSolver(model, objective, data, bounds, clamp, tolerance,
                        variances, initial_lambda, lambda_factor,
                        max_retries)
    state = solver.fit(params)

    llr = solver.objective.log_likelihood_ratio(state.score)
    q = None
    if llr is not None:
        q = q_value(llr, model.size - model.n_gradients)

    var = None
    if precision and not state.status.failed:
        try:
            var = PrecisionEstimator(model, variances).variances(state.params)
        except PrecisionUnavailable as e:
            _logger.info("Precision not available: %s", e)

    return FitResult(state.status, state.params.copy(), state.iterations,
                     state.evaluations, state.score, llr, q, var)


@config.set_columns
def batch(windows, params, model, objective, num_threads=None, columns={},
          **kwargs):
    """Fit many image windows concurrently

    Each fit gets its own copy of `model` (and `clamp`, if given).

    Parameters
    ----------
    windows : iterable of array-like
        Image windows
    params : iterable of array-like
        Initial parameters for each window
    model : Model
        Model to fit. Copied for each window.
    objective : {"lsq", "mle"} or Objective
        Objective to minimize
    num_threads : int or None, optional
        Number of threads to use. If `None`, use the number of CPUs.
    **kwargs
        Passed to :py:func:`fit`

    Returns
    -------
    pandas.DataFrame
        One row per peak and window. Columns are the window and peak
        numbers, the fitted parameters (with names as in :py:attr:`columns`),
        variances of the parameters (column names with the "var_suffix"
        appended), status name, numbers of iterations and evaluations,
        score, log-likelihood ratio, and q-value.

    Other parameters
    ----------------
    columns : dict, optional
        Override default column names as defined in
        :py:attr:`config.columns`. Relevant names are `coords`, `mass`, `bg`,
        `angle`, `size`, `z`, `window`, `peak`, `status`, `iterations`,
        `evaluations`, `score`, `llr`, `q_value`, and `var_suffix`.
    """
    windows = list(windows)
    params = list(params)
    if not windows:
        raise ValueError("Empty `windows`")
    if len(params) != len(windows):
        raise ValueError("Need one set of initial parameters per window.")
    if num_threads is None:
        num_threads = num_cpus
    clamp = kwargs.pop("clamp", None)

    def func(args):
        w, p = args
        return fit(model.copy(), objective, p, w,
                   clamp=copy.deepcopy(clamp), **kwargs)

    with ThreadPoolExecutor(max_workers=num_threads) as e:
        results = list(e.map(func, zip(windows, params)))

    return _to_dataframe(results, model, columns)


def _to_dataframe(results, model, columns):
    names = dict(signal=columns["mass"], x=columns["coords"][0],
                 y=columns["coords"][1], angle=columns["angle"],
                 sx=columns["size"][0], sy=columns["size"][1],
                 z=columns["z"])
    suffix = columns["var_suffix"]
    param_cols = [columns["bg"]] + [names[n] for n in layout.peak_params]
    col_order = ([columns["window"], columns["peak"]] + param_cols +
                 [c + suffix for c in param_cols] +
                 [columns[c] for c in ("status", "iterations", "evaluations",
                                       "score", "llr", "q_value")])

    rows = []
    for w, r in enumerate(results):
        var = np.full(model.n_params, np.nan)
        if r.variances is not None:
            var[model.gradient_indices] = r.variances
        for p in range(model.n_peaks):
            idx = [layout.background] + [layout.param_index(p, n)
                                         for n in layout.peak_params]
            row = [w, p]
            row.extend(r.params[idx])
            row.extend(var[idx])
            row.extend([r.status.name, r.iterations, r.evaluations, r.score,
                        np.nan if r.log_likelihood_ratio is None
                        else r.log_likelihood_ratio,
                        np.nan if r.q_value is None else r.q_value])
            rows.append(row)
    return pd.DataFrame(rows, columns=col_order)
