# SPDX-FileCopyrightText: 2020 Lukas Schrangl <lukas.schrangl@tuwien.ac.at>
#
# SPDX-License-Identifier: BSD-3-Clause

"""Levenberg-Marquardt iteration

Each iteration solves

.. math:: (\\alpha + \\lambda \\operatorname{diag}(\\alpha)) \\delta = \\beta

for the step :math:`\\delta`, where :math:`\\alpha` is the curvature matrix
and :math:`\\beta` the gradient vector of the objective at the current
parameters. The step is clamped, added to the parameters, and clipped to the
bounds. If the objective's score at the resulting candidate is strictly lower,
the candidate is accepted and :math:`\\lambda` is decreased. Otherwise,
:math:`\\lambda` is increased and a new step is computed from the same
point.
"""
import enum
import logging

import numpy as np

from ..exceptions import FitError
from ..model import layout
from ..model.base import OffsetModel
from .accumulator import create_accumulator
from .convergence import ConvergenceChecker, get_tolerance
from .linalg import solve_damped
from .objective import get_objective


_logger = logging.getLogger(__name__)


class FitStatus(enum.IntEnum):
    """Terminal state of a fit"""
    CONVERGED = 0
    MAX_ITERATIONS = 1
    SINGULAR_MATRIX = 2
    INVALID_GRADIENTS = 3
    NO_IMPROVEMENT = 4

    @property
    def failed(self):
        """Whether the status is a failure"""
        return self >= FitStatus.SINGULAR_MATRIX


class FitState:
    """Progress of a fit

    Once :py:attr:`status` has been set, the state cannot be changed anymore.

    Attributes
    ----------
    params : numpy.ndarray
        Best parameters so far
    score : float
        Objective value at :py:attr:`params`
    iterations : int
        Number of accepted steps
    evaluations : int
        Number of model evaluations
    lam : float
        Current damping factor
    status : FitStatus or None
        Terminal status, `None` while the fit is running
    scores : list of float
        Score after each accepted step, starting with the initial score
    lambdas : list of float
        Damping factor after each change, starting with the initial value
    """
    def __init__(self, params, score, lam):
        self.params = params
        self.score = score
        self.iterations = 0
        self.evaluations = 1
        self.lam = lam
        self.scores = [score]
        self.lambdas = [lam]
        self.status = None

    def __setattr__(self, name, value):
        if getattr(self, "status", None) is not None:
            raise AttributeError("Fit has terminated.")
        super().__setattr__(name, value)

    @property
    def terminated(self):
        return self.status is not None

    def terminate(self, status):
        self.status = status


class StepSolver:
    """Fit a model to data using the Levenberg-Marquardt algorithm

    A solver instance holds buffers which are reused between fits. It must
    not be used by more than one thread at a time.
    """
    def __init__(self, model, objective, data, bounds=None, clamp=None,
                 tolerance=None, variances=None, initial_lambda=0.01,
                 lambda_factor=10., max_retries=15):
        """Parameters
        ----------
        model : Model
            Model to fit
        objective : str or Objective
            Objective to minimize, see :py:func:`get_objective`
        data : array-like
            Pixel data. Flattened to match the model samples.
        bounds : ParameterBounds or None, optional
            Bounds for the full parameter vector
        clamp : ParameterClamp or None, optional
            Clamping of the fitted parameters
        tolerance : ToleranceConfig or dict or None, optional
            Convergence criteria, see :py:func:`get_tolerance`
        variances : float or array-like or None, optional
            Per-pixel read noise variances, which are added to both data and
            model
        initial_lambda : float, optional
            Initial damping factor. Defaults to 0.01.
        lambda_factor : float, optional
            Factor by which to change the damping factor. Defaults to 10.
        max_retries : int, optional
            Maximum number of consecutive increases of the damping factor
            before giving up. Defaults to 15.
        """
        self.objective = get_objective(objective)
        self.observed = self.objective.prepare(data, variances)
        if len(self.observed) != model.size:
            raise ValueError(f"Model has {model.size} samples, but data has "
                             f"{len(self.observed)}.")
        if variances is not None:
            model = OffsetModel(model, variances)
        self.model = model

        if bounds is not None and bounds.n_params != model.n_params:
            raise ValueError(f"Expected bounds for {model.n_params} "
                             f"parameters, got {bounds.n_params}.")
        if clamp is not None and len(clamp.initial) != model.n_gradients:
            raise ValueError(f"Expected clamp values for {model.n_gradients} "
                             f"parameters, got {len(clamp.initial)}.")
        if not initial_lambda > 0:
            raise ValueError("`initial_lambda` has to be positive.")
        if not lambda_factor > 1:
            raise ValueError("`lambda_factor` has to be greater than 1.")
        if max_retries < 0:
            raise ValueError("`max_retries` must not be negative.")
        self.bounds = bounds
        self.clamp = clamp
        self.initial_lambda = initial_lambda
        self.lambda_factor = lambda_factor
        self.max_retries = max_retries

        gi = model.gradient_indices
        kinds = layout.slot_kinds(model.capabilities, model.n_peaks)
        angles = [i for i, k in zip(gi, kinds) if k == "angle"]
        self.checker = ConvergenceChecker(get_tolerance(tolerance), gi,
                                          angles)

        n = model.n_gradients
        self._current = create_accumulator(self.objective, self.observed, n)
        self._candidate = create_accumulator(self.objective, self.observed,
                                             n)
        self._delta = np.empty(n)
        self.state = None

    @property
    def curvature(self):
        """Curvature matrix at the current parameters"""
        return self._current.alpha

    @property
    def gradient(self):
        """Gradient vector at the current parameters"""
        return self._current.beta

    def _evaluate(self, params, acc):
        self.model.initialise(params)
        values, jac = self.model.gradient1()
        acc.fold_arrays(values, jac)
        return bool(np.all(np.isfinite(values)) and np.all(np.isfinite(jac)))

    def start(self, params):
        """Initialize a fit

        Parameters
        ----------
        params : array-like
            Initial parameters. If outside the bounds, they are clipped.

        Returns
        -------
        FitState
            New state
        """
        params = np.array(params, dtype=float)
        if params.shape != (self.model.n_params,):
            raise ValueError(f"Expected {self.model.n_params} parameters, "
                             f"got {params.shape}.")
        if self.bounds is not None:
            clipped = self.bounds.clip(params)
            if not np.array_equal(clipped, params):
                _logger.debug("Initial parameters clipped to bounds.")
            params = clipped
        if self.clamp is not None:
            self.clamp.reset()

        valid = self._evaluate(params, self._current)
        self.state = FitState(params, self._current.score,
                              self.initial_lambda)
        if not valid:
            _logger.info("Invalid gradients at initial parameters.")
            self.state.terminate(FitStatus.INVALID_GRADIENTS)
        return self.state

    def _change_lambda(self, up):
        st = self.state
        if up:
            st.lam *= self.lambda_factor
        else:
            st.lam /= self.lambda_factor
        st.lambdas.append(st.lam)

    def _solve(self):
        st = self.state
        retries = 0
        while not solve_damped(self._current.alpha, self._current.beta,
                               st.lam, self._delta):
            retries += 1
            self._change_lambda(True)
            if retries > self.max_retries:
                raise FitError(FitStatus.SINGULAR_MATRIX, st.params)

    def _step(self):
        st = self.state
        gi = self.model.gradient_indices
        rejected = 0
        while True:
            self._solve()
            step = np.zeros(self.model.n_params)
            if self.clamp is not None:
                step[gi] = self.clamp.apply(self._delta)
            else:
                step[gi] = self._delta
            if self.bounds is not None:
                candidate = self.bounds.apply_bounds(st.params, step)
            else:
                candidate = st.params + step

            valid = self._evaluate(candidate, self._candidate)
            st.evaluations += 1
            if not valid:
                raise FitError(FitStatus.INVALID_GRADIENTS, st.params)

            score = self._candidate.score
            if score < st.score:
                break

            _logger.debug("Rejected step: score %g -> %g, lambda %g",
                          st.score, score, st.lam)
            if (self.checker.tolerance.check_score and
                    self.checker.score_within_absolute(st.score, score)):
                # Score cannot be improved beyond numerical noise
                st.terminate(FitStatus.CONVERGED)
                return
            rejected += 1
            self._change_lambda(True)
            if rejected > self.max_retries:
                raise FitError(FitStatus.NO_IMPROVEMENT, st.params)

        _logger.debug("Iteration %d: score %g -> %g, lambda %g",
                      st.iterations + 1, st.score, score, st.lam)
        prev_score, prev_params = st.score, st.params
        st.params = candidate
        st.score = score
        st.scores.append(score)
        st.iterations += 1
        self._current, self._candidate = self._candidate, self._current
        self._change_lambda(False)
        if self.clamp is not None:
            self.clamp.commit(self._delta)

        if self.checker.converged(prev_score, prev_params, score, candidate):
            st.terminate(FitStatus.CONVERGED)
        elif self.checker.max_iterations_reached(st.iterations):
            st.terminate(FitStatus.MAX_ITERATIONS)

    def iterate(self):
        """Do one iteration

        This computes steps until one is accepted or the fit terminates.

        Returns
        -------
        bool
            `True` if the fit has terminated.
        """
        st = self.state
        if st is None:
            raise RuntimeError("Call start() first.")
        if st.terminated:
            return True
        try:
            self._step()
        except FitError as e:
            _logger.info("%s after %d iterations", e, st.iterations)
            st.terminate(e.status)
        return st.terminated

    def fit(self, params):
        """Run a fit until it terminates

        Parameters
        ----------
        params : array-like
            Initial parameters

        Returns
        -------
        FitState
            Final state
        """
        self.start(params)
        while not self.iterate():
            pass
        return self.state
