# SPDX-FileCopyrightText: 2020 Lukas Schrangl <lukas.schrangl@tuwien.ac.at>
#
# SPDX-License-Identifier: BSD-3-Clause

"""Restricting parameter updates

:py:class:`ParameterBounds` keeps parameters within hard limits, while
:py:class:`ParameterClamp` limits the size of a single update step. When both
are used, the step is clamped first and the result is clipped to the bounds.
"""
import numpy as np

from ..model import layout


class ParameterBounds:
    """Lower and upper limits for each parameter

    Attributes
    ----------
    lower, upper : numpy.ndarray
        Limits. Unconstrained parameters have infinite limits.
    """
    def __init__(self, lower=None, upper=None, n_params=None):
        """Parameters
        ----------
        lower, upper : array-like or None, optional
            Limits for each parameter. `None` (or NaN entries) means
            unconstrained.
        n_params : int or None, optional
            Expected number of parameters. Required if both `lower` and
            `upper` are `None`.
        """
        if n_params is None:
            if lower is not None:
                n_params = len(lower)
            elif upper is not None:
                n_params = len(upper)
            else:
                raise ValueError("Cannot determine number of parameters.")
        self.lower = self._limits(lower, n_params, -np.inf)
        self.upper = self._limits(upper, n_params, np.inf)
        if np.any(self.lower > self.upper):
            raise ValueError("Lower bounds must not be greater than upper "
                             "bounds.")

    @staticmethod
    def _limits(lim, n, default):
        if lim is None:
            return np.full(n, default)
        ret = np.array(lim, dtype=float)
        if ret.shape != (n,):
            raise ValueError(f"Expected {n} bounds, got {ret.shape}.")
        ret[np.isnan(ret)] = default
        return ret

    @property
    def n_params(self):
        return len(self.lower)

    def clip(self, params):
        """Restrict parameters to the bounds

        Parameters
        ----------
        params : numpy.ndarray
            Parameter vector

        Returns
        -------
        numpy.ndarray
            Clipped copy
        """
        return np.clip(params, self.lower, self.upper)

    def apply_bounds(self, current, step, out=None):
        """Compute the next parameters from current ones and a step

        Parameters
        ----------
        current : numpy.ndarray
            Current parameter vector
        step : numpy.ndarray
            Update for each parameter
        out : numpy.ndarray or None, optional
            Write result to this array

        Returns
        -------
        numpy.ndarray
            ``current + step``, clipped to the bounds
        """
        out = np.add(current, step, out=out)
        return np.clip(out, self.lower, self.upper, out=out)


class ParameterClamp:
    r"""Limit the size of parameter update steps

    A step :math:`\delta` is transformed into
    :math:`\frac{\delta}{1 + |\delta| / c}`, where :math:`c` is the clamp
    value. Thus small steps are hardly changed, while large ones are limited
    to :math:`c`.

    If `dynamic` is `True`, the clamp value of a parameter is halved whenever
    its step has the opposite sign than the last accepted one. This damps
    oscillations.
    """
    def __init__(self, clamp, dynamic=False):
        """Parameters
        ----------
        clamp : array-like
            Clamp values for the parameters that are updated. Non-positive or
            infinite values disable clamping for the corresponding parameter.
        dynamic : bool, optional
            Whether to use dynamic clamping. Defaults to `False`.
        """
        self.initial = np.array(clamp, dtype=float)
        if self.initial.ndim != 1:
            raise ValueError("`clamp` has to be one-dimensional.")
        self.dynamic = dynamic
        self.reset()

    def reset(self):
        """Restore initial clamp values and forget previous steps"""
        self.clamp = self.initial.copy()
        self.sign = np.zeros(len(self.initial), dtype=int)

    def _effective(self, step):
        if not self.dynamic:
            return self.clamp
        return np.where(self.sign * step < 0, 0.5 * self.clamp, self.clamp)

    def apply(self, step):
        """Clamp a step

        This does not change the state of dynamic clamping, see
        :py:meth:`commit`.

        Parameters
        ----------
        step : numpy.ndarray
            Update step

        Returns
        -------
        numpy.ndarray
            Clamped step
        """
        step = np.asarray(step, dtype=float)
        if step.shape != self.clamp.shape:
            raise ValueError(f"Expected step of length {len(self.clamp)}, "
                             f"got {step.shape}.")
        c = self._effective(step)
        use = (c > 0) & np.isfinite(c)
        ret = step.copy()
        ret[use] = step[use] / (1 + np.abs(step[use]) / c[use])
        return ret

    def commit(self, step):
        """Record an accepted step for dynamic clamping

        Parameters
        ----------
        step : numpy.ndarray
            Update step (before clamping) which was accepted
        """
        if not self.dynamic:
            return
        self.clamp = self._effective(step)
        self.sign = np.sign(step).astype(int)

    @classmethod
    def for_model(cls, model, dynamic=False, **overrides):
        """Create clamp with default values for a model's parameters

        Parameters
        ----------
        model : Model
            Model whose gradient parameters will be clamped
        dynamic : bool, optional
            Whether to use dynamic clamping. Defaults to `False`.
        **overrides
            Replace default values from :py:data:`layout.default_clamp`, e.g.,
            ``signal=500.``

        Returns
        -------
        ParameterClamp
        """
        values = dict(layout.default_clamp, **overrides)
        kinds = layout.slot_kinds(model.capabilities, model.n_peaks)
        return cls([values[k] for k in kinds], dynamic)
