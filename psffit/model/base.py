# SPDX-FileCopyrightText: 2020 Lukas Schrangl <lukas.schrangl@tuwien.ac.at>
#
# SPDX-License-Identifier: BSD-3-Clause

"""Common interface of all PSF models"""
import copy

import numpy as np

from . import layout


class Model:
    """Base class for PSF models

    A model predicts the pixel values of a rectangular window (the "samples")
    from a parameter vector (see :py:mod:`psffit.model.layout`). Sample ``i``
    corresponds to pixel ``(x, y) = (i % width, i // width)``.

    Before evaluation, :py:meth:`initialise` has to be called with the
    current parameters. This precomputes everything which does not depend on
    the sample position. Afterwards, samples can be evaluated individually
    (:py:meth:`value_at`, :py:meth:`value_and_gradient1_at`,
    :py:meth:`value_and_gradient2_at`), lazily one after another
    (:py:meth:`samples1`), or all at once (:py:meth:`values`,
    :py:meth:`gradient1`, :py:meth:`gradient2`).

    Gradients only contain the components listed in
    :py:attr:`gradient_indices`, in that order. Second derivatives are the
    diagonal of the Hessian only.

    Instances are stateful and must not be shared between fits running
    concurrently. Use :py:meth:`copy` to create independent instances.

    Subclasses need to implement :py:meth:`_initialise` and
    :py:meth:`_evaluate`.
    """
    def __init__(self, shape, n_peaks, capabilities):
        """Parameters
        ----------
        shape : tuple of int
            Window shape, i.e., ``(height, width)``
        n_peaks : int
            Number of peaks
        capabilities : Capability
            Which parameters have gradients
        """
        if len(shape) != 2 or min(shape) < 1:
            raise ValueError(f"Invalid window shape: {shape}")
        if n_peaks < 1:
            raise ValueError("There has to be at least one peak.")
        self.shape = tuple(int(s) for s in shape)
        self.n_peaks = int(n_peaks)
        self.capabilities = capabilities
        self.gradient_indices = layout.gradient_indices(capabilities,
                                                        self.n_peaks)
        """Indices of the parameters with a gradient"""

        y, x = np.indices(self.shape, dtype=float)
        self._x = x.ravel()
        self._y = y.ravel()
        self._params = None

    @property
    def size(self):
        """Number of samples"""
        return self._x.size

    @property
    def n_params(self):
        """Length of the parameter vector"""
        return layout.num_params(self.n_peaks)

    @property
    def n_gradients(self):
        """Number of gradient components"""
        return len(self.gradient_indices)

    @property
    def params(self):
        """Parameters passed to the last :py:meth:`initialise` call"""
        return self._params

    def evaluates(self, capability):
        """Whether parameters of some kind have a gradient

        Parameters
        ----------
        capability : Capability

        Returns
        -------
        bool
        """
        return bool(self.capabilities & capability)

    def initialise(self, params):
        """Prepare evaluation for a parameter vector

        Parameters
        ----------
        params : array-like
            Full parameter vector
        """
        params = np.array(params, dtype=float)
        if params.shape != (self.n_params,):
            raise ValueError(
                f"Expected {self.n_params} parameters, got {params.shape}.")
        self._params = params
        self._initialise(params)

    def _initialise(self, params):
        raise NotImplementedError("_initialise() needs to be implemented")

    def _evaluate(self, sel, order):
        """Evaluate the model for a subset of samples

        Parameters
        ----------
        sel : slice or numpy.ndarray
            Selects samples
        order : {0, 1, 2}
            Highest derivative order to compute

        Returns
        -------
        values : numpy.ndarray
            Model values
        d1, d2 : numpy.ndarray or None
            First and second derivatives, shape ``(n_samples, n_gradients)``.
            `None` if not requested by `order`.
        """
        raise NotImplementedError("_evaluate() needs to be implemented")

    def _run(self, sel, order):
        if self._params is None:
            raise RuntimeError("Model has not been initialised.")
        return self._evaluate(sel, order)

    def value_at(self, i):
        """Model value of sample `i`"""
        return self._run(slice(i, i + 1), 0)[0][0]

    def value_and_gradient1_at(self, i):
        """Model value and gradient of sample `i`

        Returns
        -------
        float
            Value
        numpy.ndarray
            First derivatives
        """
        v, d1, _ = self._run(slice(i, i + 1), 1)
        return v[0], d1[0]

    def value_and_gradient2_at(self, i):
        """Model value, gradient, and second derivatives of sample `i`

        Returns
        -------
        float
            Value
        numpy.ndarray
            First derivatives
        numpy.ndarray
            Second derivatives (Hessian diagonal)
        """
        v, d1, d2 = self._run(slice(i, i + 1), 2)
        return v[0], d1[0], d2[0]

    def values(self):
        """Model values of all samples"""
        return self._run(slice(None), 0)[0]

    def gradient1(self):
        """Values and gradients of all samples

        Returns
        -------
        numpy.ndarray
            Values
        numpy.ndarray, shape(size, n_gradients)
            First derivatives
        """
        return self._run(slice(None), 1)[:2]

    def gradient2(self):
        """Values, gradients, and second derivatives of all samples

        Returns
        -------
        numpy.ndarray
            Values
        numpy.ndarray, shape(size, n_gradients)
            First derivatives
        numpy.ndarray, shape(size, n_gradients)
            Second derivatives
        """
        return self._run(slice(None), 2)

    def samples1(self):
        """Iterate over ``(value, gradient)`` pairs of all samples

        Nothing is computed before iteration starts. Each call returns a new
        iterator, so the sequence can be traversed again after the model was
        re-initialised.
        """
        values, grad = self.gradient1()
        for i in range(self.size):
            yield values[i], grad[i]

    def copy(self):
        """Independent copy of this model"""
        return copy.deepcopy(self)


class OffsetModel(Model):
    """Add a fixed offset to each sample value of another model

    This is used to add per-pixel read noise variances to the predicted
    values (the same offset has to be added to the data). Gradients are not
    changed.
    """
    def __init__(self, model, offset):
        """Parameters
        ----------
        model : Model
            Wrapped model
        offset : float or array-like
            Offset for each sample
        """
        super().__init__(model.shape, model.n_peaks, model.capabilities)
        self.model = model
        self.offset = np.broadcast_to(np.asarray(offset, dtype=float),
                                      (model.size,))

    def _initialise(self, params):
        self.model.initialise(params)

    def _evaluate(self, sel, order):
        v, d1, d2 = self.model._evaluate(sel, order)
        return v + self.offset[sel], d1, d2
