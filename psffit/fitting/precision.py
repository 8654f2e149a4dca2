# SPDX-FileCopyrightText: 2020 Lukas Schrangl <lukas.schrangl@tuwien.ac.at>
#
# SPDX-License-Identifier: BSD-3-Clause

"""Localization precision from the Cramér-Rao lower bound

For Poisson distributed data, the Fisher information matrix is

.. math:: I_{ij} = \\sum_k \\frac{1}{f_k}
    \\frac{\\partial f_k}{\\partial a_i} \\frac{\\partial f_k}{\\partial a_j}.

This is the maximum likelihood curvature matrix evaluated with the model
values as observations. The diagonal of its inverse gives lower bounds for
the variances of unbiased estimators of the parameters.
"""
import numpy as np

from ..exceptions import PrecisionUnavailable
from ..model.base import OffsetModel
from .accumulator import create_accumulator
from .linalg import invert_spd
from .objective import MaximumLikelihood


class PrecisionEstimator:
    """Compute Cramér-Rao lower bounds for fitted parameters"""
    def __init__(self, model, variances=None):
        """Parameters
        ----------
        model : Model
            Fitted model. It will be re-initialised.
        variances : float or array-like or None, optional
            Per-pixel read noise variances added to the model values
        """
        if variances is not None:
            model = OffsetModel(model, variances)
        self.model = model

    def fisher_information(self, params):
        """Fisher information matrix

        Parameters
        ----------
        params : array-like
            Full parameter vector

        Returns
        -------
        numpy.ndarray, shape(n_gradients, n_gradients)
        """
        self.model.initialise(params)
        values, jac = self.model.gradient1()
        if not (np.all(np.isfinite(values)) and np.all(np.isfinite(jac))):
            raise PrecisionUnavailable("Model is not finite.")
        obj = MaximumLikelihood()
        acc = create_accumulator(obj, values, self.model.n_gradients)
        return acc.fold_arrays(values, jac).alpha.copy()

    def variances(self, params):
        """Variance lower bounds for the fitted parameters

        Parameters
        ----------
        params : array-like
            Full parameter vector

        Returns
        -------
        numpy.ndarray
            One entry per gradient component, see
            :py:attr:`Model.gradient_indices`

        Raises
        ------
        PrecisionUnavailable
            Fisher information matrix is not invertible.
        """
        var = np.diagonal(invert_spd(self.fisher_information(params))).copy()
        if not np.all(var > 0):
            raise PrecisionUnavailable("Non-positive variance.")
        return var
