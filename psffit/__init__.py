# SPDX-FileCopyrightText: 2020 Lukas Schrangl <lukas.schrangl@tuwien.ac.at>
#
# SPDX-License-Identifier: BSD-3-Clause

"""Fitting of point spread function models for single molecule localization
=========================================================================

Given a small image window around a fluorescent feature and initial guesses,
:py:func:`fit` estimates background, intensity, position, and (depending on
the model) width, rotation, or z position of one or more peaks using the
Levenberg-Marquardt algorithm. Least squares and Poisson maximum likelihood
objectives are supported. Additionally, Cramér-Rao lower bounds for the
parameters' variances are computed.

:py:func:`batch` fits many windows in parallel and returns a
:py:class:`pandas.DataFrame`.


Examples
--------

Simulate a window containing a single circular Gaussian and fit it:

>>> model = psffit.GaussianModel((7, 7), capabilities="circular")
>>> truth = psffit.make_params(5., [dict(signal=500., x=3.5, y=3.5, sx=1.)])
>>> img = psffit.sim.simulate(model, truth, noise="poisson", rng=1)
>>> guess = psffit.make_params(0., [dict(signal=400., x=3., y=3., sx=1.2)])
>>> res = psffit.fit(model, "mle", guess, img)
>>> res.status
<FitStatus.CONVERGED: 0>


Programming reference
---------------------

.. autofunction:: fit
.. autofunction:: batch
.. autoclass:: FitResult
    :members:
"""
from . import config, exceptions, fitting, model, sim  # noqa: F401
from .api import fit, batch, FitResult  # noqa: F401
from .exceptions import FitError, PrecisionUnavailable  # noqa: F401
from .fitting import (FitStatus, ParameterBounds, ParameterClamp,  # noqa: F401
                      ToleranceConfig, LeastSquares, MaximumLikelihood)
from .model import (GaussianModel, SplineModel, Capability,  # noqa: F401
                    make_params)
