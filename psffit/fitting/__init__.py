# SPDX-FileCopyrightText: 2020 Lukas Schrangl <lukas.schrangl@tuwien.ac.at>
#
# SPDX-License-Identifier: BSD-3-Clause

"""Levenberg-Marquardt fitting machinery

- :py:mod:`objective`: least squares and Poisson maximum likelihood
- :py:mod:`accumulator`: summation of curvature matrix and gradient vector
- :py:mod:`bounds`: parameter bounds and step clamping
- :py:mod:`convergence`: convergence criteria
- :py:mod:`solver`: the iteration itself
- :py:mod:`precision`: Cramér-Rao lower bounds
"""
from .objective import (Objective, LeastSquares,  # noqa: F401
                        MaximumLikelihood, get_objective, q_value)
from .accumulator import Accumulator, create_accumulator  # noqa: F401
from .bounds import ParameterBounds, ParameterClamp  # noqa: F401
from .convergence import (ToleranceConfig, ConvergenceChecker,  # noqa: F401
                          get_tolerance)
from .solver import FitStatus, FitState, StepSolver  # noqa: F401
from .precision import PrecisionEstimator  # noqa: F401
