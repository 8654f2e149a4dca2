# SPDX-FileCopyrightText: 2020 Lukas Schrangl <lukas.schrangl@tuwien.ac.at>
#
# SPDX-License-Identifier: BSD-3-Clause

"""PSF models

Models predict pixel values of a fitting window from a parameter vector and
supply analytic derivatives w.r.t. the fitted parameters.

- :py:class:`GaussianModel`: fixed width, circular, free circular,
  elliptical, and astigmatic (z) Gaussians
- :py:class:`SplineModel`: interpolated experimental PSF
- :py:class:`OffsetModel`: adds per-pixel offsets (e.g., read noise
  variances) to another model
"""
from .layout import (Capability, variants, make_params, param_index,  # noqa
                     param_names)
from .base import Model, OffsetModel  # noqa: F401
from .gaussian import GaussianModel  # noqa: F401
from .spline import SplineModel  # noqa: F401
from . import astigmatism  # noqa: F401
