# SPDX-FileCopyrightText: 2020 Lukas Schrangl <lukas.schrangl@tuwien.ac.at>
#
# SPDX-License-Identifier: BSD-3-Clause

"""Simulation of image windows for testing and benchmarking fits"""
import numpy as np

from .model import layout
from .model.gaussian import GaussianModel


def simulate(model, params, noise=None, rng=None):
    """Simulate an image window from a model

    Parameters
    ----------
    model : Model
        Model to evaluate. It is initialised with `params`.
    params : array-like
        Full parameter vector
    noise : {None, "poisson"}, optional
        If `None`, return the noise-free model values. If "poisson", draw
        each pixel from a Poisson distribution with the model value as mean.
    rng : numpy.random.Generator or int or None, optional
        Random number generator or seed. Only used for noisy images.

    Returns
    -------
    numpy.ndarray
        Simulated window, shape ``model.shape``
    """
    model.initialise(params)
    img = model.values().reshape(model.shape)
    if noise is None:
        return img
    if noise == "poisson":
        rng = np.random.default_rng(rng)
        return rng.poisson(np.clip(img, 0, None)).astype(float)
    raise ValueError(f"Unknown noise model: {noise}")


def simulate_gauss(shape, bg, peaks, noise=None, rng=None):
    """Simulate a window containing elliptical Gaussian peaks

    This is a shortcut for :py:func:`simulate` using a
    :py:class:`GaussianModel`.

    Parameters
    ----------
    shape : tuple of int
        Window shape, i.e., ``(height, width)``
    bg : float
        Background
    peaks : list of dict
        Peak parameters, see :py:func:`layout.make_params`
    noise : {None, "poisson"}, optional
        Noise model
    rng : numpy.random.Generator or int or None, optional
        Random number generator or seed

    Returns
    -------
    numpy.ndarray
        Simulated window
    """
    model = GaussianModel(shape, len(peaks), "elliptical")
    return simulate(model, layout.make_params(bg, peaks), noise, rng)
