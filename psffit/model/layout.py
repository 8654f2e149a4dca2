# SPDX-FileCopyrightText: 2020 Lukas Schrangl <lukas.schrangl@tuwien.ac.at>
#
# SPDX-License-Identifier: BSD-3-Clause

"""Layout of the parameter vector and model capabilities

The parameter vector of a model with `n` peaks has ``1 + 7 * n`` entries. The
first one is the background, followed by one block per peak. Each block holds
the parameters listed in :py:data:`peak_params` in that order.
"""
import collections
import enum

import numpy as np


background = 0
"""Index of the background in the parameter vector"""

peak_params = ["signal", "x", "y", "angle", "sx", "sy", "z"]
"""Names of the parameters of a single peak, in the order of the block"""

params_per_peak = len(peak_params)

PeakNums = collections.namedtuple("PeakNums", peak_params)
peak_nums = PeakNums(**{k: v for v, k in enumerate(peak_params)})
"""Offsets of the peak parameters within a peak's block"""

peak_defaults = dict(signal=0., x=0., y=0., angle=0., sx=1., sy=1., z=0.)
"""Values used by :py:func:`make_params` for parameters not given"""

default_clamp = dict(background=100., signal=1000., x=1., y=1.,
                     angle=np.pi / 4, sx=0.3, sy=0.3, z=0.1)
"""Default clamp values for each kind of parameter"""


class Capability(enum.IntFlag):
    """Which parts of a model are evaluated, i.e., have a gradient"""
    BACKGROUND = 1
    SIGNAL = 2
    POSITION = 4
    ANGLE = 8
    WIDTH_X = 16
    WIDTH_Y = 32
    DEPTH = 64


_fixed = Capability.BACKGROUND | Capability.SIGNAL | Capability.POSITION

variants = dict(
    fixed=_fixed,
    circular=_fixed | Capability.WIDTH_X,
    free_circular=_fixed | Capability.WIDTH_X | Capability.WIDTH_Y,
    elliptical=(_fixed | Capability.WIDTH_X | Capability.WIDTH_Y |
                Capability.ANGLE),
    astigmatism=_fixed | Capability.DEPTH,
    spline=_fixed,
    spline_3d=_fixed | Capability.DEPTH)
"""Named model variants"""

# Parameters of a peak which have a gradient if the capability is present
_slot_capabilities = collections.OrderedDict(
    signal=Capability.SIGNAL,
    x=Capability.POSITION,
    y=Capability.POSITION,
    angle=Capability.ANGLE,
    sx=Capability.WIDTH_X,
    sy=Capability.WIDTH_Y,
    z=Capability.DEPTH)


def get_capabilities(caps):
    """Turn a variant name or an int into :py:class:`Capability`

    Parameters
    ----------
    caps : str or int
        Either a key of :py:data:`variants` or a combination of
        :py:class:`Capability` flags.

    Returns
    -------
    Capability
    """
    if isinstance(caps, str):
        try:
            return variants[caps]
        except KeyError:
            raise ValueError(f"Unknown model variant: {caps}")
    return Capability(caps)


def check_capabilities(caps, allowed=None):
    """Ensure that capabilities describe a consistent model

    Parameters
    ----------
    caps : Capability
        Capabilities to check
    allowed : Capability or None, optional
        Capabilities supported by the model. If `None`, allow all.

    Raises
    ------
    ValueError
        The combination is not possible.
    """
    C = Capability
    if allowed is not None and caps & ~allowed:
        raise ValueError(f"Unsupported capabilities: {caps & ~allowed!r}")
    if not caps:
        raise ValueError("Model has no parameters to fit.")
    if caps & C.WIDTH_Y and not caps & C.WIDTH_X:
        raise ValueError("Fitting the y width requires fitting the x width.")
    if caps & C.ANGLE and not caps & C.WIDTH_Y:
        raise ValueError("Fitting the angle requires independent widths.")
    if caps & C.DEPTH and caps & (C.WIDTH_X | C.WIDTH_Y | C.ANGLE):
        raise ValueError("Widths are determined by the z position when "
                         "fitting the depth.")


def num_params(n_peaks):
    """Length of the parameter vector for `n_peaks` peaks"""
    return 1 + params_per_peak * n_peaks


def param_index(peak, name):
    """Index of a peak parameter in the full vector

    Parameters
    ----------
    peak : int
        Peak number
    name : str
        One of :py:data:`peak_params`

    Returns
    -------
    int
    """
    return 1 + peak * params_per_peak + getattr(peak_nums, name)


def active_slots(caps):
    """Names of the peak parameters that have a gradient

    Parameters
    ----------
    caps : Capability

    Returns
    -------
    list of str
        In parameter vector order
    """
    return [n for n, c in _slot_capabilities.items() if caps & c]


def gradient_indices(caps, n_peaks):
    """Indices of the parameters with a gradient

    This is the mapping from gradient component to parameter vector index.

    Parameters
    ----------
    caps : Capability
    n_peaks : int

    Returns
    -------
    numpy.ndarray
        Ascending indices
    """
    idx = [background] if caps & Capability.BACKGROUND else []
    for p in range(n_peaks):
        idx.extend(param_index(p, n) for n in active_slots(caps))
    return np.array(idx, dtype=int)


def slot_kinds(caps, n_peaks):
    """Kind of parameter ("background" or a peak parameter name) per gradient

    Parameters
    ----------
    caps : Capability
    n_peaks : int

    Returns
    -------
    list of str
    """
    ret = ["background"] if caps & Capability.BACKGROUND else []
    return ret + active_slots(caps) * n_peaks


def param_names(n_peaks):
    """Names for all entries of the parameter vector

    Parameters
    ----------
    n_peaks : int

    Returns
    -------
    list of str
        ``["bg", "signal_0", "x_0", …]``
    """
    return ["bg"] + [f"{n}_{p}" for p in range(n_peaks) for n in peak_params]


def make_params(bg=0., peaks=()):
    """Create a parameter vector

    Parameters
    ----------
    bg : float, optional
        Background value
    peaks : list of dict, optional
        One dict per peak, mapping peak parameter names to values. Missing
        entries are taken from :py:data:`peak_defaults`.

    Returns
    -------
    numpy.ndarray

    Examples
    --------
    >>> make_params(10., [dict(signal=1000, x=4.5, y=5.2, sx=1.3)])
    array([  10. , 1000. ,    4.5,    5.2,    0. ,    1.3,    1. ,    0. ])
    """
    ret = np.empty(num_params(len(peaks)))
    ret[background] = bg
    for i, p in enumerate(peaks):
        unknown = set(p) - set(peak_params)
        if unknown:
            raise ValueError(f"Unknown peak parameters: {sorted(unknown)}")
        for n in peak_params:
            ret[param_index(i, n)] = p.get(n, peak_defaults[n])
    return ret
