# SPDX-FileCopyrightText: 2020 Lukas Schrangl <lukas.schrangl@tuwien.ac.at>
#
# SPDX-License-Identifier: BSD-3-Clause

r"""Two-dimensional Gaussian PSF models

Each peak is described by

.. math::
    f(x, y) = \frac{s}{2\pi\sigma_x\sigma_y}
    \exp\left(a \Delta x^2 + b \Delta x \Delta y + c \Delta y^2\right)

with :math:`\Delta x = x - x_0`, :math:`\Delta y = y - y_0`, the integrated
intensity :math:`s` and

.. math::
    a = -\frac{1}{2}\left(\frac{\cos^2\theta}{\sigma_x^2} +
    \frac{\sin^2\theta}{\sigma_y^2}\right), \quad
    b = -\frac{1}{4}\left(-\frac{\sin 2\theta}{\sigma_x^2} +
    \frac{\sin 2\theta}{\sigma_y^2}\right), \quad
    c = -\frac{1}{2}\left(\frac{\sin^2\theta}{\sigma_x^2} +
    \frac{\cos^2\theta}{\sigma_y^2}\right).

Alternatively, the Gaussian can be integrated over each pixel (for
non-rotated peaks only), giving

.. math::
    f(x, y) = s E_x E_y, \quad
    E_x = \frac{1}{2}\left(\operatorname{erf}\frac{\Delta x + 1/2}
    {\sqrt{2}\sigma_x} - \operatorname{erf}\frac{\Delta x - 1/2}
    {\sqrt{2}\sigma_x}\right)

and :math:`E_y` accordingly.
"""
import types

import numpy as np
from scipy.special import erf

from . import layout
from .base import Model
from .layout import Capability


def _peak_factors(signal, x0, y0, theta, sx, sy):
    """Precompute everything that does not depend on the sample position"""
    sx2 = sx * sx
    sy2 = sy * sy
    sx3 = sx2 * sx
    sy3 = sy2 * sy
    cos_t = np.cos(theta)
    sin_t = np.sin(theta)
    cos2 = cos_t * cos_t
    sin2 = sin_t * sin_t
    sincos = sin_t * cos_t
    sin_2t = np.sin(2 * theta)
    cos_2t = np.cos(2 * theta)
    norm = 1 / (2 * np.pi * sx * sy)

    return types.SimpleNamespace(
        signal=signal, x0=x0, y0=y0, sx=sx, sy=sy, norm=norm,
        height=signal * norm,
        # quadratic form
        aa=-0.5 * (cos2 / sx2 + sin2 / sy2),
        bb=-0.25 * (-sin_2t / sx2 + sin_2t / sy2),
        cc=-0.5 * (sin2 / sx2 + cos2 / sy2),
        # first derivatives w.r.t. the angle
        aa2=-(-sincos / sx2 + sincos / sy2),
        bb2=-0.5 * (-cos_2t / sx2 + cos_2t / sy2),
        cc2=-(sincos / sx2 - sincos / sy2),
        # second derivatives w.r.t. the angle
        aa3=-(-cos_2t / sx2 + cos_2t / sy2),
        bb3=-(sin_2t / sx2 - sin_2t / sy2),
        cc3=-(cos_2t / sx2 - cos_2t / sy2),
        # derivatives w.r.t. widths
        nx=-1 / sx, ax=cos2 / sx3, bx=-0.5 * sin_2t / sx3, cx=sin2 / sx3,
        ny=-1 / sy, ay=sin2 / sy3, by=0.5 * sin_2t / sy3, cy=cos2 / sy3,
        # chain rule factors for the z position, set by the model if needed
        dsx=0., dsy=0., d2sx=0., d2sy=0.)


def _sample_terms(f, x, y):
    dx = x - f.x0
    dy = y - f.y0
    dx2 = dx * dx
    dy2 = dy * dy
    dxy = dx * dy
    e = np.exp(f.aa * dx2 + f.bb * dxy + f.cc * dy2)
    return types.SimpleNamespace(dx=dx, dy=dy, dx2=dx2, dy2=dy2, dxy=dxy,
                                 e=e, value=f.height * e)


# Gradient builders. Each returns first and (if `second` is True) second
# derivatives of the peak w.r.t. one parameter.

def _grad_signal(f, t, second):
    return f.norm * t.e, (0. if second else None)


def _grad_x(f, t, second):
    g = -2 * f.aa * t.dx - f.bb * t.dy
    return t.value * g, (t.value * (g * g + 2 * f.aa) if second else None)


def _grad_y(f, t, second):
    g = -2 * f.cc * t.dy - f.bb * t.dx
    return t.value * g, (t.value * (g * g + 2 * f.cc) if second else None)


def _grad_angle(f, t, second):
    g = f.aa2 * t.dx2 + f.bb2 * t.dxy + f.cc2 * t.dy2
    if not second:
        return t.value * g, None
    h = f.aa3 * t.dx2 + f.bb3 * t.dxy + f.cc3 * t.dy2
    return t.value * g, t.value * (g * g + h)


def _width_x_terms(f, t):
    q = f.ax * t.dx2 + f.bx * t.dxy + f.cx * t.dy2
    return f.nx + q, 1 / f.sx**2 - 3 * q / f.sx


def _width_y_terms(f, t):
    q = f.ay * t.dx2 + f.by * t.dxy + f.cy * t.dy2
    return f.ny + q, 1 / f.sy**2 - 3 * q / f.sy


def _grad_sx(f, t, second):
    g, h = _width_x_terms(f, t)
    return t.value * g, (t.value * (g * g + h) if second else None)


def _grad_sy(f, t, second):
    g, h = _width_y_terms(f, t)
    return t.value * g, (t.value * (g * g + h) if second else None)


def _grad_width(f, t, second):
    """Common width for x and y"""
    gx, hx = _width_x_terms(f, t)
    gy, hy = _width_y_terms(f, t)
    g = gx + gy
    return t.value * g, (t.value * (g * g + hx + hy) if second else None)


def _grad_z(f, t, second):
    gx, hx = _width_x_terms(f, t)
    gy, hy = _width_y_terms(f, t)
    g = gx * f.dsx + gy * f.dsy
    if not second:
        return t.value * g, None
    h = (hx * f.dsx**2 + gx * f.d2sx + hy * f.dsy**2 + gy * f.d2sy)
    return t.value * g, t.value * (g * g + h)


def _pixel_integral(d, s):
    """Integral of a normalized 1D Gaussian over pixels

    Parameters
    ----------
    d : numpy.ndarray
        Distances of the pixel centers from the Gaussian's center
    s : float
        Width of the Gaussian

    Returns
    -------
    types.SimpleNamespace
        `e` is the integral; `dc`, `d2c` are its first and second derivatives
        w.r.t. the center; `ds`, `d2s` are the derivatives w.r.t. the width.
    """
    lo = d - 0.5
    hi = d + 0.5
    k = 1 / (np.sqrt(2) * s)
    g_lo = np.exp(-0.5 * (lo / s)**2) / (np.sqrt(2 * np.pi) * s)
    g_hi = np.exp(-0.5 * (hi / s)**2) / (np.sqrt(2 * np.pi) * s)
    m = lo * g_lo - hi * g_hi
    return types.SimpleNamespace(
        e=0.5 * (erf(hi * k) - erf(lo * k)),
        dc=g_lo - g_hi, d2c=m / s**2, ds=m / s,
        d2s=(lo**3 * g_lo - hi**3 * g_hi) / s**4 - 2 * m / s**2)


def _erf_sample_terms(f, x, y):
    ex = _pixel_integral(x - f.x0, f.sx)
    ey = _pixel_integral(y - f.y0, f.sy)
    return types.SimpleNamespace(ex=ex, ey=ey, value=f.signal * ex.e * ey.e)


# Gradient builders for pixel-integrated peaks

def _erf_grad_signal(f, t, second):
    return t.ex.e * t.ey.e, (0. if second else None)


def _erf_grad_x(f, t, second):
    s = f.signal * t.ey.e
    return s * t.ex.dc, (s * t.ex.d2c if second else None)


def _erf_grad_y(f, t, second):
    s = f.signal * t.ex.e
    return s * t.ey.dc, (s * t.ey.d2c if second else None)


def _erf_grad_sx(f, t, second):
    s = f.signal * t.ey.e
    return s * t.ex.ds, (s * t.ex.d2s if second else None)


def _erf_grad_sy(f, t, second):
    s = f.signal * t.ex.e
    return s * t.ey.ds, (s * t.ey.d2s if second else None)


def _erf_grad_width(f, t, second):
    ex, ey = t.ex, t.ey
    g = f.signal * (ex.ds * ey.e + ex.e * ey.ds)
    if not second:
        return g, None
    h = ex.d2s * ey.e + 2 * ex.ds * ey.ds + ex.e * ey.d2s
    return g, f.signal * h


def _erf_grad_z(f, t, second):
    ex, ey = t.ex, t.ey
    gx = ex.ds * f.dsx
    gy = ey.ds * f.dsy
    g = f.signal * (gx * ey.e + ex.e * gy)
    if not second:
        return g, None
    hx = ex.d2s * f.dsx**2 + ex.ds * f.d2sx
    hy = ey.d2s * f.dsy**2 + ey.ds * f.d2sy
    return g, f.signal * (hx * ey.e + 2 * gx * gy + ex.e * hy)


class GaussianModel(Model):
    """Sum of 2D Gaussian peaks on a constant background

    Depending on the capabilities, this is

    - ``"fixed"``: circular Gaussian with fixed width
    - ``"circular"``: circular Gaussian with fitted width (`sx`, `sy` is
      ignored)
    - ``"free_circular"``: independent widths along x and y
    - ``"elliptical"``: independent widths and rotation angle
    - ``"astigmatism"``: widths determined by the z position via a
      :py:class:`astigmatism.Parameters` calibration

    Any of these without :py:attr:`Capability.BACKGROUND` does not have a
    background gradient. The background value is still added.

    If `integrated` is `True`, the Gaussian is integrated over each pixel
    instead of being sampled at the pixel centers. This is not possible for
    rotated peaks.
    """
    _grad_funcs = dict(signal=_grad_signal, x=_grad_x, y=_grad_y,
                       angle=_grad_angle, sx=_grad_sx, sy=_grad_sy, z=_grad_z,
                       width=_grad_width)
    _erf_grad_funcs = dict(signal=_erf_grad_signal, x=_erf_grad_x,
                           y=_erf_grad_y, sx=_erf_grad_sx, sy=_erf_grad_sy,
                           z=_erf_grad_z, width=_erf_grad_width)

    def __init__(self, shape, n_peaks=1, capabilities="circular",
                 z_params=None, integrated=False):
        """Parameters
        ----------
        shape : tuple of int
            Window shape, i.e., ``(height, width)``
        n_peaks : int, optional
            Number of peaks. Defaults to 1.
        capabilities : str or Capability, optional
            Model variant. Either a key of :py:data:`layout.variants` or a
            combination of :py:class:`Capability` flags. Defaults to
            "circular".
        z_params : astigmatism.Parameters or None, optional
            z calibration. Required if the depth is fitted.
        integrated : bool, optional
            Whether to integrate the Gaussian over each pixel. Defaults to
            `False`.
        """
        caps = layout.get_capabilities(capabilities)
        layout.check_capabilities(caps)
        if caps & Capability.DEPTH and z_params is None:
            raise ValueError("Fitting the depth requires z calibration "
                             "parameters.")
        if integrated and caps & Capability.ANGLE:
            raise ValueError("Pixel-integrated Gaussians cannot be rotated.")
        super().__init__(shape, n_peaks, caps)
        self.z_params = z_params
        self.integrated = integrated

        if integrated:
            funcs = self._erf_grad_funcs
            self._sample_terms = _erf_sample_terms
        else:
            funcs = self._grad_funcs
            self._sample_terms = _sample_terms
        self._builders = []
        for name in layout.active_slots(caps):
            if name == "sx" and not caps & Capability.WIDTH_Y:
                name = "width"
            self._builders.append(funcs[name])
        self._factors = []
        self._background = 0.

    @property
    def z_range(self):
        """Minimum and maximum valid z positions"""
        return self.z_params.z_range

    def _initialise(self, params):
        caps = self.capabilities
        blocks = params[1:].reshape((self.n_peaks, layout.params_per_peak))
        pn = layout.peak_nums

        if caps & Capability.DEPTH:
            sigma, d1, d2 = self.z_params.sigma_derivatives(blocks[:, pn.z])
            sx, sy = sigma
        else:
            sx = blocks[:, pn.sx]
            sy = blocks[:, pn.sy] if caps & Capability.WIDTH_Y else sx
        if caps & Capability.ANGLE:
            theta = blocks[:, pn.angle]
        else:
            theta = np.zeros(self.n_peaks)

        self._background = params[layout.background]
        self._factors = []
        for i, b in enumerate(blocks):
            f = _peak_factors(b[pn.signal], b[pn.x], b[pn.y], theta[i],
                              sx[i], sy[i])
            if caps & Capability.DEPTH:
                f.dsx, f.dsy = d1[:, i]
                f.d2sx, f.d2sy = d2[:, i]
            self._factors.append(f)

    def _evaluate(self, sel, order):
        x = self._x[sel]
        y = self._y[sel]
        values = np.full(len(x), self._background)
        d1 = d2 = None
        col = 0
        if order > 0:
            d1 = np.empty((len(x), self.n_gradients))
            d2 = np.empty_like(d1) if order > 1 else None
            if self.capabilities & Capability.BACKGROUND:
                d1[:, 0] = 1.
                if d2 is not None:
                    d2[:, 0] = 0.
                col = 1

        for f in self._factors:
            t = self._sample_terms(f, x, y)
            values += t.value
            if order == 0:
                continue
            for build in self._builders:
                g1, g2 = build(f, t, order > 1)
                d1[:, col] = g1
                if d2 is not None:
                    d2[:, col] = g2
                col += 1
        return values, d1, d2
