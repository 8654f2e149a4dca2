# SPDX-FileCopyrightText: 2020 Lukas Schrangl <lukas.schrangl@tuwien.ac.at>
#
# SPDX-License-Identifier: BSD-3-Clause

"""PSF model from an interpolated, experimentally determined PSF"""
import numpy as np
from scipy.interpolate import RectBivariateSpline, make_interp_spline

from . import layout
from .base import Model
from .layout import Capability


class SplineModel(Model):
    """Sum of peaks shaped like a sampled PSF on a constant background

    The PSF is given either as a single image or as a stack of images
    recorded at different z positions. Each image is normalized to unit
    integral and interpolated using a bicubic spline. Between images, a cubic
    spline along z is used. Thus the `signal` parameter is the integrated
    intensity of a peak. Outside of the PSF images, the PSF is 0.

    Background, signal, position, and (for PSF stacks) the z position can be
    fitted; the width and angle entries of the parameter vector are ignored.
    For single PSF images, the z entry is ignored as well.

    Attributes
    ----------
    z_range : tuple of float or None
        z positions of the first and last image of a PSF stack. `None` for a
        single PSF image.
    """
    def __init__(self, shape, psf, scale=1., n_peaks=1, capabilities=None,
                 center=None, z=None):
        """Parameters
        ----------
        shape : tuple of int
            Window shape, i.e., ``(height, width)``
        psf : array-like
            PSF image (2D) or stack of PSF images (3D, indexed as
            ``(z, row, column)``). There have to be at least 4 samples along
            each axis.
        scale : float, optional
            Number of PSF image samples per window pixel. Defaults to 1.
        n_peaks : int, optional
            Number of peaks. Defaults to 1.
        capabilities : str or Capability or None, optional
            Subset of ``BACKGROUND | SIGNAL | POSITION | DEPTH``. DEPTH is
            only possible for PSF stacks. If `None`, use "spline_3d" for
            stacks and "spline" for single images.
        center : tuple of float or None, optional
            Position of the PSF center in the PSF images as
            ``(row, column)``. If `None`, use the center of the images.
        z : array-like or None, optional
            Strictly increasing z position of each image of a PSF stack. If
            `None`, use the image index relative to the central image.
        """
        psf = np.asarray(psf, dtype=float)
        if capabilities is None:
            capabilities = "spline_3d" if psf.ndim == 3 else "spline"
        caps = layout.get_capabilities(capabilities)
        layout.check_capabilities(caps, allowed=layout.variants["spline_3d"])
        if psf.ndim not in (2, 3) or min(psf.shape) < 4:
            raise ValueError("PSF has to be a 2D image or a 3D stack with at "
                             "least 4 samples along each axis.")
        if caps & Capability.DEPTH and psf.ndim != 3:
            raise ValueError("Fitting the depth requires a 3D PSF stack.")
        if scale <= 0:
            raise ValueError("`scale` has to be positive.")
        super().__init__(shape, n_peaks, caps)

        stack = psf if psf.ndim == 3 else psf[None, ...]
        integral = stack.sum(axis=(1, 2)) / scale**2
        if not np.all(integral > 0):
            raise ValueError("PSF integral has to be positive.")
        if center is None:
            center = (np.array(stack.shape[1:]) - 1) / 2

        v = (np.arange(stack.shape[1]) - center[0]) / scale
        u = (np.arange(stack.shape[2]) - center[1]) / scale
        self._splines = [RectBivariateSpline(v, u, p / i, kx=3, ky=3, s=0)
                         for p, i in zip(stack, integral)]
        self._v_range = (v[0], v[-1])
        self._u_range = (u[0], u[-1])

        if psf.ndim == 3:
            if z is None:
                z = np.arange(len(stack)) - (len(stack) - 1) / 2
            z = np.asarray(z, dtype=float)
            if z.shape != (len(stack),) or np.any(np.diff(z) <= 0):
                raise ValueError("`z` has to be strictly increasing with one "
                                 "entry per PSF image.")
            # Interpolating the identity gives the weights of each image
            self._z_spline = make_interp_spline(z, np.eye(len(z)), k=3)
            self.z_range = (z[0], z[-1])
        else:
            self._z_spline = None
            self.z_range = None

        self._background = 0.
        self._peaks = np.empty((0, 3))
        self._weights = np.empty((0, 3, len(stack)))

    def _initialise(self, params):
        pn = layout.peak_nums
        blocks = params[1:].reshape((self.n_peaks, layout.params_per_peak))
        self._background = params[layout.background]
        self._peaks = blocks[:, [pn.signal, pn.x, pn.y]]

        # Weights of the images for the value and the z derivatives
        self._weights = np.zeros((self.n_peaks, 3, len(self._splines)))
        if self._z_spline is None:
            self._weights[:, 0, 0] = 1.
        else:
            for i, z0 in enumerate(blocks[:, pn.z]):
                for nu in range(3):
                    self._weights[i, nu] = self._z_spline(z0, nu=nu)

    def _images(self, dv, du, inside, nv=0, nu=0):
        ret = np.zeros((len(self._splines), len(dv)))
        if not inside.any():
            return ret
        for r, s in zip(ret, self._splines):
            r[inside] = s.ev(dv[inside], du[inside], dx=nv, dy=nu)
        return ret

    def _evaluate(self, sel, order):
        caps = self.capabilities
        x = self._x[sel]
        y = self._y[sel]
        values = np.full(len(x), self._background)
        d1 = d2 = None
        col = 0
        if order > 0:
            d1 = np.empty((len(x), self.n_gradients))
            d2 = np.zeros_like(d1) if order > 1 else None
            if caps & Capability.BACKGROUND:
                d1[:, 0] = 1.
                col = 1

        for (signal, x0, y0), w in zip(self._peaks, self._weights):
            du = x - x0
            dv = y - y0
            inside = ((du >= self._u_range[0]) & (du <= self._u_range[1]) &
                      (dv >= self._v_range[0]) & (dv <= self._v_range[1]))
            img = self._images(dv, du, inside)
            s = w[0] @ img
            values += signal * s
            if order == 0:
                continue
            if caps & Capability.SIGNAL:
                d1[:, col] = s
                col += 1
            if caps & Capability.POSITION:
                d1[:, col] = -signal * (w[0] @ self._images(dv, du, inside,
                                                            nu=1))
                d1[:, col+1] = -signal * (w[0] @ self._images(dv, du, inside,
                                                              nv=1))
                if d2 is not None:
                    d2[:, col] = signal * (w[0] @ self._images(dv, du, inside,
                                                               nu=2))
                    d2[:, col+1] = signal * (
                        w[0] @ self._images(dv, du, inside, nv=2))
                col += 2
            if caps & Capability.DEPTH:
                d1[:, col] = signal * (w[1] @ img)
                if d2 is not None:
                    d2[:, col] = signal * (w[2] @ img)
                col += 1
        return values, d1, d2
