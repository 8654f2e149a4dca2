# SPDX-FileCopyrightText: 2020 Lukas Schrangl <lukas.schrangl@tuwien.ac.at>
#
# SPDX-License-Identifier: BSD-3-Clause

"""z calibration for astigmatic imaging

By introducing a cylindrical lens into the emission pathway, the point spread
function gets distorted depending on the z position of the emitter. Instead of
being circular, it becomes elliptic. Fitting a Gaussian whose widths are
given by the calibration curve as a function of z yields the z position
directly.
"""
import collections

import numpy as np
from scipy.optimize import curve_fit


default_z_range = (-0.5, 0.5)  # z positions only valid in this range


class Parameters(object):
    r"""z calibration curve parameters

    When imaging with a cylindrical lens in the emission path, round features
    are deformed into ellipses whose semiaxes extensions are computed as

    .. math::
        w = w_0 \sqrt{1 + \left(\frac{z - c}{d}\right)^2 +
        a_1 \left(\frac{z - c}{d}\right)^3 +
        a_2 \left(\frac{z - c}{d}\right)^4 + \ldots}
    """

    _PTuple = collections.namedtuple("ParamTuple", ["w0", "c", "d", "a"])
    _PTuple.__new__.__doc__ = ""

    class Tuple(_PTuple):
        """Named tuple of the parameters for one axis

        Attributes
        ----------
        w0, c, d : float
            :math:`w_0, c, d` of the calibration curve
        a : numpy.ndarray
            Polynomial coefficients :math:`a_i` of the calibration curve
        """
        pass

    def __init__(self, z_range=default_z_range):
        self.x = self.Tuple(1, 0, np.inf, np.array([]))
        self.y = self.Tuple(1, 0, np.inf, np.array([]))
        self.z_range = z_range
        """Minimum and maximum valid z positions. Defaults to (-0.5, 0.5)."""

    @staticmethod
    def _polys(par):
        p = np.polynomial.Polynomial(np.hstack(([1, 0, 1], par.a)))
        return p, p.deriv(), p.deriv(2)

    @property
    def x(self):
        """x calibration curve parameter :py:class:`Tuple`"""
        return self._x

    @x.setter
    def x(self, par):
        self._x = par
        self._x_polys = self._polys(par)

    @property
    def y(self):
        """y calibration curve parameter :py:class:`Tuple`"""
        return self._y

    @y.setter
    def y(self, par):
        self._y = par
        self._y_polys = self._polys(par)

    def sigma_from_z(self, z):
        """Calculate x and y sigmas corresponding to a z position

        Parameters
        ----------
        z : numpy.ndarray
            Array of z positions

        Returns
        -------
        numpy.ndarray, shape=(2, len(z))
            First row contains sigmas in x direction, second row is for the
            y direction.
        """
        return self.sigma_derivatives(z)[0]

    def sigma_derivatives(self, z):
        r"""Calculate sigmas and their first and second derivatives w.r.t. z

        With :math:`t = (z - c) / d` and the polynomial :math:`P(t)` under
        the square root,

        .. math::
            \frac{dw}{dz} = \frac{w_0 P'}{2 d \sqrt{P}}, \quad
            \frac{d^2w}{dz^2} = \frac{w_0}{d^2}\left(\frac{P''}{2\sqrt{P}} -
            \frac{P'^2}{4 P^{3/2}}\right).

        Parameters
        ----------
        z : numpy.ndarray
            Array of z positions

        Returns
        -------
        sigma, d1, d2 : numpy.ndarray, shape=(2, len(z))
            Sigmas, first, and second derivatives. In each array, the first
            row is for the x direction, the second row for the y direction.
        """
        z = np.atleast_1d(np.asarray(z, dtype=float))
        ret = np.empty((3, 2, len(z)))
        for i, (par, (p, dp, d2p)) in enumerate(
                ((self._x, self._x_polys), (self._y, self._y_polys))):
            t = (z - par.c) / par.d
            pt = p(t)
            sqrt_pt = np.sqrt(pt)
            dpt = dp(t)
            ret[0, i] = par.w0 * sqrt_pt
            ret[1, i] = par.w0 * dpt / (2 * par.d * sqrt_pt)
            ret[2, i] = (par.w0 / par.d**2 *
                         (d2p(t) / (2 * sqrt_pt) - dpt**2 / (4 * pt**1.5)))
        return ret[0], ret[1], ret[2]

    @classmethod
    def calibrate(cls, loc, guess=Tuple(1., 0., 1., np.ones(2)),
                  z_range=default_z_range):
        """Get parameters from calibration sample

        Extract calibration curves from PSFs where the z position is known.

        Parameters
        ----------
        loc : pandas.DataFrame
            Localization data of a calibration sample. `z`, `size_x`, and
            `size_y` columns need to be present.
        guess : ParamTuple, optional
            Initial guess for the parameter fitting. The length of the
            `guess.a` array also determines the number of polynomial parameters
            to be fitted. Defaults to (1., 0., 1., np.ones(2)).
        z_range : tuple of float
            Minimum and maximum valid z positions. Defaults to (-0.5, 0.5).

        Returns
        -------
        Parameters
            Class instance with parameters from the calibration sample
        """
        def curve(pos, w0, c, d, *a):
            p = np.polynomial.Polynomial(np.hstack(([1, 0, 1], a)))
            t = (pos - c)/d
            return w0**2*p(t)

        ret = cls(z_range=z_range)
        pos = loc["z"].to_numpy()
        fit_bounds = (np.array([0, -np.inf, 0] + [-np.inf]*len(guess.a)),
                      np.inf)

        for coord in ("x", "y"):
            sigma = loc["size_" + coord].to_numpy()
            fit = curve_fit(
                curve, pos, sigma**2,
                [guess.w0, guess.c, guess.d] + list(guess.a),
                bounds=fit_bounds)[0]
            p = cls.Tuple(fit[0], fit[1], fit[2], fit[3:])
            setattr(ret, coord, p)

        return ret
