# SPDX-FileCopyrightText: 2020 Lukas Schrangl <lukas.schrangl@tuwien.ac.at>
#
# SPDX-License-Identifier: BSD-3-Clause

"""Accumulation of curvature matrix, gradient vector, and score

For each sample, the model value and gradient are combined with the observed
value according to the objective (see :py:mod:`psffit.fitting.objective`) and
summed up. Only the lower triangle of the curvature matrix is accumulated;
:py:meth:`Accumulator.finalize_matrix` mirrors it to the upper triangle.

The loops are compiled using numba. For 4 to 7 gradient components, there are
unrolled versions which keep all sums in local variables. These perform the
same floating point operations in the same order as the generic versions and
therefore yield identical results.
"""
from numba import jit
import numpy as np


@jit(nopython=True, nogil=True, cache=True)
def _lsq_generic(y, values, jac, alpha, beta):
    score = 0.
    n = jac.shape[1]
    for k in range(len(y)):
        dy = y[k] - values[k]
        for i in range(n):
            w = jac[k, i]
            for j in range(i + 1):
                alpha[i, j] += w * jac[k, j]
            beta[i] += w * dy
        score += dy * dy
    return score


@jit(nopython=True, nogil=True, cache=True)
def _mle_generic(y, values, jac, alpha, beta):
    score = 0.
    n = jac.shape[1]
    for k in range(len(y)):
        f = values[k]
        x = y[k]
        if f > 0.:
            if x == 0.:
                score += f
                for i in range(n):
                    beta[i] -= jac[k, i]
            else:
                score += f - x - x * np.log(f / x)
                xf2 = x / f / f
                e = 1. - x / f
                for i in range(n):
                    w = jac[k, i] * xf2
                    for j in range(i + 1):
                        alpha[i, j] += w * jac[k, j]
                    beta[i] -= e * jac[k, i]
        elif x > 0.:
            # Nonpositive prediction for a positive observation is impossible
            score = np.inf
    return score


@jit(nopython=True, nogil=True, cache=True)
def _lsq_4(y, values, jac, alpha, beta):
    score = 0.
    a00 = 0.
    a10 = a11 = 0.
    a20 = a21 = a22 = 0.
    a30 = a31 = a32 = a33 = 0.
    b0 = b1 = b2 = b3 = 0.
    for k in range(len(y)):
        dy = y[k] - values[k]
        g0 = jac[k, 0]
        g1 = jac[k, 1]
        g2 = jac[k, 2]
        g3 = jac[k, 3]
        a00 += g0 * g0
        a10 += g1 * g0
        a11 += g1 * g1
        a20 += g2 * g0
        a21 += g2 * g1
        a22 += g2 * g2
        a30 += g3 * g0
        a31 += g3 * g1
        a32 += g3 * g2
        a33 += g3 * g3
        b0 += g0 * dy
        b1 += g1 * dy
        b2 += g2 * dy
        b3 += g3 * dy
        score += dy * dy
    alpha[0, 0] += a00
    alpha[1, 0] += a10
    alpha[1, 1] += a11
    alpha[2, 0] += a20
    alpha[2, 1] += a21
    alpha[2, 2] += a22
    alpha[3, 0] += a30
    alpha[3, 1] += a31
    alpha[3, 2] += a32
    alpha[3, 3] += a33
    beta[0] += b0
    beta[1] += b1
    beta[2] += b2
    beta[3] += b3
    return score


@jit(nopython=True, nogil=True, cache=True)
def _lsq_5(y, values, jac, alpha, beta):
    score = 0.
    a00 = 0.
    a10 = a11 = 0.
    a20 = a21 = a22 = 0.
    a30 = a31 = a32 = a33 = 0.
    a40 = a41 = a42 = a43 = a44 = 0.
    b0 = b1 = b2 = b3 = b4 = 0.
    for k in range(len(y)):
        dy = y[k] - values[k]
        g0 = jac[k, 0]
        g1 = jac[k, 1]
        g2 = jac[k, 2]
        g3 = jac[k, 3]
        g4 = jac[k, 4]
        a00 += g0 * g0
        a10 += g1 * g0
        a11 += g1 * g1
        a20 += g2 * g0
        a21 += g2 * g1
        a22 += g2 * g2
        a30 += g3 * g0
        a31 += g3 * g1
        a32 += g3 * g2
        a33 += g3 * g3
        a40 += g4 * g0
        a41 += g4 * g1
        a42 += g4 * g2
        a43 += g4 * g3
        a44 += g4 * g4
        b0 += g0 * dy
        b1 += g1 * dy
        b2 += g2 * dy
        b3 += g3 * dy
        b4 += g4 * dy
        score += dy * dy
    alpha[0, 0] += a00
    alpha[1, 0] += a10
    alpha[1, 1] += a11
    alpha[2, 0] += a20
    alpha[2, 1] += a21
    alpha[2, 2] += a22
    alpha[3, 0] += a30
    alpha[3, 1] += a31
    alpha[3, 2] += a32
    alpha[3, 3] += a33
    alpha[4, 0] += a40
    alpha[4, 1] += a41
    alpha[4, 2] += a42
    alpha[4, 3] += a43
    alpha[4, 4] += a44
    beta[0] += b0
    beta[1] += b1
    beta[2] += b2
    beta[3] += b3
    beta[4] += b4
    return score


@jit(nopython=True, nogil=True, cache=True)
def _lsq_6(y, values, jac, alpha, beta):
    score = 0.
    a00 = 0.
    a10 = a11 = 0.
    a20 = a21 = a22 = 0.
    a30 = a31 = a32 = a33 = 0.
    a40 = a41 = a42 = a43 = a44 = 0.
    a50 = a51 = a52 = a53 = a54 = a55 = 0.
    b0 = b1 = b2 = b3 = b4 = b5 = 0.
    for k in range(len(y)):
        dy = y[k] - values[k]
        g0 = jac[k, 0]
        g1 = jac[k, 1]
        g2 = jac[k, 2]
        g3 = jac[k, 3]
        g4 = jac[k, 4]
        g5 = jac[k, 5]
        a00 += g0 * g0
        a10 += g1 * g0
        a11 += g1 * g1
        a20 += g2 * g0
        a21 += g2 * g1
        a22 += g2 * g2
        a30 += g3 * g0
        a31 += g3 * g1
        a32 += g3 * g2
        a33 += g3 * g3
        a40 += g4 * g0
        a41 += g4 * g1
        a42 += g4 * g2
        a43 += g4 * g3
        a44 += g4 * g4
        a50 += g5 * g0
        a51 += g5 * g1
        a52 += g5 * g2
        a53 += g5 * g3
        a54 += g5 * g4
        a55 += g5 * g5
        b0 += g0 * dy
        b1 += g1 * dy
        b2 += g2 * dy
        b3 += g3 * dy
        b4 += g4 * dy
        b5 += g5 * dy
        score += dy * dy
    alpha[0, 0] += a00
    alpha[1, 0] += a10
    alpha[1, 1] += a11
    alpha[2, 0] += a20
    alpha[2, 1] += a21
    alpha[2, 2] += a22
    alpha[3, 0] += a30
    alpha[3, 1] += a31
    alpha[3, 2] += a32
    alpha[3, 3] += a33
    alpha[4, 0] += a40
    alpha[4, 1] += a41
    alpha[4, 2] += a42
    alpha[4, 3] += a43
    alpha[4, 4] += a44
    alpha[5, 0] += a50
    alpha[5, 1] += a51
    alpha[5, 2] += a52
    alpha[5, 3] += a53
    alpha[5, 4] += a54
    alpha[5, 5] += a55
    beta[0] += b0
    beta[1] += b1
    beta[2] += b2
    beta[3] += b3
    beta[4] += b4
    beta[5] += b5
    return score


@jit(nopython=True, nogil=True, cache=True)
def _lsq_7(y, values, jac, alpha, beta):
    score = 0.
    a00 = 0.
    a10 = a11 = 0.
    a20 = a21 = a22 = 0.
    a30 = a31 = a32 = a33 = 0.
    a40 = a41 = a42 = a43 = a44 = 0.
    a50 = a51 = a52 = a53 = a54 = a55 = 0.
    a60 = a61 = a62 = a63 = a64 = a65 = a66 = 0.
    b0 = b1 = b2 = b3 = b4 = b5 = b6 = 0.
    for k in range(len(y)):
        dy = y[k] - values[k]
        g0 = jac[k, 0]
        g1 = jac[k, 1]
        g2 = jac[k, 2]
        g3 = jac[k, 3]
        g4 = jac[k, 4]
        g5 = jac[k, 5]
        g6 = jac[k, 6]
        a00 += g0 * g0
        a10 += g1 * g0
        a11 += g1 * g1
        a20 += g2 * g0
        a21 += g2 * g1
        a22 += g2 * g2
        a30 += g3 * g0
        a31 += g3 * g1
        a32 += g3 * g2
        a33 += g3 * g3
        a40 += g4 * g0
        a41 += g4 * g1
        a42 += g4 * g2
        a43 += g4 * g3
        a44 += g4 * g4
        a50 += g5 * g0
        a51 += g5 * g1
        a52 += g5 * g2
        a53 += g5 * g3
        a54 += g5 * g4
        a55 += g5 * g5
        a60 += g6 * g0
        a61 += g6 * g1
        a62 += g6 * g2
        a63 += g6 * g3
        a64 += g6 * g4
        a65 += g6 * g5
        a66 += g6 * g6
        b0 += g0 * dy
        b1 += g1 * dy
        b2 += g2 * dy
        b3 += g3 * dy
        b4 += g4 * dy
        b5 += g5 * dy
        b6 += g6 * dy
        score += dy * dy
    alpha[0, 0] += a00
    alpha[1, 0] += a10
    alpha[1, 1] += a11
    alpha[2, 0] += a20
    alpha[2, 1] += a21
    alpha[2, 2] += a22
    alpha[3, 0] += a30
    alpha[3, 1] += a31
    alpha[3, 2] += a32
    alpha[3, 3] += a33
    alpha[4, 0] += a40
    alpha[4, 1] += a41
    alpha[4, 2] += a42
    alpha[4, 3] += a43
    alpha[4, 4] += a44
    alpha[5, 0] += a50
    alpha[5, 1] += a51
    alpha[5, 2] += a52
    alpha[5, 3] += a53
    alpha[5, 4] += a54
    alpha[5, 5] += a55
    alpha[6, 0] += a60
    alpha[6, 1] += a61
    alpha[6, 2] += a62
    alpha[6, 3] += a63
    alpha[6, 4] += a64
    alpha[6, 5] += a65
    alpha[6, 6] += a66
    beta[0] += b0
    beta[1] += b1
    beta[2] += b2
    beta[3] += b3
    beta[4] += b4
    beta[5] += b5
    beta[6] += b6
    return score


@jit(nopython=True, nogil=True, cache=True)
def _mle_4(y, values, jac, alpha, beta):
    score = 0.
    a00 = 0.
    a10 = a11 = 0.
    a20 = a21 = a22 = 0.
    a30 = a31 = a32 = a33 = 0.
    b0 = b1 = b2 = b3 = 0.
    for k in range(len(y)):
        f = values[k]
        x = y[k]
        if f > 0.:
            g0 = jac[k, 0]
            g1 = jac[k, 1]
            g2 = jac[k, 2]
            g3 = jac[k, 3]
            if x == 0.:
                score += f
                b0 -= g0
                b1 -= g1
                b2 -= g2
                b3 -= g3
            else:
                score += f - x - x * np.log(f / x)
                xf2 = x / f / f
                e = 1. - x / f
                w = g0 * xf2
                a00 += w * g0
                w = g1 * xf2
                a10 += w * g0
                a11 += w * g1
                w = g2 * xf2
                a20 += w * g0
                a21 += w * g1
                a22 += w * g2
                w = g3 * xf2
                a30 += w * g0
                a31 += w * g1
                a32 += w * g2
                a33 += w * g3
                b0 -= e * g0
                b1 -= e * g1
                b2 -= e * g2
                b3 -= e * g3
        elif x > 0.:
            score = np.inf
    alpha[0, 0] += a00
    alpha[1, 0] += a10
    alpha[1, 1] += a11
    alpha[2, 0] += a20
    alpha[2, 1] += a21
    alpha[2, 2] += a22
    alpha[3, 0] += a30
    alpha[3, 1] += a31
    alpha[3, 2] += a32
    alpha[3, 3] += a33
    beta[0] += b0
    beta[1] += b1
    beta[2] += b2
    beta[3] += b3
    return score


@jit(nopython=True, nogil=True, cache=True)
def _mle_5(y, values, jac, alpha, beta):
    score = 0.
    a00 = 0.
    a10 = a11 = 0.
    a20 = a21 = a22 = 0.
    a30 = a31 = a32 = a33 = 0.
    a40 = a41 = a42 = a43 = a44 = 0.
    b0 = b1 = b2 = b3 = b4 = 0.
    for k in range(len(y)):
        f = values[k]
        x = y[k]
        if f > 0.:
            g0 = jac[k, 0]
            g1 = jac[k, 1]
            g2 = jac[k, 2]
            g3 = jac[k, 3]
            g4 = jac[k, 4]
            if x == 0.:
                score += f
                b0 -= g0
                b1 -= g1
                b2 -= g2
                b3 -= g3
                b4 -= g4
            else:
                score += f - x - x * np.log(f / x)
                xf2 = x / f / f
                e = 1. - x / f
                w = g0 * xf2
                a00 += w * g0
                w = g1 * xf2
                a10 += w * g0
                a11 += w * g1
                w = g2 * xf2
                a20 += w * g0
                a21 += w * g1
                a22 += w * g2
                w = g3 * xf2
                a30 += w * g0
                a31 += w * g1
                a32 += w * g2
                a33 += w * g3
                w = g4 * xf2
                a40 += w * g0
                a41 += w * g1
                a42 += w * g2
                a43 += w * g3
                a44 += w * g4
                b0 -= e * g0
                b1 -= e * g1
                b2 -= e * g2
                b3 -= e * g3
                b4 -= e * g4
        elif x > 0.:
            score = np.inf
    alpha[0, 0] += a00
    alpha[1, 0] += a10
    alpha[1, 1] += a11
    alpha[2, 0] += a20
    alpha[2, 1] += a21
    alpha[2, 2] += a22
    alpha[3, 0] += a30
    alpha[3, 1] += a31
    alpha[3, 2] += a32
    alpha[3, 3] += a33
    alpha[4, 0] += a40
    alpha[4, 1] += a41
    alpha[4, 2] += a42
    alpha[4, 3] += a43
    alpha[4, 4] += a44
    beta[0] += b0
    beta[1] += b1
    beta[2] += b2
    beta[3] += b3
    beta[4] += b4
    return score


@jit(nopython=True, nogil=True, cache=True)
def _mle_6(y, values, jac, alpha, beta):
    score = 0.
    a00 = 0.
    a10 = a11 = 0.
    a20 = a21 = a22 = 0.
    a30 = a31 = a32 = a33 = 0.
    a40 = a41 = a42 = a43 = a44 = 0.
    a50 = a51 = a52 = a53 = a54 = a55 = 0.
    b0 = b1 = b2 = b3 = b4 = b5 = 0.
    for k in range(len(y)):
        f = values[k]
        x = y[k]
        if f > 0.:
            g0 = jac[k, 0]
            g1 = jac[k, 1]
            g2 = jac[k, 2]
            g3 = jac[k, 3]
            g4 = jac[k, 4]
            g5 = jac[k, 5]
            if x == 0.:
                score += f
                b0 -= g0
                b1 -= g1
                b2 -= g2
                b3 -= g3
                b4 -= g4
                b5 -= g5
            else:
                score += f - x - x * np.log(f / x)
                xf2 = x / f / f
                e = 1. - x / f
                w = g0 * xf2
                a00 += w * g0
                w = g1 * xf2
                a10 += w * g0
                a11 += w * g1
                w = g2 * xf2
                a20 += w * g0
                a21 += w * g1
                a22 += w * g2
                w = g3 * xf2
                a30 += w * g0
                a31 += w * g1
                a32 += w * g2
                a33 += w * g3
                w = g4 * xf2
                a40 += w * g0
                a41 += w * g1
                a42 += w * g2
                a43 += w * g3
                a44 += w * g4
                w = g5 * xf2
                a50 += w * g0
                a51 += w * g1
                a52 += w * g2
                a53 += w * g3
                a54 += w * g4
                a55 += w * g5
                b0 -= e * g0
                b1 -= e * g1
                b2 -= e * g2
                b3 -= e * g3
                b4 -= e * g4
                b5 -= e * g5
        elif x > 0.:
            score = np.inf
    alpha[0, 0] += a00
    alpha[1, 0] += a10
    alpha[1, 1] += a11
    alpha[2, 0] += a20
    alpha[2, 1] += a21
    alpha[2, 2] += a22
    alpha[3, 0] += a30
    alpha[3, 1] += a31
    alpha[3, 2] += a32
    alpha[3, 3] += a33
    alpha[4, 0] += a40
    alpha[4, 1] += a41
    alpha[4, 2] += a42
    alpha[4, 3] += a43
    alpha[4, 4] += a44
    alpha[5, 0] += a50
    alpha[5, 1] += a51
    alpha[5, 2] += a52
    alpha[5, 3] += a53
    alpha[5, 4] += a54
    alpha[5, 5] += a55
    beta[0] += b0
    beta[1] += b1
    beta[2] += b2
    beta[3] += b3
    beta[4] += b4
    beta[5] += b5
    return score


@jit(nopython=True, nogil=True, cache=True)
def _mle_7(y, values, jac, alpha, beta):
    score = 0.
    a00 = 0.
    a10 = a11 = 0.
    a20 = a21 = a22 = 0.
    a30 = a31 = a32 = a33 = 0.
    a40 = a41 = a42 = a43 = a44 = 0.
    a50 = a51 = a52 = a53 = a54 = a55 = 0.
    a60 = a61 = a62 = a63 = a64 = a65 = a66 = 0.
    b0 = b1 = b2 = b3 = b4 = b5 = b6 = 0.
    for k in range(len(y)):
        f = values[k]
        x = y[k]
        if f > 0.:
            g0 = jac[k, 0]
            g1 = jac[k, 1]
            g2 = jac[k, 2]
            g3 = jac[k, 3]
            g4 = jac[k, 4]
            g5 = jac[k, 5]
            g6 = jac[k, 6]
            if x == 0.:
                score += f
                b0 -= g0
                b1 -= g1
                b2 -= g2
                b3 -= g3
                b4 -= g4
                b5 -= g5
                b6 -= g6
            else:
                score += f - x - x * np.log(f / x)
                xf2 = x / f / f
                e = 1. - x / f
                w = g0 * xf2
                a00 += w * g0
                w = g1 * xf2
                a10 += w * g0
                a11 += w * g1
                w = g2 * xf2
                a20 += w * g0
                a21 += w * g1
                a22 += w * g2
                w = g3 * xf2
                a30 += w * g0
                a31 += w * g1
                a32 += w * g2
                a33 += w * g3
                w = g4 * xf2
                a40 += w * g0
                a41 += w * g1
                a42 += w * g2
                a43 += w * g3
                a44 += w * g4
                w = g5 * xf2
                a50 += w * g0
                a51 += w * g1
                a52 += w * g2
                a53 += w * g3
                a54 += w * g4
                a55 += w * g5
                w = g6 * xf2
                a60 += w * g0
                a61 += w * g1
                a62 += w * g2
                a63 += w * g3
                a64 += w * g4
                a65 += w * g5
                a66 += w * g6
                b0 -= e * g0
                b1 -= e * g1
                b2 -= e * g2
                b3 -= e * g3
                b4 -= e * g4
                b5 -= e * g5
                b6 -= e * g6
        elif x > 0.:
            score = np.inf
    alpha[0, 0] += a00
    alpha[1, 0] += a10
    alpha[1, 1] += a11
    alpha[2, 0] += a20
    alpha[2, 1] += a21
    alpha[2, 2] += a22
    alpha[3, 0] += a30
    alpha[3, 1] += a31
    alpha[3, 2] += a32
    alpha[3, 3] += a33
    alpha[4, 0] += a40
    alpha[4, 1] += a41
    alpha[4, 2] += a42
    alpha[4, 3] += a43
    alpha[4, 4] += a44
    alpha[5, 0] += a50
    alpha[5, 1] += a51
    alpha[5, 2] += a52
    alpha[5, 3] += a53
    alpha[5, 4] += a54
    alpha[5, 5] += a55
    alpha[6, 0] += a60
    alpha[6, 1] += a61
    alpha[6, 2] += a62
    alpha[6, 3] += a63
    alpha[6, 4] += a64
    alpha[6, 5] += a65
    alpha[6, 6] += a66
    beta[0] += b0
    beta[1] += b1
    beta[2] += b2
    beta[3] += b3
    beta[4] += b4
    beta[5] += b5
    beta[6] += b6
    return score


_generic_kernels = {"lsq": _lsq_generic, "mle": _mle_generic}
_unrolled_kernels = {
    "lsq": {4: _lsq_4, 5: _lsq_5, 6: _lsq_6, 7: _lsq_7},
    "mle": {4: _mle_4, 5: _mle_5, 6: _mle_6, 7: _mle_7}}


class Accumulator:
    """Sum up per-sample contributions to curvature, gradient, and score

    Use :py:func:`create_accumulator` to get an instance using the fastest
    available kernel.

    Attributes
    ----------
    alpha : numpy.ndarray, shape(n, n)
        Curvature matrix
    beta : numpy.ndarray, shape(n,)
        Gradient vector (pointing downhill for the objective)
    score : float
        Objective value
    """
    def __init__(self, objective, observed, n_gradients, kernel=None):
        """Parameters
        ----------
        objective : Objective
            Defines the per-sample contributions
        observed : numpy.ndarray
            Observed values, already passed through ``objective.prepare``
        n_gradients : int
            Number of gradient components
        kernel : callable or None, optional
            Compiled loop over all samples with signature ``kernel(observed,
            values, jacobian, alpha, beta) -> score``. If `None`, use the
            generic kernel for the objective.
        """
        self.objective = objective
        self.observed = np.ascontiguousarray(observed, dtype=float)
        self.n_gradients = n_gradients
        self.alpha = np.zeros((n_gradients, n_gradients))
        self.beta = np.zeros(n_gradients)
        self.score = 0.
        if kernel is None:
            kernel = _generic_kernels[objective.name]
        self._kernel = kernel
        self._pos = 0

    def reset(self):
        """Clear all sums without reallocating"""
        self.alpha.fill(0.)
        self.beta.fill(0.)
        self.score = 0.
        self._pos = 0

    def add(self, value, gradient):
        """Add the contribution of the next sample

        Parameters
        ----------
        value : float
            Model value
        gradient : array-like
            Model gradient
        """
        self.score += self.objective.add(self.observed[self._pos], value,
                                         gradient, self.alpha, self.beta)
        self._pos += 1

    def finalize_matrix(self):
        """Copy the lower triangle of :py:attr:`alpha` to the upper one"""
        iu = np.triu_indices(self.n_gradients, 1)
        self.alpha[iu] = self.alpha.T[iu]

    def fold(self, samples):
        """Accumulate a sequence of ``(value, gradient)`` pairs

        The sums are reset first.

        Parameters
        ----------
        samples : iterable
            E.g. the result of :py:meth:`Model.samples1`

        Returns
        -------
        self
        """
        self.reset()
        for value, gradient in samples:
            self.add(value, gradient)
        if self._pos != len(self.observed):
            raise ValueError(f"Expected {len(self.observed)} samples, got "
                             f"{self._pos}.")
        self.finalize_matrix()
        return self

    def fold_arrays(self, values, jacobian):
        """Accumulate all samples at once

        The sums are reset first.

        Parameters
        ----------
        values : numpy.ndarray, shape(n_samples,)
            Model values
        jacobian : numpy.ndarray, shape(n_samples, n_gradients)
            Model gradients

        Returns
        -------
        self
        """
        self.reset()
        self.score = self._kernel(
            self.observed, np.ascontiguousarray(values, dtype=float),
            np.ascontiguousarray(jacobian, dtype=float), self.alpha,
            self.beta)
        self._pos = len(self.observed)
        self.finalize_matrix()
        return self


def create_accumulator(objective, observed, n_gradients):
    """Create an :py:class:`Accumulator` with the fastest suitable kernel

    Parameters
    ----------
    objective : Objective
        Defines the per-sample contributions
    observed : numpy.ndarray
        Observed values, already passed through ``objective.prepare``
    n_gradients : int
        Number of gradient components

    Returns
    -------
    Accumulator
    """
    kernel = _unrolled_kernels[objective.name].get(n_gradients)
    return Accumulator(objective, observed, n_gradients, kernel)
