# SPDX-FileCopyrightText: 2020 Lukas Schrangl <lukas.schrangl@tuwien.ac.at>
#
# SPDX-License-Identifier: BSD-3-Clause

"""Linear algebra for symmetric, positive definite matrices"""
from numba import jit
import numpy as np
import scipy.linalg

from ..exceptions import PrecisionUnavailable


@jit(nopython=True, nogil=True, cache=True)
def _chol(A, L):
    """Calculate Cholesky decomposition of positive definite, symmetric `A`

    Only uses the lower triangle of `A`.

    Parameters
    ----------
    A : numpy.ndarray
        Positive definite, symmetric matrix to be decomposed
    L : numpy.ndarray
        Output: lower triangular matrix such that L @ L.T == A

    Returns
    -------
    int
        -1 if there was an error, 1 otherwise
    """
    size = A.shape[0]
    for j in range(size):
        Ljj = A[j, j]
        for k in range(j):
            Ljj -= L[j, k]**2
        if not Ljj > 0:
            return -1
        Ljj = np.sqrt(Ljj)
        L[j, j] = Ljj

        for i in range(0, j):
            L[i, j] = 0

        for i in range(j, size):
            Lij = A[i, j]
            for k in range(j):
                Lij -= L[i, k] * L[j, k]
            L[i, j] = Lij / Ljj
    return 1


@jit(nopython=True, nogil=True, cache=True)
def _eqn_solver(A, b, x):
    """Solve system of linear equations

    Solve A @ x == b for x for positive definite, symmetric A.

    Parameters
    ----------
    A : numpy.ndarray
        Coefficient matrix. Has to be positive definite and symmetric.
    b : numpy.ndarray
        Right hand side
    x : numpy.array
        Output: solution

    Returns
    -------
    int
        -1 if there was an error, 1 otherwise
    """
    L = np.empty(A.shape)
    if _chol(A, L) < 0:
        return -1
    size = A.shape[0]

    # Solve L @ y == b by forward substitution
    y = np.empty(size)
    for i in range(size):
        yi = b[i]
        for j in range(i):
            yi -= L[i, j] * y[j]
        y[i] = yi / L[i, i]

    # Solve L.T @ x == y by backward substitution
    for i in range(1, size+1):
        xi = y[-i]
        for j in range(1, i):
            xi -= L[-j, -i] * x[-j]  # transpose L
        x[-i] = xi / L[-i, -i]

    return 1


@jit(nopython=True, nogil=True, cache=True)
def solve_damped(alpha, beta, lam, x):
    """Solve the Levenberg-Marquardt equation

    Solve ``(alpha + lam * diag(alpha)) @ x == beta`` for x.

    Parameters
    ----------
    alpha : numpy.ndarray
        Curvature matrix. Only the lower triangle is used.
    beta : numpy.ndarray
        Gradient vector
    lam : float
        Damping factor
    x : numpy.ndarray
        Output: solution

    Returns
    -------
    bool
        `True` if the damped matrix was positive definite and the solution is
        finite, `False` otherwise
    """
    A = alpha.copy()
    for i in range(A.shape[0]):
        A[i, i] *= 1. + lam
    if _eqn_solver(A, beta, x) < 0:
        return False
    for i in range(len(x)):
        if not np.isfinite(x[i]):
            return False
    return True


def invert_spd(a):
    """Invert a symmetric, positive definite matrix

    Parameters
    ----------
    a : numpy.ndarray
        Matrix to invert

    Returns
    -------
    numpy.ndarray
        Inverse

    Raises
    ------
    PrecisionUnavailable
        The matrix is not positive definite or contains non-finite entries.
    """
    if not np.all(np.isfinite(a)):
        raise PrecisionUnavailable("Matrix contains non-finite values.")
    try:
        c = scipy.linalg.cho_factor(a, lower=True)
    except np.linalg.LinAlgError as e:
        raise PrecisionUnavailable(str(e)) from e
    return scipy.linalg.cho_solve(c, np.eye(len(a)))
