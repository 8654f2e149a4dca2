# SPDX-FileCopyrightText: 2020 Lukas Schrangl <lukas.schrangl@tuwien.ac.at>
#
# SPDX-License-Identifier: BSD-3-Clause

"""Mechanism for getting and setting default function parameters
=============================================================

Fitting functions take a number of tuning parameters (damping, tolerances,
iteration limits, …). Most of the time, the defaults are fine, but sometimes
one wants to change them for a whole analysis session instead of passing them
to every single call.

The :py:mod:`psffit.config` module contains function decorators that provide
such defaults. :py:func:`use_defaults` fills in function arguments that were
left as `None` from :py:attr:`rc`. :py:func:`set_columns` completes the
`columns` dict argument of functions producing :py:class:`pandas.DataFrame`
output from :py:attr:`columns`. Both can be changed by the user for a global
effect.


Examples
--------

Make all subsequent fits use at most 50 iterations:

>>> config.rc["tolerance"]["max_iterations"] = 50

Rename the column holding the integrated intensity in batch fit results:

>>> config.columns["mass"] = "photons"


Programming reference
---------------------

.. autofunction:: set_columns
.. autofunction:: use_defaults
.. autodata:: columns
.. autodata:: rc
"""
import inspect
import functools


rc = dict(
    tolerance=dict(relative=1e-6, absolute=1e-10, check_score=True,
                   check_sequence=False, max_iterations=100),
    initial_lambda=0.01,
    lambda_factor=10.,
    max_retries=15,
    precision=True)
"""Global config dictionary"""


columns = dict(
    coords=["x", "y"],
    mass="mass",
    bg="bg",
    angle="angle",
    size=["size_x", "size_y"],
    z="z",
    window="window",
    peak="peak",
    status="status",
    iterations="iterations",
    evaluations="evaluations",
    score="score",
    llr="llr",
    q_value="q",
    var_suffix="_var")
"""Default column names in :py:class:`pandas.DataFrame`"""


def use_defaults(func):
    """Decorator to apply default values to functions

    If any function argument whose name is a key in :py:attr:`rc` is `None`,
    set its value to what is specified in :py:attr:`rc`.

    Parameters
    ----------
    func : function
        Function to be decorated

    Returns
    -------
    function
        Modified function

    Examples
    --------
    >>> @use_defaults
    ... def f(max_retries=None):
    ...     return max_retries
    >>> f()
    15
    >>> f(3)
    3
    >>> config.rc["max_retries"] = 20
    >>> f()
    20
    """
    sig = inspect.signature(func)

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        ba = sig.bind(*args, **kwargs)
        ba.apply_defaults()
        for name, value in ba.arguments.items():
            if value is None:
                ba.arguments[name] = rc.get(name, None)
        return func(*ba.args, **ba.kwargs)

    wrapper.__signature__ = sig
    return wrapper


def set_columns(func):
    """Decorator to set default column names for DataFrames

    Use this on functions that accept a dict as the `columns` argument.
    Values from :py:attr:`columns` will be added for any key not present in
    the dict argument.

    Parameters
    ----------
    func : function
        Function to be decorated

    Returns
    -------
    function
        Modified function

    Examples
    --------
    >>> @set_columns
    ... def get_mass(data, columns={}):
    ...     return data[columns["mass"]]
    >>> get_mass(df, columns={"mass": "other_mass"})
    """
    sig = inspect.signature(func)

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        ba = sig.bind(*args, **kwargs)
        ba.apply_defaults()

        cols = columns.copy()
        cols.update(ba.arguments["columns"])
        ba.arguments["columns"] = cols

        return func(*ba.args, **ba.kwargs)

    wrapper.__signature__ = sig
    return wrapper
