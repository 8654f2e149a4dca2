# SPDX-FileCopyrightText: 2020 Lukas Schrangl <lukas.schrangl@tuwien.ac.at>
#
# SPDX-License-Identifier: BSD-3-Clause

"""Collection of exception classes"""


class FitError(Exception):
    """An iteration of the fitting algorithm hit a fatal condition

    This is raised inside the solver and turned into a terminal fit status
    before returning to the caller.

    Attributes
    ----------
    status : psffit.fitting.FitStatus
        Terminal status describing the failure
    last_result
        The best parameters found before raising this exception
    """
    def __init__(self, status, last_result, text=None):
        """Parameters
        ----------
        status : psffit.fitting.FitStatus
            Set the :py:attr:`status` attribute.
        last_result
            Set the :py:attr:`last_result` attribute.
        text : str or None, optional
            What to display when converting the exception to a str. If `None`,
            use the status name.
        """
        super().__init__(text if text is not None else
                         f"Fit failed: {status.name}")
        self.status = status
        self.last_result = last_result


class PrecisionUnavailable(Exception):
    """The Fisher information matrix could not be inverted"""
    pass
