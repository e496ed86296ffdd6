"""Configure global settings and get information about the working environment."""

# Authors: Ching-Chuan Chen
# SPDX-License-Identifier: MIT

# Finite Element Density Estimation (fede) for Python
# ===================================================
#
# fede is a Python package for nonparametric density estimation over spatial and spatio-temporal
# domains.
#
# The density is estimated by penalized maximum likelihood on a finite-element basis, and the smoothing
# parameter is selected by k-fold cross-validation. Confidence intervals for the fitted log-density can
# optionally be computed from the Hessian of the penalized functional.

import importlib as _importlib
import logging

logger = logging.getLogger(__name__)


# PEP0440 compatible formatted version, see:
# https://www.python.org/dev/peps/pep-0440/
#
# Dev branch marker is: 'X.Y.dev' or 'X.Y.devN' where N is an integer.
# 'X.Y.dev0' is the canonical version of 'X.Y.dev'

__version__ = "0.1.0.dev0"

from fede.density_data_generator import DensityDataGenerator  # noqa: F401 E402
from fede.fe_density_estimation import FEDE, FEDETime  # noqa: F401 E402

_submodules = [
    "fem",
    "optimization",
    "preprocess",
    "problem",
    "utils",
]

__all__ = _submodules + [
    "DensityDataGenerator",
    "FEDE",
    "FEDETime",
]


def __dir__():
    return __all__


def __getattr__(name):
    if name in _submodules:
        return _importlib.import_module(f"fede.{name}")
    else:
        try:
            return globals()[name]
        except KeyError:
            raise AttributeError(f"Module 'fede' has no attribute '{name}'")
