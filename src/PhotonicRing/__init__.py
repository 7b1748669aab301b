"""Provide package metadata for `PhotonicRing`."""

import logging as _logging

__version__ = "1.0.0"
_logging.getLogger("photonic_ring").addHandler(_logging.NullHandler())

__all__ = ["__version__"]
