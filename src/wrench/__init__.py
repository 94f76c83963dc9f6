"""Service runner and duration estimator for PC maintenance tools."""

__version__ = "0.3.0"
