"""CMMS Core - work order lifecycle engine."""

__version__ = "0.1.0"
