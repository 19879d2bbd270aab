"""tinypkg - a package manager for constrained Linux targets."""

__version__ = "0.3.0"
