"""Custom exceptions for the :mod:`mcpdf` package."""


class McPdfError(Exception):
    """Base exception for Monte Carlo PDF particle errors."""


class ConfigurationError(McPdfError, ValueError):
    """Invalid configuration values, model names or field shapes."""


class GeometryError(McPdfError, ValueError):
    """Degenerate or inside-out geometry in the mesh or its decomposition."""


class SolverConvergenceError(McPdfError, RuntimeError):
    """The elliptic position-correction solve did not converge."""


class PopulationControlError(McPdfError, RuntimeError):
    """Clone/eliminate request inconsistent with the particles of a cell."""


class HandoffError(McPdfError, RuntimeError):
    """Malformed or undeliverable particle record at a processor boundary."""


class PopulationHealthError(McPdfError, AssertionError):
    """The live particle population violates a health invariant."""


__all__ = [
    "McPdfError",
    "ConfigurationError",
    "GeometryError",
    "SolverConvergenceError",
    "PopulationControlError",
    "HandoffError",
    "PopulationHealthError",
]
