"""
mcpdf: Monte Carlo PDF Particle Methods on Unstructured Meshes

Lagrangian particle transport and statistical closure for transported
PDF methods in turbulent reactive flows: particles carrying velocity,
turbulent frequency and scalar composition are tracked through a
polyhedral mesh, their cell moments close the mean-flow equations, and a
population controller keeps the number of samples per cell in band.
"""

__version__ = "0.1.0"

# Import key classes for convenient access
from .config import CloudConfig, ModelSelection, PopulationControlConfig, AxisymmetricConfig
from .errors import (
    McPdfError,
    ConfigurationError,
    GeometryError,
    SolverConvergenceError,
    PopulationControlError,
    HandoffError,
    PopulationHealthError,
)
from .mesh import PolyMesh, Patch, box_mesh
from .tetdecomp import TetDecomposition
from .interpolation import FieldInterpolator
from .fields import FlowFields
from .particles import ParticleArray
from .statistics import CellMoments
from .population import CellStatus, PopulationController
from .field_solver import LaplacianSolver
from .transport import DomainTransport, SerialTransport
from .diagnostics import DiagnosticTracker, StepDiagnostics
from .cloud import ParticleCloud

__all__ = [
    "CloudConfig",
    "ModelSelection",
    "PopulationControlConfig",
    "AxisymmetricConfig",
    "McPdfError",
    "ConfigurationError",
    "GeometryError",
    "SolverConvergenceError",
    "PopulationControlError",
    "HandoffError",
    "PopulationHealthError",
    "PolyMesh",
    "Patch",
    "box_mesh",
    "TetDecomposition",
    "FieldInterpolator",
    "FlowFields",
    "ParticleArray",
    "CellMoments",
    "CellStatus",
    "PopulationController",
    "LaplacianSolver",
    "DomainTransport",
    "SerialTransport",
    "DiagnosticTracker",
    "StepDiagnostics",
    "ParticleCloud",
]
