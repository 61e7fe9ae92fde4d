"""
Numerical Constants and Model Defaults

Tolerances, safety limits and closure coefficients shared across the
particle tracker, the statistics and the physics models.
"""

import numpy as np

# ==================== FLOATING POINT ====================

SMALL = 1.0e-15  # Guard against division by zero
VSMALL = 1.0e-300
GREAT = 1.0e15

# ==================== TRACKING ====================

MAX_TRACK_STEPS = 1000  # Sub-steps per evolve call before a particle is dropped
TRACK_TOLERANCE = 1.0e-10  # Barycentric slack for ray/triangle hits
INSIDE_TOLERANCE = 1.0e-6  # Barycentric slack for point-in-cell health checks

# ==================== POPULATION CONTROL ====================

DEFAULT_PARTICLES_PER_CELL = 20
DEFAULT_CLONE_AT = 0.5  # Clone below clone_at * target
DEFAULT_ELIMINATE_AT = 1.5  # Eliminate above eliminate_at * target

# ==================== LOCAL TIME STEPPING ====================

DEFAULT_MAX_COURANT = 0.8
DEFAULT_MIN_ETA = 1.0e-2

# ==================== MODEL COEFFICIENTS ====================

# Simplified Langevin model (Jenny et al., JCP 166, 2001)
SLM_C0 = 2.1
SLM_C1 = 1.0  # Set to 0 to switch off the dissipation drift (testing only)

# IEM mixing model
IEM_C_PHI = 2.0

# Jayesh-Pope stochastic turbulent frequency model (Pope 2000, Sec. 12.5)
JP_C3 = 1.0
JP_C4 = 0.25
JP_C_OMEGA1 = 0.56
JP_C_OMEGA2 = 0.9

# ==================== PATCH TYPES ====================

PATCH_TYPES = (
    "wall",
    "symmetry",
    "empty",
    "inlet",
    "outlet",
    "periodic",
    "wedge",
    "processor",
)

# Patch types that remove a solution direction (velocities and positions)
SOLUTION_CONSTRAINT_PATCH_TYPES = ("empty",)

# Patch types that remove a geometric direction; wedge cases keep the swirl
# component and let particles reach the wedge faces
GEOMETRIC_CONSTRAINT_PATCH_TYPES = ("empty", "wedge")

# Patch types on which the position-correction potential is fixed to zero
DIRICHLET_PATCH_TYPES = ("outlet",)

# Symmetric tensor component order (xx, xy, xz, yy, yz, zz)
SYMM_INDEX = np.array([[0, 1, 2], [1, 3, 4], [2, 4, 5]], dtype=np.int64)
SYMM_PAIRS = ((0, 0), (0, 1), (0, 2), (1, 1), (1, 2), (2, 2))
