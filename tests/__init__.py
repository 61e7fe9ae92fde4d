"""
mcpdf Test Suite

Tests organized by:
- test_mesh.py, test_tetdecomp.py, test_interpolation.py: Geometry
- test_particles.py: Particle data structures
- test_tracker.py, test_boundaries.py: Trajectory tracking
- test_statistics.py, test_population.py: Cell moments and population control
- test_models.py, test_field_solver.py: Physics models
- test_cloud.py, test_config.py, test_diagnostics.py: Orchestration
"""
