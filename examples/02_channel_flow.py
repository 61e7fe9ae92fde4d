"""
Example 02: Turbulent Channel with Inflow and Outflow

Demonstrates:
- Inlet ghost layer and outlet mass accounting
- Full model chain (SLM velocity, interpolated frequency, IEM mixing,
  first-order reaction, integrated position correction)
- Time-averaged cell moments compared with the finite-volume fields
- Local time stepping
- Diagnostics export (CSV and plots)
"""

import logging
import time

import numpy as np
import matplotlib.pyplot as plt

from mcpdf import CloudConfig, FlowFields, ParticleCloud, box_mesh
from mcpdf.diagnostics import check_mass_conservation


def example_1_channel():
    """
    Example 1: Reacting channel flow.

    Fuel (c = 1) enters through the inlet and decays with a first-order
    rate while it is advected towards the outlet; the cell mean along the
    channel follows exp(-rate x / U).
    """
    print("\n" + "="*70)
    print("Example 1: Reacting Channel Flow")
    print("="*70)

    # Parameters
    n_steps = 300
    dt = 2e-3
    length = 1.0
    U = 2.0  # m/s
    rate = 2.0  # 1/s

    mesh = box_mesh(n_cells=(20, 4, 1), lengths=(length, 0.2, 0.05),
                    patch_types={"xmin": "inlet", "xmax": "outlet",
                                 "ymin": "wall", "ymax": "wall",
                                 "zmin": "empty", "zmax": "empty"})
    fields = FlowFields.uniform(mesh, U=(U, 0.0, 0.0), k=0.01, epsilon=0.05)
    config = CloudConfig.from_dict({
        "delta_t": dt,
        "scalar_names": ["c", "p"],
        "initial_scalars": {"c": 0.0},
        "inlets": {"xmin": {"phi": {"c": 1.0}}},
        "averaging_time": 0.05,
        "population": {"particles_per_cell": 20},
        "models": {"reaction": "firstOrder"},
        "coefficients": {"reaction": {"reactant": "c", "product": "p", "rate": rate}},
        "local_time_stepping": True,
        "max_courant": 0.8,
        "random_seed": 7,
    })

    cloud = ParticleCloud(mesh, fields, config)
    cloud.initial_release()
    mass_initial = cloud.total_mass()

    print(f"\nSetup:")
    print(f"  Cells: {mesh.n_cells}")
    print(f"  Particles: {cloud.particles.count_live():,}")
    print(f"  Flow-through time: {length / U:.2f} s")

    print(f"\nRunning {n_steps} steps...")
    start_time = time.time()
    for step in range(n_steps):
        residual = cloud.evolve()
        if step % 50 == 0:
            d = cloud.last_diagnostics
            print(f"  Step {step:4d}: particles={d.n_particles}, in={d.mass_in:.3e} kg, "
                  f"out={d.mass_out:.3e} kg, residual={residual:.2e}")
    elapsed = time.time() - start_time

    totals = cloud.history.totals()
    error, ok = check_mass_conservation(mass_initial, cloud.total_mass(), totals["mass_in"],
                                        totals["mass_out"], totals["lost_mass"])

    print(f"\n[OK] Complete!")
    print(f"  Mass budget error: {error:.2e} ({'conserved' if ok else 'NOT conserved'})")
    print(f"  Lost particles: {totals['n_lost']}")
    print(f"  Max |rho_pdf / rho - 1|: {np.abs(cloud.rho_pdf / fields.rho - 1).max():.3f}")
    print(f"  Elapsed time: {elapsed:.2f} s")

    # Mean fuel along the channel centre row
    x = mesh.cell_centres[:, 0]
    order = np.argsort(x)
    fig, ax = plt.subplots(figsize=(8, 6))
    ax.plot(x[order], cloud.phi_pdf[order, 0], 'b.', label='Cell mean c')
    ax.plot(x[order], np.exp(-rate * x[order] / U), 'k--', label='exp(-rate x / U)')
    ax.set_xlabel('x [m]')
    ax.set_ylabel('Fuel mass fraction')
    ax.set_title('First-Order Decay along the Channel')
    ax.legend()
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    plt.savefig('channel_fuel.png', dpi=150)
    print(f"\n[OK] Plot saved to 'channel_fuel.png'")

    cloud.history.save_csv('channel_diagnostics.csv')
    cloud.history.plot(show=False, save_filename='channel_diagnostics.png')
    cloud.summary()

    return cloud


# ==================== MAIN ====================

if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING)

    print("\n" + "="*70)
    print("mcpdf Example 02: Channel Flow")
    print("="*70)

    example_1_channel()

    print("\n" + "="*70)
    print("Example complete!")
    print("="*70 + "\n")
