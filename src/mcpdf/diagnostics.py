"""
Diagnostics for the Particle Cloud

- StepDiagnostics: counters and totals of one evolve cycle
- DiagnosticTracker: time series of StepDiagnostics with CSV export,
  plots and a printed summary
- Conservation checks on the mass budget
"""

import csv
from dataclasses import asdict, dataclass, fields
from typing import List

import numpy as np


@dataclass
class StepDiagnostics:
    """
    Bookkeeping of one evolve cycle.

    Attributes:
        step: Evolve call counter
        time: Simulation time after the step [s]
        n_particles: Live particles after population control
        n_lost: Particles dropped by the tracking step limit
        lost_mass: Mass of the dropped particles [kg]
        mass_in: Mass injected at inlets [kg]
        mass_out: Mass leaving through outlets [kg]
        n_cloned, n_eliminated: Population-control events
        n_empty, n_too_few, n_too_many: Cells per population status
        n_reflected_open: Particles reflected at open boundaries
        total_mass: Mass of the live particles after the step [kg]
        mass_change: Change of the live particle mass over the step [kg]
        residual: Largest relative change of the cell density
    """

    step: int
    time: float
    n_particles: int = 0
    n_lost: int = 0
    lost_mass: float = 0.0
    mass_in: float = 0.0
    mass_out: float = 0.0
    n_cloned: int = 0
    n_eliminated: int = 0
    n_empty: int = 0
    n_too_few: int = 0
    n_too_many: int = 0
    n_reflected_open: int = 0
    total_mass: float = 0.0
    mass_change: float = 0.0
    residual: float = 0.0

    def as_row(self):
        return [getattr(self, f.name) for f in fields(self)]


def check_mass_conservation(mass_initial, mass_final, mass_in, mass_out,
                            mass_lost=0.0, rtol=1.0e-10):
    """
    Check the particle mass budget.

        mass_final = mass_initial + mass_in - mass_out - mass_lost

    Args:
        mass_initial: Mass before the steps [kg]
        mass_final: Mass after the steps [kg]
        mass_in: Injected mass [kg]
        mass_out: Outflow mass [kg]
        mass_lost: Mass of dropped particles [kg]
        rtol: Tolerance relative to the expected final mass

    Returns:
        error: Fractional error of the budget
        is_conserved: True if error <= rtol
    """
    expected_final = mass_initial + mass_in - mass_out - mass_lost
    scale = max(abs(expected_final), abs(mass_initial))
    error = abs(mass_final - expected_final) / scale if scale > 0 else 0.0
    return error, error <= rtol


class DiagnosticTracker:
    """
    Tracks cloud diagnostics over time.

    Usage:
        tracker = DiagnosticTracker()
        for step in range(n_steps):
            cloud.evolve()
            tracker.record(cloud.last_diagnostics)
        tracker.save_csv('diagnostics.csv')
        tracker.plot()
    """

    def __init__(self):
        self.records: List[StepDiagnostics] = []

    def record(self, diagnostics: StepDiagnostics):
        self.records.append(diagnostics)

    def __len__(self):
        return len(self.records)

    def series(self, name):
        """Time series of one StepDiagnostics attribute."""
        return np.array([getattr(r, name) for r in self.records])

    def totals(self):
        """Cumulative counters over all recorded steps."""
        keys = ("n_lost", "lost_mass", "mass_in", "mass_out", "n_cloned", "n_eliminated")
        return {key: self.series(key).sum() if self.records else 0 for key in keys}

    def save_csv(self, filename: str):
        """
        Save diagnostic data to CSV file.

        Args:
            filename: Output CSV filename
        """
        with open(filename, 'w', newline='') as f:
            writer = csv.writer(f)
            writer.writerow([f.name for f in fields(StepDiagnostics)])
            for rec in self.records:
                writer.writerow(rec.as_row())

        print(f"Diagnostics saved to {filename}")

    def plot(self, show=True, save_filename=None):
        """
        Create diagnostic plots.

        Args:
            show: Display plots interactively
            save_filename: Save figure to file (optional)

        Returns:
            fig: Matplotlib figure
        """
        import matplotlib.pyplot as plt

        fig, axes = plt.subplots(2, 2, figsize=(12, 9))
        time = self.series("time")

        # Plot 1: Particle count
        ax = axes[0, 0]
        ax.plot(time, self.series("n_particles"), 'b-', linewidth=2)
        ax.set_xlabel('Time (s)', fontsize=12)
        ax.set_ylabel('Live Particles', fontsize=12)
        ax.set_title('Particle Population', fontsize=14, fontweight='bold')
        ax.grid(True, alpha=0.3)

        # Plot 2: Mass fluxes
        ax = axes[0, 1]
        ax.plot(time, np.cumsum(self.series("mass_in")), 'b-', linewidth=2, label='In')
        ax.plot(time, np.cumsum(self.series("mass_out")), 'r-', linewidth=2, label='Out')
        ax.plot(time, np.cumsum(self.series("lost_mass")), 'k--', linewidth=1, label='Lost')
        ax.set_xlabel('Time (s)', fontsize=12)
        ax.set_ylabel('Cumulative Mass (kg)', fontsize=12)
        ax.set_title('Mass Budget', fontsize=14, fontweight='bold')
        ax.legend(fontsize=10)
        ax.grid(True, alpha=0.3)

        # Plot 3: Population control
        ax = axes[1, 0]
        ax.plot(time, self.series("n_cloned"), 'g-', linewidth=2, label='Cloned')
        ax.plot(time, self.series("n_eliminated"), 'm-', linewidth=2, label='Eliminated')
        ax.plot(time, self.series("n_empty"), 'k:', linewidth=2, label='Empty cells')
        ax.set_xlabel('Time (s)', fontsize=12)
        ax.set_ylabel('Count', fontsize=12)
        ax.set_title('Population Control', fontsize=14, fontweight='bold')
        ax.legend(fontsize=10)
        ax.grid(True, alpha=0.3)

        # Plot 4: Residual
        ax = axes[1, 1]
        residual = self.series("residual")
        if np.any(residual > 0):
            ax.semilogy(time, residual, 'r-', linewidth=2)
        ax.set_xlabel('Time (s)', fontsize=12)
        ax.set_ylabel('max |Δρ/ρ|', fontsize=12)
        ax.set_title('Density Residual', fontsize=14, fontweight='bold')
        ax.grid(True, alpha=0.3, which='both')

        plt.tight_layout()

        if save_filename:
            plt.savefig(save_filename, dpi=300, bbox_inches='tight')
            print(f"Plot saved to {save_filename}")

        if show:
            plt.show()
        return fig

    def summary(self):
        """
        Print summary statistics.
        """
        print("\n" + "="*70)
        print("DIAGNOSTIC SUMMARY")
        print("="*70)

        if not self.records:
            print("\n  No steps recorded")
            print("="*70 + "\n")
            return

        last = self.records[-1]
        totals = self.totals()

        print(f"\nFinal State (step {last.step}, t = {last.time:.4e} s):")
        print(f"  Live particles: {last.n_particles:,}")
        print(f"  Total mass: {last.total_mass:.4e} kg")
        print(f"  Density residual: {last.residual:.3e}")

        print(f"\nMass Budget (cumulative):")
        print(f"  In:   {totals['mass_in']:.4e} kg")
        print(f"  Out:  {totals['mass_out']:.4e} kg")
        print(f"  Lost: {totals['lost_mass']:.4e} kg ({totals['n_lost']} particles)")

        print(f"\nPopulation Control (cumulative):")
        print(f"  Cloned: {totals['n_cloned']:,}")
        print(f"  Eliminated: {totals['n_eliminated']:,}")

        print("="*70 + "\n")

    def to_dicts(self):
        return [asdict(r) for r in self.records]
