"""
Energy diagnostics for the bouncing ball.

Derives kinetic, potential and deformation energy from the current state and
renders the fixed-width readout shown on screen each frame.
"""

from typing import NamedTuple

from physics import PhysicsConfig, SimulationState, DEFAULT_CONFIG, compression

COLUMN_WIDTH = 5


class EnergyTerms(NamedTuple):
    height: float       # h - y, height of the ball centre above the ground
    kinetic: float
    potential: float
    compression: float
    deformation: float

    @property
    def total(self) -> float:
        return self.kinetic + self.potential + self.deformation


def energy_terms(state: SimulationState, config: PhysicsConfig = None) -> EnergyTerms:
    cfg = config if config is not None else DEFAULT_CONFIG
    height = state.h - state.y
    c = compression(state.y, state.h, cfg.radius)
    return EnergyTerms(
        height=height,
        kinetic=0.5 * state.v ** 2,
        potential=cfg.gravity * height,
        compression=c,
        deformation=0.5 * cfg.spring * c ** 2,
    )


def _col(x: float) -> str:
    return f"{round(x):>{COLUMN_WIDTH}d}"


def format_line(terms: EnergyTerms, v: float) -> str:
    """'h=… v=… K=… P=… D=… E=…' with every value in a 5-char column."""
    return (
        f"h={_col(terms.height)} v={_col(v)} K={_col(terms.kinetic)} "
        f"P={_col(terms.potential)} D={_col(terms.deformation)} E={_col(terms.total)}"
    )


def annotate(state: SimulationState, config: PhysicsConfig = None) -> SimulationState:
    """Recompute state.text from the current physics state."""
    state.text = format_line(energy_terms(state, config), state.v)
    return state
