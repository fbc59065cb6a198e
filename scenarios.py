"""
Bounce Presets
Four set-ups (drop, settle with drag, squash, high drop) that place the ball,
pick the physics config and optionally run a headless simulation.
"""

import numpy as np
from physics import PhysicsEngine, SimulationState, DEFAULT_CONFIG

# Headless tick size (one 60 Hz frame)
_FRAME_MS = 16.0


def _run(engine, state, total_ms) -> dict:
    frames = engine.simulate(state, total_ms, frame_ms=_FRAME_MS)
    ys = np.array([f.y for f in frames])
    peak = int(np.argmax(ys))
    return {
        "frames": frames,
        "ys": ys,
        "elapsed": total_ms,
        "max_y": float(ys[peak]),
        "min_y_after_max": float(np.min(ys[peak:])),
    }


def _result(engine, state, run, total_ms) -> dict:
    out = {"state": state, "engine": engine, "frames": [], "ys": np.empty(0),
           "elapsed": 0.0, "max_y": state.y, "min_y_after_max": state.y}
    if run:
        out.update(_run(engine, state, total_ms))
    return out


class Preset:
    """Each preset places the ball → picks the config → optionally simulates."""

    @staticmethod
    def drop(run=True) -> dict:
        """Ball at rest one radius from the origin, ground two radii further down."""
        engine = PhysicsEngine(DEFAULT_CONFIG)
        R = engine.config.radius
        state = SimulationState(y=R, v=0.0, h=3 * R)
        return _result(engine, state, run, 1000.0)

    @staticmethod
    def settle(drag: float = 0.05, run=True) -> dict:
        """Damped bounce: the ball loses energy each cycle and comes to rest."""
        engine = PhysicsEngine(DEFAULT_CONFIG.with_params(drag=drag))
        R = engine.config.radius
        state = SimulationState(y=R, v=0.0, h=5 * R)
        return _result(engine, state, run, 5000.0)

    @staticmethod
    def squash(depth: float = 0.5, run=True) -> dict:
        """Ball released already pressed into the ground by depth * radius."""
        engine = PhysicsEngine(DEFAULT_CONFIG)
        R = engine.config.radius
        h = 4 * R
        state = SimulationState(y=h - R + depth * R, v=0.0, h=h)
        return _result(engine, state, run, 1000.0)

    @staticmethod
    def high_drop(run=True) -> dict:
        """Long fall; contact gets deep but stays inside the lower hemisphere."""
        engine = PhysicsEngine(DEFAULT_CONFIG)
        R = engine.config.radius
        state = SimulationState(y=R, v=0.0, h=7 * R)
        return _result(engine, state, run, 2000.0)


# Key → (preset, label) map shared by both hosts
PRESETS = {
    "1": (Preset.drop,      "1: Drop"),
    "2": (Preset.settle,    "2: Settle"),
    "3": (Preset.squash,    "3: Squash"),
    "4": (Preset.high_drop, "4: High drop"),
}
