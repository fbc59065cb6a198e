"""
Bouncing Ball Physics Engine
Layer 1: point mass on a spring-damper ground line, fixed-size sub-stepping.

Coordinates follow screen space: y grows downward, so gravity is a positive
acceleration and the ground line h sits below the ball (h > y).
"""

import enum
import math
from dataclasses import dataclass, replace
from typing import List, Optional

# ──────────────────────────────────────────────
# Constants (scene units = px, time unit = 10 ms)
# ──────────────────────────────────────────────
BALL_RADIUS: float = 50.0
SPRING_CONST: float = 0.5       # contact stiffness per unit mass
GRAVITY: float = 0.24           # px / unit^2
DRAG_COEFF: float = 0.0         # viscous drag; 0 = bounces forever

# Time stepping
TIME_SCALE: float = 0.1         # simulated units per real millisecond
SUBSTEP_DT: float = 0.01        # simulated duration of one sub-step
MAX_SUBSTEPS: int = 20000       # 2 s of real time per advance() call

# Interaction
MIN_GROUND_FACTOR: float = 1.5  # ground can't be dragged above 1.5 * radius
VIEWPORT_WIDTH_FACTOR: float = 0.9
VIEWPORT_HEIGHT_FACTOR: float = 0.5

# Sanity bounds (editable params / state magnitudes)
PARAM_LIMIT: float = 1e6
STATE_LIMIT: float = 1e9


class ClampPolicy(enum.Enum):
    MARGIN = 0      # maxH = viewport height - margin
    VIEWPORT = 1    # maxH = viewport height


@dataclass(frozen=True)
class PhysicsConfig:
    """Read-only simulation constants. Swap with dataclasses.replace()."""
    radius: float = BALL_RADIUS
    spring: float = SPRING_CONST
    gravity: float = GRAVITY
    drag: float = DRAG_COEFF
    time_scale: float = TIME_SCALE
    substep_dt: float = SUBSTEP_DT
    max_substeps: int = MAX_SUBSTEPS
    clamp_policy: ClampPolicy = ClampPolicy.MARGIN
    clamp_margin: Optional[float] = None

    @property
    def substeps_per_ms(self) -> float:
        return self.time_scale / self.substep_dt

    @property
    def min_ground(self) -> float:
        return MIN_GROUND_FACTOR * self.radius

    def max_ground(self, viewport_height: float) -> float:
        if self.clamp_policy == ClampPolicy.VIEWPORT:
            return viewport_height
        margin = self.radius if self.clamp_margin is None else self.clamp_margin
        return viewport_height - margin

    def with_params(self, **params) -> "PhysicsConfig":
        return replace(self, **params).validate()

    def validate(self) -> "PhysicsConfig":
        """Raise ValueError unless every field is usable by the integrator."""
        for name in ("radius", "spring", "gravity", "drag", "time_scale", "substep_dt"):
            value = getattr(self, name)
            if not is_bounded(value, PARAM_LIMIT):
                raise ValueError(f"{name} must be finite and within {PARAM_LIMIT:g}, got {value}")
        if self.radius <= 0:
            raise ValueError(f"radius must be positive, got {self.radius}")
        if self.substep_dt <= 0:
            raise ValueError(f"substep_dt must be positive, got {self.substep_dt}")
        for name in ("spring", "drag", "time_scale"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative, got {getattr(self, name)}")
        if not isinstance(self.max_substeps, int) or self.max_substeps < 0:
            raise ValueError(f"max_substeps must be a non-negative int, got {self.max_substeps!r}")
        if not isinstance(self.clamp_policy, ClampPolicy):
            raise ValueError(f"unknown clamp_policy {self.clamp_policy!r}")
        if self.clamp_margin is not None and not is_bounded(self.clamp_margin, PARAM_LIMIT):
            raise ValueError(f"clamp_margin must be finite, got {self.clamp_margin}")
        return self


DEFAULT_CONFIG = PhysicsConfig()


@dataclass
class SimulationState:
    """The single mutable record owned by the host loop."""
    y: float = BALL_RADIUS
    v: float = 0.0
    h: float = 3 * BALL_RADIUS
    width: float = 0.0
    height: float = 0.0
    drag_anchor: Optional[float] = None
    text: str = ""

    @property
    def dragging(self) -> bool:
        return self.drag_anchor is not None

    def copy(self) -> "SimulationState":
        return replace(self)


def clamp(lo: float, hi: float, x: float) -> float:
    """Clamp x into [lo, hi]; lo wins when the range is empty."""
    return max(lo, min(hi, x))


def is_bounded(x, limit: float) -> bool:
    """True for a finite real number no larger than limit in magnitude."""
    return isinstance(x, (int, float)) and math.isfinite(x) and abs(x) <= limit


def compression(y: float, h: float, radius: float) -> float:
    """Depth of the lower hemisphere below the ground line, in [0, radius]."""
    return clamp(0.0, radius, y + radius - h)


class PhysicsEngine:
    """Midpoint-style integrator for the ball's vertical motion."""

    def __init__(self, config: PhysicsConfig = None):
        self.config = config if config is not None else DEFAULT_CONFIG
        self.steps_taken: int = 0
        self.diverged: bool = False

    # ──────────────────────────────────────────
    # Sub-step scheduling
    # ──────────────────────────────────────────
    def substep_count(self, elapsed_ms: float) -> int:
        """Number of fixed sub-steps covering elapsed_ms of real time."""
        if not math.isfinite(elapsed_ms) or elapsed_ms <= 0:
            return 0
        n = elapsed_ms * self.config.substeps_per_ms
        if not n < self.config.max_substeps:
            return self.config.max_substeps
        return int(round(n))

    # ──────────────────────────────────────────
    # Integration
    # ──────────────────────────────────────────
    def step(self, state: SimulationState, dt: float) -> None:
        """Advance one sub-step of simulated duration dt.

        Compression is sampled at the predicted midpoint y + v*dt/2, and the
        position moves with the average of the old and new velocity. For the
        linear spring this map has unit determinant, so energy stays bounded.
        """
        cfg = self.config
        y, v = state.y, state.v
        y_mid = y + 0.5 * v * dt
        c = compression(y_mid, state.h, cfg.radius)
        accel = cfg.gravity - cfg.spring * c - cfg.drag * v
        v_new = v + accel * dt
        state.y = y + 0.5 * (v + v_new) * dt
        state.v = v_new

    def advance(self, state: SimulationState, elapsed_ms: float) -> SimulationState:
        """Advance state by elapsed_ms of real time. Returns the same state."""
        n = self.substep_count(elapsed_ms)
        dt = self.config.substep_dt
        y0, v0 = state.y, state.v
        for _ in range(n):
            self.step(state, dt)
        self.steps_taken = n
        # An unstable config (stiff spring, coarse dt) must not leak inf/nan
        self.diverged = not (is_bounded(state.y, STATE_LIMIT) and is_bounded(state.v, STATE_LIMIT))
        if self.diverged:
            state.y, state.v = y0, v0
        return state

    def is_in_contact(self, state: SimulationState) -> bool:
        return state.y + self.config.radius > state.h

    def simulate(self, state: SimulationState, total_ms: float,
                 frame_ms: float = 16.0) -> List[SimulationState]:
        """
        Run headless ticks of frame_ms until total_ms of real time has passed.

        Returns:
            Snapshot of the state after each tick (the input state is mutated).
        """
        if not (frame_ms > 0 and math.isfinite(frame_ms) and math.isfinite(total_ms)):
            raise ValueError(f"simulate needs a positive frame_ms and finite total_ms, "
                             f"got frame_ms={frame_ms} total_ms={total_ms}")
        frames = []
        t = 0.0
        while t < total_ms:
            tick = min(frame_ms, total_ms - t)
            self.advance(state, tick)
            frames.append(state.copy())
            t += tick
        return frames
