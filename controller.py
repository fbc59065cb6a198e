"""
BounceController — Layer 2 (Interaction Logic)

Owns the single SimulationState, the physics config and every mutation policy
(tick, drag gesture, resize). Communicates with Layer 3 (main.py / server.py)
via one queue:
  - pending_events : rendering/sound commands (bounce, preset_loaded, …)

Layer 3 calls:
  ctrl.tick(ms)                     — advance physics + refresh the readout
  ctrl.drag_start/move/end(p)       — pointer gesture on the vertical axis
  ctrl.resize(w, h)                 — viewport change in device-independent px
  ctrl.render_info()                — ellipse / ground line / text to draw
  ctrl.pending_events               — list of dicts to consume and act on
"""

import csv
import json
import math
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Optional, Union

from physics import (
    PhysicsEngine, PhysicsConfig, SimulationState, ClampPolicy,
    VIEWPORT_WIDTH_FACTOR, VIEWPORT_HEIGHT_FACTOR, STATE_LIMIT,
    clamp, compression, is_bounded,
)
from diagnostics import annotate, energy_terms


# ── Events (one per host input kind) ──────────────────────────────────────────

@dataclass(frozen=True)
class Tick:
    elapsed_ms: float


@dataclass(frozen=True)
class DragStart:
    pointer: Optional[float]


@dataclass(frozen=True)
class DragMove:
    pointer: Optional[float]


@dataclass(frozen=True)
class DragEnd:
    pass


@dataclass(frozen=True)
class Resize:
    width: float
    height: float


Event = Union[Tick, DragStart, DragMove, DragEnd, Resize]


# ── State mutation policies ───────────────────────────────────────────────────

def _valid_pointer(p) -> bool:
    return p is not None and math.isfinite(p)


def ground_limits(state: SimulationState, config: PhysicsConfig) -> tuple:
    """(minH, maxH) for dragging the ground line in the current viewport."""
    return config.min_ground, config.max_ground(state.height)


def drag_start(state: SimulationState, pointer: Optional[float]) -> None:
    if not _valid_pointer(pointer):
        return
    state.drag_anchor = float(pointer)


def drag_move(state: SimulationState, pointer: Optional[float],
              config: PhysicsConfig) -> None:
    """Shift the ground by the pointer delta since the last move, clamped."""
    if state.drag_anchor is None or not _valid_pointer(pointer):
        return
    lo, hi = ground_limits(state, config)
    state.h = clamp(lo, hi, state.h + (pointer - state.drag_anchor))
    state.drag_anchor = float(pointer)
    annotate(state, config)


def drag_end(state: SimulationState) -> None:
    state.drag_anchor = None


def resize(state: SimulationState, width: float, height: float,
           config: PhysicsConfig) -> None:
    """Rescale the viewport and rebase the ground line to its bottom."""
    if not (width > 0 and height > 0):
        return
    state.width = VIEWPORT_WIDTH_FACTOR * width
    state.height = VIEWPORT_HEIGHT_FACTOR * height
    state.h = state.height - config.radius
    annotate(state, config)


def apply_event(state: SimulationState, event: Event,
                engine: PhysicsEngine) -> SimulationState:
    """Single dispatcher for every host event."""
    config = engine.config
    if isinstance(event, Tick):
        engine.advance(state, event.elapsed_ms)
        annotate(state, config)
    elif isinstance(event, DragStart):
        drag_start(state, event.pointer)
    elif isinstance(event, DragMove):
        drag_move(state, event.pointer, config)
    elif isinstance(event, DragEnd):
        drag_end(state)
    elif isinstance(event, Resize):
        resize(state, event.width, event.height, config)
    else:
        raise TypeError(f"unknown event: {event!r}")
    return state


# ── Default info-bar message ───────────────────────────────────────────────────
DEFAULT_INFO_MSG = (
    "Drag to move the ground  [1-4] Preset  [R] Reset  "
    "[ / ] Drag coeff  [L] Script  [C] Record  [S] Snapshot"
)
DIVERGED_MSG = "Physics diverged: step rejected. Try a smaller substep_dt."


class BounceController:
    """Layer 2: state owner + event policies."""

    # ── Class-level constants ─────────────────────────────────────────────────
    DEFAULT_VIEWPORT = (1280, 800)
    EDITABLE_PARAMS = ("radius", "spring", "gravity", "drag",
                       "time_scale", "substep_dt", "max_substeps",
                       "clamp_policy", "clamp_margin")

    # ── Constructor ───────────────────────────────────────────────────────────

    def __init__(self, config: PhysicsConfig = None):
        self.engine = PhysicsEngine(config)
        self.state = SimulationState()
        self.viewport = self.DEFAULT_VIEWPORT

        # Status / info messages (L3 reads these to update text entities)
        self.status_msg = ""
        self.info_msg   = DEFAULT_INFO_MSG

        # Contact tracking (bounce events for sounds/flashes)
        self._in_contact = False

        # Script state
        self._last_script_path = ""
        self._last_script: dict = {}
        self._script_index = -1

        # Session recording
        self._session_recording = False
        self._session_rows: list = []
        self._session_file  = ""
        self._session_t     = 0.0

        # Event queue
        self.pending_events: list[dict] = []

        self.reset()

    @property
    def config(self) -> PhysicsConfig:
        return self.engine.config

    # ──────────────────────────────────────────────────────────────────────────
    # Main loop
    # ──────────────────────────────────────────────────────────────────────────

    def tick(self, elapsed_ms: float) -> None:
        """Advance physics by elapsed_ms of real time. Called every frame by L3."""
        if not math.isfinite(elapsed_ms) or elapsed_ms < 0:
            elapsed_ms = 0.0
        apply_event(self.state, Tick(elapsed_ms), self.engine)
        if self.engine.diverged and self.status_msg != DIVERGED_MSG:
            print(f"[ADV] step diverged, state kept: {self.config}")
            self.status_msg = DIVERGED_MSG

        in_contact = self.engine.is_in_contact(self.state)
        if self._in_contact and not in_contact:
            self.pending_events.append({"type": "bounce", "speed": abs(self.state.v)})
        elif in_contact and not self._in_contact:
            self.pending_events.append({"type": "contact", "speed": abs(self.state.v)})
        self._in_contact = in_contact

        if self._session_recording:
            self._session_t += elapsed_ms
            self._session_record_frame()

    def handle(self, event: Event) -> None:
        """Route a host event through the controller."""
        if isinstance(event, Tick):
            self.tick(event.elapsed_ms)
        elif isinstance(event, Resize):
            self.resize(event.width, event.height)
        else:
            apply_event(self.state, event, self.engine)

    # ──────────────────────────────────────────────────────────────────────────
    # Interaction
    # ──────────────────────────────────────────────────────────────────────────

    def drag_start(self, pointer: Optional[float]) -> None:
        self.handle(DragStart(pointer))

    def drag_move(self, pointer: Optional[float]) -> None:
        self.handle(DragMove(pointer))

    def drag_end(self) -> None:
        self.handle(DragEnd())

    def drag_cancel(self) -> None:
        """Pointer left the surface mid-gesture: abandon the drag."""
        self.handle(DragEnd())

    def resize(self, width: float, height: float) -> None:
        if width > 0 and height > 0:
            self.viewport = (width, height)
        apply_event(self.state, Resize(width, height), self.engine)

    def ground_limits(self) -> tuple:
        return ground_limits(self.state, self.config)

    # ──────────────────────────────────────────────────────────────────────────
    # State management
    # ──────────────────────────────────────────────────────────────────────────

    def reset(self) -> None:
        """Ball at rest at the top of the viewport, ground at the bottom."""
        self.state = SimulationState()
        resize(self.state, self.viewport[0], self.viewport[1], self.config)
        self.state.y = self.config.radius
        self.state.v = 0.0
        annotate(self.state, self.config)
        self._in_contact = self.engine.is_in_contact(self.state)
        self.status_msg = "Reset."
        self.pending_events.append({"type": "reset"})

    def set_state(self, y: float = None, v: float = None, h: float = None) -> None:
        """Overwrite physics fields; viewport and drag gesture are kept."""
        values = {}
        for name, value in (("y", y), ("v", v), ("h", h)):
            if value is None:
                continue
            value = float(value)
            if not is_bounded(value, STATE_LIMIT):
                raise ValueError(f"{name} must be finite and within {STATE_LIMIT:g}, got {value}")
            values[name] = value
        for name, value in values.items():
            setattr(self.state, name, value)
        annotate(self.state, self.config)
        self._in_contact = self.engine.is_in_contact(self.state)

    def set_params(self, **params) -> PhysicsConfig:
        """Replace the physics config with the given fields changed."""
        unknown = [k for k in params if k not in self.EDITABLE_PARAMS]
        if unknown:
            raise KeyError(f"unknown params: {unknown}")
        if "clamp_policy" in params and not isinstance(params["clamp_policy"], ClampPolicy):
            name = str(params["clamp_policy"]).upper()
            if name not in ClampPolicy.__members__:
                raise ValueError(f"unknown clamp_policy {params['clamp_policy']!r}")
            params["clamp_policy"] = ClampPolicy[name]
        self.engine.config = self.config.with_params(**params)
        annotate(self.state, self.config)
        self.pending_events.append({"type": "params_changed", "params": list(params.keys())})
        return self.config

    def load_preset(self, preset_fn, label: str) -> None:
        """Load a preset (keys 1-4) into the live state without running it."""
        result = preset_fn(run=False)
        preset_state = result["state"]
        # Presets pick the physics, the user keeps the ground clamp rule
        self.engine.config = replace(result["engine"].config,
                                     clamp_policy=self.config.clamp_policy,
                                     clamp_margin=self.config.clamp_margin)
        # Keep the ball-to-ground geometry when the viewport forces the ground up
        lo, hi = self.ground_limits()
        ground = clamp(lo, hi, preset_state.h)
        self.set_state(y=preset_state.y + (ground - preset_state.h), v=preset_state.v, h=ground)
        self.state.drag_anchor = None
        self.status_msg = f"Preset {label}"
        self.pending_events.append({"type": "preset_loaded", "label": label})

    # ──────────────────────────────────────────────────────────────────────────
    # Rendering info
    # ──────────────────────────────────────────────────────────────────────────

    def render_info(self) -> dict:
        """Ellipse (squashed against the ground) + ground line + text."""
        s = self.state
        R = self.config.radius
        c = compression(s.y, s.h, R)
        ry = R - c / 2
        rx = R * R / ry
        return {
            "cx": s.width / 2,
            "cy": s.y - c / 2,
            "rx": rx,
            "ry": ry,
            "ground": s.h,
            "width": s.width,
            "height": s.height,
            "text": s.text,
        }

    # ──────────────────────────────────────────────────────────────────────────
    # Command panel
    # ──────────────────────────────────────────────────────────────────────────

    def _params_dict(self) -> dict:
        out = {}
        for f in fields(self.config):
            val = getattr(self.config, f.name)
            out[f.name] = val.name if isinstance(val, ClampPolicy) else val
        return out

    def get_state_json(self) -> str:
        """Return current state as compact single-line set-command JSON."""
        s = self.state
        payload = {
            "cmd": "set",
            "state": {"y": round(s.y, 4), "v": round(s.v, 4), "h": round(s.h, 4)},
        }
        return json.dumps(payload, separators=(',', ':'))

    def execute_command(self, text: str) -> None:
        """Parse a JSON command string and dispatch to handlers."""
        if not text:
            print("[ADV] execute_command: empty text")
            return
        text = text.replace('\r', '')
        print(f"[ADV] execute_command: parsing JSON len={len(text)}")
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            print(f"[ADV] JSON parse error: {exc}")
            self.status_msg = f"JSON error: {exc}"
            return
        if not isinstance(data, dict):
            self.status_msg = "Command must be a JSON object."
            return
        cmd = str(data.get("cmd", "")).lower().strip()
        print(f"[ADV] cmd={cmd}")
        if cmd == "set":
            self._adv_cmd_set(data)
        elif cmd == "save":
            self._adv_cmd_save(data)
        elif cmd == "load":
            self._adv_cmd_load(data)
        elif cmd == "record":
            self._adv_cmd_record(data)
        else:
            self.status_msg = f"Unknown cmd '{cmd}'. Use set/save/load/record."

    def _adv_cmd_set(self, data: dict) -> None:
        """set: update y/v/h and/or physics params."""
        params_data = data.get("params")
        state_data = data.get("state")
        if params_data is None and state_data is None:
            self.status_msg = "set: 'state' or 'params' field required."
            return

        if params_data is not None:
            self._adv_cmd_params(params_data)
        if state_data is not None:
            try:
                self.set_state(y=state_data.get("y"), v=state_data.get("v"),
                               h=state_data.get("h"))
            except (AttributeError, TypeError, ValueError, OverflowError) as exc:
                print(f"[ADV] set state failed: {exc}")
                self.status_msg = f"set: {exc}"
                return
            print(f"[ADV] state -> y={self.state.y:.3f} v={self.state.v:.3f} h={self.state.h:.3f}")
            self.status_msg = "set: state updated."

    def _adv_cmd_params(self, params: dict) -> None:
        """set params: replace config fields by name."""
        updated, skipped = {}, []
        try:
            for k, v in params.items():
                if k not in self.EDITABLE_PARAMS:
                    skipped.append(k)
                elif k == "clamp_policy" or v is None:
                    updated[k] = v
                elif k == "max_substeps":
                    updated[k] = int(v)
                else:
                    updated[k] = float(v)
            self.set_params(**updated)
        except (AttributeError, KeyError, TypeError, ValueError, OverflowError) as exc:
            print(f"[ADV] params failed: {exc}")
            self.status_msg = f"params error: {exc}"
            return
        msg = f"params: set {sorted(updated)}"
        if skipped:
            msg += f"  (unknown: {skipped})"
        print(f"[ADV] {msg}")
        self.status_msg = msg

    def _adv_cmd_save(self, data: dict) -> None:
        """save: write state + params to a JSON file."""
        file_opt = data.get("file", "")
        if not file_opt:
            from datetime import datetime
            fname = datetime.now().strftime("%H%M%S") + "_state.json"
        else:
            fname = file_opt if file_opt.endswith(".json") else file_opt + ".json"

        s = self.state
        payload = {
            "cmd": "set",
            "state": {"y": s.y, "v": s.v, "h": s.h},
            "params": self._params_dict(),
        }
        try:
            with open(fname, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            print(f"[ADV] save → {fname}")
            self.status_msg = f"Saved → {fname}"
        except OSError as e:
            self.status_msg = f"Save error: {e}"

    def _adv_cmd_load(self, data: dict) -> None:
        """load: restore state + params from a file saved by 'save'."""
        file_opt = data.get("file", "")
        if not file_opt:
            self.status_msg = "load: 'file' field required."
            return
        fname = file_opt if file_opt.endswith(".json") else file_opt + ".json"
        try:
            with open(fname, "r", encoding="utf-8") as f:
                loaded = json.load(f)
            print(f"[ADV] load ← {fname}")
        except FileNotFoundError:
            self.status_msg = f"load: not found: {fname}"
            return
        except (OSError, json.JSONDecodeError) as e:
            self.status_msg = f"Load error: {e}"
            return
        self._adv_cmd_set(loaded)

    def _adv_cmd_record(self, data: dict) -> None:
        """record: start (file optional) or stop a CSV energy trace."""
        if data.get("stop", False):
            self.stop_recording()
        else:
            self.start_recording(data.get("file") or None)

    # ──────────────────────────────────────────────────────────────────────────
    # Script system
    # ──────────────────────────────────────────────────────────────────────────

    def collect_script_files(self) -> list:
        """Return sorted list of .py files from scripts/ dir."""
        scripts_dir = Path("scripts")
        if not scripts_dir.is_dir():
            return []
        return sorted(scripts_dir.glob("*.py"))

    def execute_script(self, script: dict) -> None:
        """Execute a script dict: optional 'params' then 'setup' (y/v/h)."""
        self._last_script = script
        params = script.get("params")
        if params:
            self._adv_cmd_params(params)
        setup = script.get("setup", {})
        ground = setup.get("h")
        if ground == "bottom":
            ground = self.state.height - self.config.radius
        try:
            self.set_state(y=setup.get("y"), v=setup.get("v"), h=ground)
        except (TypeError, ValueError, OverflowError) as exc:
            print(f"[SCRIPT] bad setup: {exc}")
            self.status_msg = f"Script error: {exc}"
            return
        self.state.drag_anchor = None
        self.status_msg = f"Script: {script.get('name', 'unnamed')} loaded."
        print(f"[SCRIPT] {self.status_msg}")

    def load_script_file(self, path: str) -> None:
        """Load and execute a script from a .py file defining SCRIPT."""
        import importlib.util
        abs_path = os.path.abspath(path)
        if not os.path.exists(abs_path):
            self.status_msg = f"Script not found: {abs_path}"
            return
        spec = importlib.util.spec_from_file_location("_user_bounce_script", abs_path)
        mod  = importlib.util.module_from_spec(spec)
        try:
            spec.loader.exec_module(mod)
        except Exception as exc:
            print(f"[SCRIPT] import failed: {exc}")
            self.status_msg = f"Script error: {exc}"
            return
        script = getattr(mod, "SCRIPT", None)
        if script is None:
            self.status_msg = f"No SCRIPT variable in {os.path.basename(abs_path)}"
            return
        self._last_script_path = abs_path
        self.execute_script(script)

    def load_next_script(self) -> None:
        """Cycle through scripts/*.py (key L)."""
        files = self.collect_script_files()
        if not files:
            self.status_msg = "No scripts in scripts/."
            return
        self._script_index = (self._script_index + 1) % len(files)
        self.load_script_file(str(files[self._script_index]))

    def reload_script(self) -> None:
        """Re-execute the last loaded script."""
        if self._last_script_path:
            self.load_script_file(self._last_script_path)
        elif self._last_script:
            self.execute_script(self._last_script)
        else:
            self.status_msg = "No script loaded yet."

    # ──────────────────────────────────────────────────────────────────────────
    # Session recording
    # ──────────────────────────────────────────────────────────────────────────

    SESSION_HEADER = ["t_ms", "y", "v", "h", "K", "P", "D", "E", "contact"]

    @property
    def recording(self) -> bool:
        return self._session_recording

    def start_recording(self, fname: str = None) -> None:
        if fname is None:
            from datetime import datetime
            fname = datetime.now().strftime("%H%M%S") + ".csv"
        elif not fname.endswith(".csv"):
            fname += ".csv"
        self._session_recording = True
        self._session_rows      = []
        self._session_t         = 0.0
        self._session_file      = fname
        self._session_record_frame()
        print(f"[REC] Recording started → {fname}")
        self.status_msg = f"Recording → {fname}"

    def stop_recording(self) -> None:
        if not self._session_recording:
            self.status_msg = "record: not recording."
            return
        saved = self._session_file
        self._session_write_csv()
        self.pending_events.append({"type": "session_saved", "file": saved})
        self.status_msg = f"Recorded → {saved}"

    def _session_record_frame(self) -> None:
        s = self.state
        e = energy_terms(s, self.config)
        self._session_rows.append([
            f"{self._session_t:.3f}",
            f"{s.y:.6f}", f"{s.v:.6f}", f"{s.h:.6f}",
            f"{e.kinetic:.6f}", f"{e.potential:.6f}",
            f"{e.deformation:.6f}", f"{e.total:.6f}",
            int(e.compression > 0),
        ])

    def _session_write_csv(self) -> None:
        path = self._session_file
        try:
            with open(path, "w", newline="", encoding="utf-8") as f:
                writer = csv.writer(f)
                writer.writerow(self.SESSION_HEADER)
                writer.writerows(self._session_rows)
            print(f"[REC] Saved {len(self._session_rows)} frames → {path}")
        except OSError as e:
            print(f"[REC] Write failed: {e}")
        self._session_recording = False
        self._session_rows.clear()
        self._session_file  = ""
        self._session_t     = 0.0
