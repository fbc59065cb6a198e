"""
Controller Tests — event policies (drag, resize, tick), command panel,
session recording and script loading.
"""

import sys
import os
import csv
import json
from pathlib import Path
import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from physics import (
    PhysicsEngine, PhysicsConfig, SimulationState, ClampPolicy, BALL_RADIUS,
)
from controller import (
    BounceController, Tick, DragStart, DragMove, DragEnd, Resize, apply_event,
    DIVERGED_MSG,
)
from scenarios import Preset

R = BALL_RADIUS
SCRIPTS_DIR = Path(__file__).parent.parent / "scripts"


@pytest.fixture
def ctrl():
    c = BounceController()
    c.resize(1000, 800)
    c.pending_events.clear()
    return c


# ── Resize ───────────────────────────────────────────────

class TestResize:

    def test_handle_resize_survives_reset(self, ctrl):
        ctrl.handle(Resize(600, 400))
        ctrl.reset()
        assert ctrl.viewport == (600, 400)
        assert ctrl.state.width == 540.0
        assert ctrl.state.height == 200.0

    def test_resize_scenario(self, ctrl):
        ctrl.handle(Resize(1000, 800))
        assert ctrl.state.width == 900.0
        assert ctrl.state.height == 400.0
        assert ctrl.state.h == 400.0 - R

    def test_resize_rebases_dragged_ground(self, ctrl):
        ctrl.drag_start(0.0)
        ctrl.drag_move(-100.0)
        assert ctrl.state.h == 250.0
        ctrl.resize(1200, 600)
        assert ctrl.state.h == 300.0 - R

    @pytest.mark.parametrize("w, h", [(0, 800), (1000, 0), (-5, -5)])
    def test_degenerate_size_ignored(self, ctrl, w, h):
        before = ctrl.state.copy()
        ctrl.resize(w, h)
        assert ctrl.state == before

    def test_resize_refreshes_text(self, ctrl):
        ctrl.resize(1000, 1000)
        assert ctrl.state.text.startswith(f"h={round(ctrl.state.h - ctrl.state.y):>5d}")


# ── Drag gesture ─────────────────────────────────────────

class TestDrag:

    def test_anchor_lifecycle(self, ctrl):
        assert ctrl.state.drag_anchor is None
        ctrl.drag_start(120.0)
        assert ctrl.state.drag_anchor == 120.0
        ctrl.drag_move(100.0)
        assert ctrl.state.drag_anchor == 100.0
        ctrl.drag_end()
        assert ctrl.state.drag_anchor is None

    def test_move_shifts_ground_by_delta(self, ctrl):
        h0 = ctrl.state.h
        ctrl.drag_start(300.0)
        ctrl.drag_move(260.0)
        ctrl.drag_move(250.0)
        assert ctrl.state.h == pytest.approx(h0 - 50.0)

    def test_move_without_start_is_noop(self, ctrl):
        before = ctrl.state.copy()
        ctrl.drag_move(10.0)
        assert ctrl.state == before

    @pytest.mark.parametrize("bad", [None, float("nan"), float("inf")])
    def test_missing_pointer_is_noop(self, ctrl, bad):
        ctrl.drag_start(bad)
        assert ctrl.state.drag_anchor is None
        ctrl.drag_start(100.0)
        h0 = ctrl.state.h
        ctrl.drag_move(bad)
        assert ctrl.state.h == h0
        assert ctrl.state.drag_anchor == 100.0

    def test_cancel_abandons_gesture(self, ctrl):
        ctrl.drag_start(100.0)
        ctrl.drag_cancel()
        assert not ctrl.state.dragging

    def test_clamp_holds_for_random_moves(self, ctrl):
        lo, hi = ctrl.ground_limits()
        assert (lo, hi) == (1.5 * R, 400.0 - R)
        rng = np.random.RandomState(7)
        ctrl.drag_start(0.0)
        for p in rng.uniform(-2000.0, 2000.0, size=300):
            ctrl.drag_move(float(p))
            assert lo <= ctrl.state.h <= hi

    def test_viewport_policy(self):
        c = BounceController(PhysicsConfig(clamp_policy=ClampPolicy.VIEWPORT))
        c.resize(1000, 800)
        assert c.ground_limits() == (1.5 * R, 400.0)
        c.drag_start(0.0)
        c.drag_move(10000.0)
        assert c.state.h == 400.0

    def test_custom_margin(self):
        c = BounceController(PhysicsConfig(clamp_margin=10.0))
        c.resize(1000, 800)
        assert c.ground_limits()[1] == 390.0

    def test_tiny_viewport_min_wins(self, ctrl):
        ctrl.resize(100, 100)
        ctrl.drag_start(0.0)
        ctrl.drag_move(-500.0)
        assert ctrl.state.h == 1.5 * R


# ── Event dispatch ───────────────────────────────────────

class TestApplyEvent:

    def test_each_event_kind(self):
        engine = PhysicsEngine()
        state = SimulationState()
        apply_event(state, Resize(1000, 800), engine)
        assert state.h == 350.0
        apply_event(state, DragStart(10.0), engine)
        apply_event(state, DragMove(0.0), engine)
        assert state.h == 340.0
        apply_event(state, DragEnd(), engine)
        assert state.drag_anchor is None
        y0 = state.y
        apply_event(state, Tick(16.0), engine)
        assert state.y > y0

    def test_unknown_event_rejected(self):
        with pytest.raises(TypeError):
            apply_event(SimulationState(), "tick", PhysicsEngine())

    def test_zero_tick_is_identity(self, ctrl):
        before = ctrl.state.copy()
        ctrl.handle(Tick(0.0))
        assert ctrl.state == before

    def test_negative_tick_treated_as_zero(self, ctrl):
        before = ctrl.state.copy()
        ctrl.tick(-16.0)
        assert ctrl.state == before


# ── Tick / events ────────────────────────────────────────

class TestTick:

    def test_reset_places_ball_at_top(self, ctrl):
        ctrl.reset()
        assert ctrl.state.y == R
        assert ctrl.state.v == 0.0
        assert ctrl.state.h == 350.0

    def test_bounce_event_emitted(self, ctrl):
        ctrl.load_preset(Preset.squash, "3: Squash")
        ctrl.pending_events.clear()
        for _ in range(40):
            ctrl.tick(16.0)
        types = [e["type"] for e in ctrl.pending_events]
        assert "bounce" in types

    def test_text_updated_every_tick(self, ctrl):
        ctrl.tick(16.0)
        t1 = ctrl.state.text
        ctrl.tick(16.0)
        assert ctrl.state.text != t1

    def test_render_info_squash(self, ctrl):
        ctrl.set_state(y=ctrl.state.h - R + 10.0, v=0.0)
        info = ctrl.render_info()
        assert info["ry"] == pytest.approx(R - 5.0)
        assert info["rx"] == pytest.approx(R * R / (R - 5.0))
        assert info["cy"] + info["ry"] == pytest.approx(ctrl.state.h)
        assert info["cx"] == 450.0

    def test_render_info_round_in_air(self, ctrl):
        info = ctrl.render_info()
        assert info["rx"] == info["ry"] == R


# ── Params ───────────────────────────────────────────────

class TestParams:

    def test_set_params_replaces_config(self, ctrl):
        old = ctrl.config
        ctrl.set_params(drag=0.2)
        assert ctrl.config.drag == 0.2
        assert old.drag == 0.0
        assert ctrl.engine.config is ctrl.config

    def test_unknown_param(self, ctrl):
        with pytest.raises(KeyError):
            ctrl.set_params(mass=2.0)

    def test_policy_by_name(self, ctrl):
        ctrl.set_params(clamp_policy="viewport")
        assert ctrl.config.clamp_policy is ClampPolicy.VIEWPORT

    @pytest.mark.parametrize("bad", [
        {"radius": 0.0}, {"radius": -10.0}, {"substep_dt": 0.0},
        {"spring": -0.5}, {"drag": -0.1}, {"max_substeps": -1},
        {"gravity": float("nan")}, {"time_scale": float("inf")},
        {"clamp_policy": "sideways"},
    ])
    def test_invalid_params_rejected_and_config_kept(self, ctrl, bad):
        old = ctrl.config
        with pytest.raises(ValueError):
            ctrl.set_params(**bad)
        assert ctrl.config is old

    def test_zero_substep_command_keeps_ticking(self, ctrl):
        ctrl.execute_command('{"cmd": "set", "params": {"substep_dt": 0}}')
        assert ctrl.status_msg.startswith("params error")
        assert ctrl.config.substep_dt == 0.01
        ctrl.tick(16.0)
        assert ctrl.engine.steps_taken == 160

    def test_nan_gravity_command_keeps_ticking(self, ctrl):
        ctrl.execute_command('{"cmd": "set", "params": {"gravity": NaN}}')
        assert ctrl.status_msg.startswith("params error")
        assert ctrl.config.gravity == 0.24
        ctrl.tick(16.0)
        assert np.isfinite([ctrl.state.y, ctrl.state.v, ctrl.state.h]).all()

    def test_unstable_config_step_is_rejected(self, ctrl):
        """A spring far too stiff for the sub-step must not leak inf into the state."""
        ctrl.set_params(spring=1e6, substep_dt=1.0)
        ctrl.set_state(y=ctrl.state.h - R + 25.0, v=0.0)
        before = ctrl.state.copy()
        ctrl.tick(1000.0)
        assert ctrl.engine.diverged
        assert ctrl.state == before
        assert ctrl.status_msg == DIVERGED_MSG


# ── Presets ──────────────────────────────────────────────

class TestPresets:

    def test_preset_ground_clamped_to_small_viewport(self, ctrl):
        ctrl.resize(1000, 400)
        ctrl.load_preset(Preset.high_drop, "4: High drop")
        lo, hi = ctrl.ground_limits()
        assert lo <= ctrl.state.h <= hi
        assert ctrl.state.h - ctrl.state.y == pytest.approx(6 * R)

    def test_preset_ground_kept_when_it_fits(self, ctrl):
        ctrl.load_preset(Preset.drop, "1: Drop")
        assert (ctrl.state.y, ctrl.state.h) == (R, 3 * R)


# ── Command panel ────────────────────────────────────────

class TestCommands:

    def test_set_state(self, ctrl):
        ctrl.execute_command('{"cmd": "set", "state": {"y": 120, "v": 3.5}}')
        assert ctrl.state.y == 120.0
        assert ctrl.state.v == 3.5
        assert ctrl.state.h == 350.0

    def test_set_params(self, ctrl):
        ctrl.execute_command('{"cmd": "set", "params": {"gravity": 0.5, "bogus": 1}}')
        assert ctrl.config.gravity == 0.5
        assert "bogus" in ctrl.status_msg

    def test_set_rejects_non_finite(self, ctrl):
        ctrl.execute_command('{"cmd": "set", "state": {"y": NaN}}')
        assert ctrl.state.y == R
        assert ctrl.status_msg.startswith("set:")

    def test_set_state_is_all_or_nothing(self, ctrl):
        text = ctrl.state.text
        ctrl.execute_command('{"cmd": "set", "state": {"y": 123, "v": "nan"}}')
        assert ctrl.state.y == R
        assert ctrl.state.text == text
        assert ctrl.status_msg.startswith("set:")

    @pytest.mark.parametrize("payload", [
        '{"cmd": "set", "state": {"v": 1e200}}',
        '{"cmd": "set", "state": {"y": 1' + "0" * 400 + '}}',
    ])
    def test_set_rejects_huge_values(self, ctrl, payload):
        ctrl.execute_command(payload)
        assert ctrl.state.v == 0.0
        assert ctrl.state.y == R
        assert ctrl.status_msg.startswith("set:")

    def test_bad_json(self, ctrl):
        ctrl.execute_command("{not json")
        assert ctrl.status_msg.startswith("JSON error")

    def test_unknown_cmd(self, ctrl):
        ctrl.execute_command('{"cmd": "fly"}')
        assert ctrl.status_msg.startswith("Unknown cmd")

    def test_state_json_round_trip(self, ctrl):
        ctrl.set_state(y=77.0, v=-1.25, h=300.0)
        text = ctrl.get_state_json()
        ctrl.reset()
        ctrl.execute_command(text)
        assert (ctrl.state.y, ctrl.state.v, ctrl.state.h) == (77.0, -1.25, 300.0)

    def test_save_and_load(self, ctrl, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        ctrl.set_params(drag=0.1, clamp_policy=ClampPolicy.VIEWPORT)
        ctrl.set_state(y=90.0, v=2.0, h=320.0)
        ctrl.execute_command('{"cmd": "save", "file": "snap"}')
        saved = json.loads((tmp_path / "snap.json").read_text(encoding="utf-8"))
        assert saved["params"]["clamp_policy"] == "VIEWPORT"

        other = BounceController()
        other.execute_command('{"cmd": "load", "file": "snap.json"}')
        assert (other.state.y, other.state.v, other.state.h) == (90.0, 2.0, 320.0)
        assert other.config == ctrl.config

    def test_load_missing_file(self, ctrl, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        ctrl.execute_command('{"cmd": "load", "file": "nope"}')
        assert ctrl.status_msg.startswith("load: not found")


# ── Session recording ────────────────────────────────────

class TestRecording:

    def test_csv_energy_trace(self, ctrl, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        ctrl.execute_command('{"cmd": "record", "file": "trace"}')
        assert ctrl.recording
        for _ in range(60):
            ctrl.tick(16.0)
        ctrl.execute_command('{"cmd": "record", "stop": true}')
        assert not ctrl.recording
        assert {"type": "session_saved", "file": "trace.csv"} in ctrl.pending_events

        with open(tmp_path / "trace.csv", newline="", encoding="utf-8") as f:
            rows = list(csv.reader(f))
        assert rows[0] == BounceController.SESSION_HEADER
        assert len(rows) == 1 + 61
        totals = np.array([float(r[7]) for r in rows[1:]])
        assert np.max(np.abs(totals - totals[0])) / totals[0] < 0.01
        assert float(rows[-1][0]) == pytest.approx(60 * 16.0)

    def test_stop_without_start(self, ctrl):
        ctrl.stop_recording()
        assert ctrl.status_msg == "record: not recording."


# ── Scripts ──────────────────────────────────────────────

class TestScripts:

    @pytest.mark.parametrize("path", sorted(SCRIPTS_DIR.glob("*.py")), ids=lambda p: p.stem)
    def test_bundled_scripts_load(self, ctrl, path):
        ctrl.load_script_file(str(path))
        assert ctrl.status_msg.endswith("loaded.")
        lo, hi = ctrl.ground_limits()
        assert lo <= ctrl.state.h <= hi

    def test_bottom_ground_rebased(self, ctrl):
        ctrl.execute_script({"setup": {"y": 60.0, "v": 0.0, "h": "bottom"}})
        assert ctrl.state.h == 350.0

    def test_broken_script(self, ctrl, tmp_path):
        bad = tmp_path / "bad.py"
        bad.write_text("SCRIPT = {\n", encoding="utf-8")
        ctrl.load_script_file(str(bad))
        assert ctrl.status_msg.startswith("Script error")

    def test_missing_script_variable(self, ctrl, tmp_path):
        empty = tmp_path / "empty.py"
        empty.write_text("X = 1\n", encoding="utf-8")
        ctrl.load_script_file(str(empty))
        assert ctrl.status_msg.startswith("No SCRIPT variable")

    def test_cycle_and_reload(self, ctrl, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "scripts").mkdir()
        (tmp_path / "scripts" / "a.py").write_text(
            'SCRIPT = {"name": "a", "params": {"spring": 1.5}, "setup": {"y": 70.0}}\n',
            encoding="utf-8")
        ctrl.load_next_script()
        assert ctrl.config.spring == 1.5
        assert ctrl.state.y == 70.0
        ctrl.set_state(y=200.0)
        ctrl.reload_script()
        assert ctrl.state.y == 70.0
