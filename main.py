"""
Bouncing Ball Visualizer (3-Tier Architecture)
Layer 3: Ursina rendering / input handling.
Layer 2: controller.py (BounceController)
Layer 1: physics.py (PhysicsEngine), diagnostics.py (energy readout)

Left-drag anywhere to move the ground line up and down.
Press 1-4 for presets, R to reset, [ / ] to change drag, L to cycle scripts,
C to record, S to snapshot.
"""

import os
import tempfile
import wave
from pathlib import Path
import numpy as np
from ursina import (
    Ursina, Entity, Text, Audio, camera, color, window, mouse,
    time as ursina_time,
)

from controller import BounceController, DEFAULT_INFO_MSG
from scenarios import PRESETS
from snapshot import save_frame

# ── Layer 2: controller instance ──────────────────────────────────────────────
ctrl = BounceController()

# ──────────────────────────────────────────
# Synthesized Sound Effects (numpy + wave)
# ──────────────────────────────────────────

_sound_dir = tempfile.mkdtemp(prefix="bounce_snd_")


def _synth_wav(filename, samples):
    """Write mono 16-bit 44100Hz WAV and return Path object."""
    path = os.path.join(_sound_dir, filename)
    data = np.clip(samples, -1.0, 1.0)
    data_int = (data * 32767).astype(np.int16)
    with wave.open(path, "w") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(44100)
        wf.writeframes(data_int.tobytes())
    return Path(path)


def _synth_thump():
    sr = 44100; dur = 0.12
    t = np.linspace(0, dur, int(sr * dur), endpoint=False)
    env = np.exp(-t * 35)
    sig = env * np.sin(2 * np.pi * (180 - 400 * t) * t)
    return _synth_wav("thump.wav", sig * 0.8)


# ──────────────────────────────────────────
# Ursina App
# ──────────────────────────────────────────

app = Ursina(borderless=False, title="Bouncing Ball", size=ctrl.DEFAULT_VIEWPORT)
window.color = color.hsv(240, 0.25, 0.09)

# Scene px → camera.ui units. UI height is 1 unit for the whole window.
TOP_UI = 0.45

ball_entity = Entity(parent=camera.ui, model="circle", color=color.hsv(200, 0.2, 1.0))
ground_entity = Entity(parent=camera.ui, model="quad", color=color.hsv(120, 0.4, 0.8))

readout_text = Text(text="", font="VeraMono.ttf", position=(-0.7, 0.49), scale=1.0,
                    color=color.white)
info_text = Text(text=DEFAULT_INFO_MSG, position=(-0.7, -0.44), scale=0.9,
                 color=color.light_gray)
status_text = Text(text="", position=(-0.7, -0.40), scale=0.9, color=color.light_gray)

thump_path = _synth_thump()
snd_thump = None
_sounds_loaded = False
_last_window_size = None


def _load_sounds():
    global snd_thump, _sounds_loaded
    if _sounds_loaded:
        return
    try:
        snd_thump = Audio(thump_path, autoplay=False)
        _sounds_loaded = True
    except Exception as exc:
        print(f"[SND] audio unavailable: {exc}")
        _sounds_loaded = True


# ──────────────────────────────────────────
# Helper functions (L3 only)
# ──────────────────────────────────────────

def _px_scale() -> float:
    return 1.0 / float(window.size[1])


def _pointer_scene_y():
    """mouse.y (UI units, up positive) → scene coordinate (px, down positive)."""
    if mouse.y is None:
        return None
    return (TOP_UI - mouse.y) / _px_scale()


def _poll_resize():
    global _last_window_size
    size = (int(window.size[0]), int(window.size[1]))
    if size != _last_window_size:
        _last_window_size = size
        ctrl.resize(*size)


def _sync_entities():
    info = ctrl.render_info()
    s = _px_scale()
    left = -info["width"] * s / 2
    ball_entity.position = (left + info["cx"] * s, TOP_UI - info["cy"] * s)
    ball_entity.scale = (2 * info["rx"] * s, 2 * info["ry"] * s)
    ground_entity.position = (0, TOP_UI - info["ground"] * s)
    ground_entity.scale = (info["width"] * s, 2 * s)
    readout_text.text = info["text"]


def _handle_controller_event(ev: dict):
    t = ev["type"]
    if t == "bounce" and snd_thump:
        snd_thump.volume = min(1.0, ev["speed"] / 8.0)
        snd_thump.play()
    elif t == "session_saved":
        status_text.text = f"Recorded → {ev['file']}"


# ──────────────────────────────────────────
# Input handler
# ──────────────────────────────────────────

def input(key):
    if key == "left mouse down":
        ctrl.drag_start(_pointer_scene_y())
    elif key == "left mouse up":
        ctrl.drag_end()
    elif key == "r":
        ctrl.reset()
    elif key in PRESETS:
        fn, label = PRESETS[key]
        ctrl.load_preset(fn, label)
    elif key in ("[", "]"):
        step = 0.01 if key == "]" else -0.01
        ctrl.set_params(drag=max(0.0, round(ctrl.config.drag + step, 4)))
        ctrl.status_msg = f"drag = {ctrl.config.drag:.2f}"
    elif key == "c":
        if ctrl.recording:
            ctrl.stop_recording()
        else:
            ctrl.start_recording()
    elif key == "l":
        ctrl.load_next_script()
    elif key == "s":
        save_frame(ctrl, "snapshot.png")
        ctrl.status_msg = "Snapshot → snapshot.png"


# ──────────────────────────────────────────
# Update loop
# ──────────────────────────────────────────

def update():
    _load_sounds()
    _poll_resize()

    if ctrl.state.dragging:
        if mouse.left:
            ctrl.drag_move(_pointer_scene_y())
        else:
            # Button released outside the window: abandon the gesture
            ctrl.drag_cancel()

    ctrl.tick(ursina_time.dt * 1000.0)

    for ev in ctrl.pending_events:
        _handle_controller_event(ev)
    ctrl.pending_events.clear()

    if ctrl.status_msg and status_text.text != ctrl.status_msg:
        status_text.text = ctrl.status_msg
    _sync_entities()


# ──────────────────────────────────────────
# Run
# ──────────────────────────────────────────

if __name__ == "__main__":
    app.run()
