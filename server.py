"""
Bouncing Ball Web Server — Layer 3 replacement (FastAPI + WebSocket)

Serves the canvas frontend and runs the physics loop, streaming ball state to
browser clients over WebSocket. Pointer/touch drags and viewport resizes come
back from the browser as commands.
"""

import asyncio
import json
import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from controller import BounceController
from scenarios import PRESETS

# ── Controller ──────────────────────────────────────────────────────────────

ctrl = BounceController()


# ── Lifespan (startup/shutdown) ─────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    task = asyncio.create_task(game_loop())
    yield
    task.cancel()


app = FastAPI(lifespan=lifespan)

# ── Client state ────────────────────────────────────────────────────────────

clients: list[WebSocket] = []

# ── Physics params (attr, label, min, max, step) ────────────────────────────

PHYSICS_PARAMS = [
    ("spring",  "Spring",     0.05,  5.0,  0.05),
    ("gravity", "Gravity",    0.01,  2.0,  0.01),
    ("drag",    "Drag",       0.0,   1.0,  0.01),
]

PARAM_DEFAULTS = {attr: getattr(ctrl.config, attr) for attr, *_ in PHYSICS_PARAMS}

# ── Async game loop ─────────────────────────────────────────────────────────

TARGET_FPS = 60
FRAME_DT = 1.0 / TARGET_FPS


async def game_loop():
    """Main game loop running at ~60 fps."""
    last_time = time.perf_counter()

    while True:
        now = time.perf_counter()
        elapsed_ms = (now - last_time) * 1000.0
        last_time = now

        ctrl.tick(elapsed_ms)

        if clients:
            frame_msg = _build_frame_message()
            dead: list[WebSocket] = []
            for ws in clients:
                try:
                    await ws.send_text(frame_msg)
                except Exception as exc:
                    print(f"[SRV] send failed, dropping client: {exc}")
                    dead.append(ws)
            for ws in dead:
                if ws in clients:
                    clients.remove(ws)
        else:
            ctrl.pending_events.clear()

        elapsed = time.perf_counter() - now
        sleep_time = FRAME_DT - elapsed
        if sleep_time > 0:
            await asyncio.sleep(sleep_time)
        else:
            await asyncio.sleep(0)


def _build_frame_message() -> str:
    """Serialize current state into a JSON frame message."""
    info = ctrl.render_info()
    events = list(ctrl.pending_events)
    ctrl.pending_events.clear()
    frame = {
        "type": "frame",
        "y": round(ctrl.state.y, 3),
        "v": round(ctrl.state.v, 4),
        "h": round(ctrl.state.h, 3),
        "ball": {k: round(info[k], 3) for k in ("cx", "cy", "rx", "ry")},
        "width": info["width"],
        "height": info["height"],
        "text": info["text"],
        "events": events,
        "status": ctrl.status_msg,
        "info": ctrl.info_msg,
    }
    return json.dumps(frame, separators=(',', ':'))


def _get_params_data() -> list:
    """Return the editable physics params with current values."""
    result = []
    for attr, label, mn, mx, step in PHYSICS_PARAMS:
        result.append({
            "attr": attr, "label": label,
            "value": round(getattr(ctrl.config, attr), 6),
            "min": mn, "max": mx, "step": step,
        })
    return result


def _to_float(value):
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


# ── Key press handler ───────────────────────────────────────────────────────

def _handle_key_down(key: str):
    if key == "r":
        ctrl.reset()
    elif key == "c":
        if ctrl.recording:
            ctrl.stop_recording()
        else:
            ctrl.start_recording()
    elif key == "l":
        ctrl.load_next_script()
    elif key in PRESETS:
        fn, label = PRESETS[key]
        ctrl.load_preset(fn, label)


def handle_message(msg: dict):
    """Apply one client message to the controller. Returns a reply dict or None."""
    cmd = msg.get("cmd", "")
    if cmd == "drag_start":
        ctrl.drag_start(_to_float(msg.get("y")))
    elif cmd == "drag_move":
        ctrl.drag_move(_to_float(msg.get("y")))
    elif cmd in ("drag_end", "drag_cancel"):
        ctrl.drag_end()
    elif cmd == "resize":
        w, h = _to_float(msg.get("width")), _to_float(msg.get("height"))
        if w is not None and h is not None:
            ctrl.resize(w, h)
    elif cmd == "key_down":
        _handle_key_down(str(msg.get("key", "")))
    elif cmd == "execute":
        ctrl.execute_command(msg.get("text", ""))
    elif cmd == "get_state":
        return {"type": "state_json", "data": ctrl.get_state_json()}
    elif cmd == "get_params":
        return {"type": "params", "data": _get_params_data()}
    elif cmd == "adjust_param":
        idx = int(msg.get("index", 0))
        direction = int(msg.get("direction", 0))
        if 0 <= idx < len(PHYSICS_PARAMS):
            attr, label, mn, mx, step = PHYSICS_PARAMS[idx]
            cur = getattr(ctrl.config, attr)
            new_val = max(mn, min(mx, cur + direction * step))
            ctrl.set_params(**{attr: new_val})
            return {"type": "param_update", "index": idx, "value": round(new_val, 6)}
    elif cmd == "reset_params":
        ctrl.set_params(**PARAM_DEFAULTS)
        return {"type": "params", "data": _get_params_data()}
    return None


# ── WebSocket endpoint ──────────────────────────────────────────────────────

@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await ws.accept()
    clients.append(ws)

    await ws.send_text(json.dumps({
        "type": "init",
        "radius": ctrl.config.radius,
        "substeps_per_ms": ctrl.config.substeps_per_ms,
        "params": _get_params_data(),
    }))

    try:
        while True:
            data = await ws.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                continue
            if not isinstance(msg, dict):
                continue
            reply = handle_message(msg)
            if reply is not None:
                await ws.send_text(json.dumps(reply))
    except WebSocketDisconnect:
        pass
    finally:
        if ws in clients:
            clients.remove(ws)
        # A disconnect mid-gesture must not leave the drag hanging
        ctrl.drag_end()


# ── Static files + root route ───────────────────────────────────────────────

STATIC_DIR = Path(__file__).parent / "static"

app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")


@app.get("/")
async def root():
    return FileResponse(STATIC_DIR / "index.html")


# ── Run with uvicorn ────────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("server:app", host="0.0.0.0", port=8000, reload=False)
