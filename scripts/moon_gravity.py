"""Moon gravity — one sixth of the default pull, slow floaty bounces"""

SCRIPT = {
    "name": "moon gravity",
    "params": {
        "gravity": 0.04,
        "drag":    0.0,
    },
    "setup": {
        "y": 50.0,
        "v": 0.0,
        "h": "bottom",
    },
}
