"""Damped landing — ball thrown downward, drag bleeds the energy off"""

SCRIPT = {
    "name": "damped landing",
    "params": {
        "drag": 0.08,
    },
    "setup": {
        "y": 80.0,
        "v": 6.0,     # px per 10 ms, downward
        "h": 300.0,
    },
}
