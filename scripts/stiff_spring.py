"""Stiff spring — short, shallow contacts from the default drop"""

SCRIPT = {
    "name": "stiff spring",
    "params": {
        "spring": 2.0,
        "drag":   0.0,
    },
    "setup": {
        "y": 50.0,
        "v": 0.0,
        "h": "bottom",   # rebased to the current viewport floor
    },
}
