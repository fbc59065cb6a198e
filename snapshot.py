"""
Headless frame renderer (PIL).
Draws what the hosts draw (squashed ball, ground line, diagnostics text) into
an image, for saving screenshots without a window.
"""

import sys

from PIL import Image, ImageDraw

from controller import BounceController

BG_RGB     = (18, 18, 24)
BALL_RGB   = (200, 230, 255)
GROUND_RGB = (120, 200, 120)
TEXT_RGB   = (220, 220, 220)
TEXT_MARGIN = 8


def render_frame(ctrl: BounceController) -> Image.Image:
    """Render the controller's current state into an RGB image."""
    info = ctrl.render_info()
    w = max(1, int(round(info["width"])))
    h = max(1, int(round(info["height"])))
    img = Image.new("RGB", (w, h), BG_RGB)
    draw = ImageDraw.Draw(img)

    cx, cy, rx, ry = info["cx"], info["cy"], info["rx"], info["ry"]
    draw.ellipse((cx - rx, cy - ry, cx + rx, cy + ry), fill=BALL_RGB)
    draw.line((0, info["ground"], w, info["ground"]), fill=GROUND_RGB, width=2)
    draw.text((TEXT_MARGIN, TEXT_MARGIN), info["text"], fill=TEXT_RGB)
    return img


def save_frame(ctrl: BounceController, path: str) -> str:
    render_frame(ctrl).save(path)
    print(f"[SNAP] Saved frame → {path}")
    return path


if __name__ == "__main__":
    out = sys.argv[1] if len(sys.argv) > 1 else "frame.png"
    c = BounceController()
    c.tick(300.0)
    save_frame(c, out)
