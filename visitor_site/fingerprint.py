import base64
import io
import logging
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Mapping, Optional

from PIL import Image, ImageDraw, ImageFont

from .cascade import UNKNOWN, first_known

logger = logging.getLogger(__name__)

CLIENT_HINT_HEADERS = {
    "screen-width": "screenWidth",
    "screen-height": "screenHeight",
    "color-depth": "colorDepth",
    "pixel-ratio": "pixelRatio",
    "device-memory": "deviceMemory",
    "hardware-concurrency": "hardwareConcurrency",
    "downlink": "downlink",
    "effective-type": "effectiveType",
    "rtt": "rtt",
    "save-data": "saveData",
    "viewport-width": "viewportWidth",
    "viewport-height": "viewportHeight",
}

FONT_CANDIDATES = [
    "Arial", "Helvetica", "Times New Roman", "Times", "Courier New",
    "Courier", "Verdana", "Georgia", "Palatino", "Garamond",
    "Bookman", "Comic Sans MS", "Trebuchet MS", "Arial Black",
    "Impact", "Lucida Sans Unicode", "Tahoma", "Geneva",
]

CANVAS_SIZE = (200, 200)
PROBE_TEXT = "Fingerprint"


def rolling_hash(text: str) -> int:
    """h = h * 31 + ord(c), wrapped to a signed 32-bit int after each step."""
    h = 0
    for ch in text:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    return h - 0x100000000 if h & 0x80000000 else h


def render_canvas_probe(
    text: str = PROBE_TEXT,
    rect_fill: str = "#f60",
    text_fill: str = "#069",
    overlay_fill=(102, 204, 0, 178),
) -> str:
    """Draws the fixed probe scene and returns it as a PNG data URL."""
    image = Image.new("RGBA", CANVAS_SIZE, (0, 0, 0, 0))
    draw = ImageDraw.Draw(image, "RGBA")
    font = ImageFont.load_default()

    draw.rectangle([125, 1, 125 + 62 - 1, 1 + 20 - 1], fill=rect_fill)
    draw.text((2, 15), text, fill=text_fill, font=font)
    draw.text((4, 17), text, fill=overlay_fill, font=font)

    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def canvas_fingerprint(data_url: Optional[str]) -> Optional[Dict[str, int]]:
    if not isinstance(data_url, str) or not data_url:
        return None
    return {"dataHash": rolling_hash(data_url), "length": len(data_url)}


@lru_cache(maxsize=1)
def server_canvas() -> Dict[str, Any]:
    """Fingerprint of this server's own rendering stack, computed once."""
    try:
        result = canvas_fingerprint(render_canvas_probe())
    except Exception as e:
        logger.warning(f"Server canvas probe failed: {e}")
        return {"error": str(e)}
    return {**result, "width": CANVAS_SIZE[0], "height": CANVAS_SIZE[1]}


def webgl_identity(report: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    # Unmasked strings exist only when the client exposed the debug renderer extension
    report = report if isinstance(report, Mapping) else {}
    return {
        "vendor": first_known(report.get("unmaskedVendor"), report.get("vendor")),
        "renderer": first_known(report.get("unmaskedRenderer"), report.get("renderer")),
    }


def match_fonts(reported: Optional[Iterable[Any]]) -> List[str]:
    if not reported or isinstance(reported, (str, bytes)):
        return []
    available = {str(f).strip().lower() for f in reported if isinstance(f, str)}
    return [font for font in FONT_CANDIDATES if font.lower() in available]


def client_hints(headers: Mapping[str, str]) -> Dict[str, str]:
    lowered = {k.lower(): v for k, v in headers.items()}
    return {key: lowered.get(name) or "" for name, key in CLIENT_HINT_HEADERS.items()}


def browser_fingerprint(components: Iterable[Any]) -> str:
    joined = "|".join("" if c is None else str(c) for c in components)
    return format(abs(rolling_hash(joined)), "x")


def build_fingerprint(headers: Mapping[str, str], reported: Optional[Mapping[str, Any]], include_server_canvas=True):
    """The fingerprint block of a visitor record."""
    reported = reported if isinstance(reported, Mapping) else {}
    hints = client_hints(headers)
    lowered = {k.lower(): v for k, v in headers.items()}

    canvas = reported.get("canvas")
    return {
        "browserFingerprint": browser_fingerprint([
            lowered.get("user-agent"),
            lowered.get("accept-language"),
            f"{hints['screenWidth']}x{hints['screenHeight']}",
            hints["colorDepth"],
            reported.get("platform"),
        ]),
        "clientHints": hints,
        "canvas": canvas_fingerprint(canvas) if isinstance(canvas, str) else canvas,
        "webgl": webgl_identity(reported.get("webgl")) if reported.get("webgl") else None,
        "fonts": match_fonts(reported.get("fonts")),
        "touchSupport": reported.get("touchSupport") is True,
        "platform": reported.get("platform") or UNKNOWN,
        "serverCanvas": server_canvas() if include_server_canvas else None,
    }
