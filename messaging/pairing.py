"""Render pairing codes as scannable QR images."""

import base64
import io

import qrcode


def render_pairing_artifact(code: str) -> str:
    """Encode a pairing code as a PNG QR code data URL."""
    if not code:
        raise ValueError("pairing code is empty")
    image = qrcode.make(code)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"
