import io
import secrets
import barcode
from barcode.writer import ImageWriter

LABEL_CODE_LENGTH = 12


def render_bottle_label(label_code: str, caption: str | None = None) -> bytes:
    """Render a Code128 PNG for a take-home bottle label."""

    code = barcode.get('code128', label_code, writer=ImageWriter())
    buf = io.BytesIO()
    code.write(buf, options={"module_height": 12.0, "font_size": 8}, text=caption)
    return buf.getvalue()


def generate_label_code() -> str:
    num = secrets.randbelow(10**LABEL_CODE_LENGTH)
    return str(num).zfill(LABEL_CODE_LENGTH)
