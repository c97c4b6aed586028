import base64
import io

from PIL import Image
from pillow_heif import register_heif_opener

# Phone photos of drawings arrive as HEIC
register_heif_opener()

# Provider image endpoints accept at most this edge length
MAX_EDGE_PX = 2048


def decode_data_url(image_base64: str) -> bytes:
    if "base64," in image_base64:
        image_data = image_base64.split("base64,")[1]
    else:
        image_data = image_base64
    return base64.b64decode(image_data)


def to_data_url(png_bytes: bytes) -> str:
    return f"data:image/png;base64,{base64.b64encode(png_bytes).decode('utf-8')}"


def normalize_drawing(raw: bytes) -> str:
    """
    Convert an uploaded drawing to an RGB PNG data URL.
    Transparent areas are flattened onto white, oversized scans are shrunk.
    """
    img = Image.open(io.BytesIO(raw))
    img.load()

    if img.mode in ("RGBA", "LA", "P"):
        if img.mode != "RGBA":
            img = img.convert("RGBA")
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[-1])
        img = background
    elif img.mode != "RGB":
        img = img.convert("RGB")

    longest = max(img.width, img.height)
    if longest > MAX_EDGE_PX:
        ratio = MAX_EDGE_PX / longest
        img = img.resize((int(img.width * ratio), int(img.height * ratio)), Image.Resampling.LANCZOS)

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return to_data_url(buffer.getvalue())
