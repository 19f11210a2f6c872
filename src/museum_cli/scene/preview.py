from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse
from urllib.request import url2pathname

try:
    from PIL import Image, ImageDraw
except ImportError:
    Image = None  # type: ignore
    ImageDraw = None  # type: ignore

from .graph import NodeState, SceneSnapshot

logger = logging.getLogger(__name__)


class PreviewError(RuntimeError):
    pass


def require_pillow() -> None:
    if Image is None:
        raise PreviewError(
            "Pillow required for previews. Install: uv pip install -e '.[placeholders]'"
        )


def _texture_path(uri: str) -> Optional[Path]:
    parsed = urlparse(uri)
    if parsed.scheme not in ("", "file"):
        return None
    return Path(url2pathname(parsed.path))


def _tile_for(node: NodeState, tile: int) -> "Image.Image":
    material = node.material
    if material is not None and material.map:
        path = _texture_path(material.map)
        if path is None:
            logger.debug(f"Not fetching remote texture {material.map} for {node.name}")
        elif path.exists():
            try:
                with Image.open(path) as img:
                    return img.convert("RGBA").resize((tile, tile), Image.Resampling.LANCZOS)
            except OSError as e:
                logger.warning(f"Unreadable texture for {node.name}: {e}")
    color = material.color if material is not None else (0, 0, 0)
    return Image.new("RGBA", (tile, tile), (*color, 255))


def render_contact_sheet(snapshot: SceneSnapshot, out_path: Path, tile: int = 256) -> Path:
    """Draw every mesh node's current texture into one PNG.

    Nodes without a local, readable texture are drawn in their flat colour.
    """
    require_pillow()

    meshes = snapshot.meshes()
    cols = max(1, math.ceil(math.sqrt(len(meshes))))
    rows = max(1, math.ceil(len(meshes) / cols))
    label_h = 20
    sheet = Image.new("RGBA", (cols * tile, rows * (tile + label_h)), (30, 30, 30, 255))
    d = ImageDraw.Draw(sheet)

    for idx, node in enumerate(meshes):
        x = (idx % cols) * tile
        y = (idx // cols) * (tile + label_h)
        sheet.paste(_tile_for(node, tile), (x, y))
        d.text((x + 4, y + tile + 4), node.name[:32], fill=(255, 255, 255, 255))

    try:
        out_path.parent.mkdir(parents=True, exist_ok=True)
        sheet.save(out_path)
    except (OSError, ValueError) as e:
        raise PreviewError(f"Could not write preview {out_path}: {e}") from e
    return out_path
