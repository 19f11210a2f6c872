from __future__ import annotations

import logging
from dataclasses import dataclass

from museum_cli.gen.types import AssetHandle

from .graph import Material, SceneStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TargetSelector:
    contains: str = "Frame"

    def matches(self, name: str) -> bool:
        return self.contains in name


def apply_to_targets(scene: SceneStore, handle: AssetHandle, selector: TargetSelector) -> int:
    """Point every mesh matched by ``selector`` at the asset behind ``handle``.

    Runs without awaiting, so a render loop on the same event loop sees each
    node either with its old material or with the new one.
    """
    if handle.revoked:
        raise ValueError(f"Asset handle {handle.handle_id} has been released")

    targets = [node for node in scene.traverse() if node.is_mesh and selector.matches(node.name)]
    for node in targets:
        scene.replace_material(node, Material.textured(handle.uri))

    if targets:
        logger.info(f"Bound {handle.uri} to {len(targets)} node(s) matching '{selector.contains}'")
    else:
        logger.info(f"No nodes match '{selector.contains}', scene left unchanged")
    return len(targets)
