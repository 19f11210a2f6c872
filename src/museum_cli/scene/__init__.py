from .binder import TargetSelector, apply_to_targets
from .graph import Material, NodeState, SceneNode, SceneSnapshot, SceneStore
from .loaders import SceneError, load_scene
from .render_loop import RenderLoop

__all__ = [
    "Material",
    "NodeState",
    "RenderLoop",
    "SceneError",
    "SceneNode",
    "SceneSnapshot",
    "SceneStore",
    "TargetSelector",
    "apply_to_targets",
    "load_scene",
]
