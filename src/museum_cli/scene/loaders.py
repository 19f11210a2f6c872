from __future__ import annotations

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from museum_cli.io import read_yaml

from .graph import DEFAULT_COLOR, Material, SceneNode, SceneStore

try:
    import trimesh
except ImportError:
    trimesh = None  # type: ignore


class SceneError(Exception):
    pass


def _require_trimesh() -> None:
    if trimesh is None:
        raise SceneError(
            "trimesh is required to load mesh files. "
            "Install with: uv pip install -e '.[meshes]'"
        )


class NodeSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: str = Field(min_length=1)
    mesh: bool = True
    color: tuple[int, int, int] = DEFAULT_COLOR
    texture: Optional[str] = None
    cast_shadow: bool = True
    receive_shadow: bool = True
    children: list["NodeSpec"] = Field(default_factory=list)

    def to_node(self) -> SceneNode:
        material = Material(map=self.texture, color=self.color) if self.mesh else None
        return SceneNode(
            name=self.name,
            is_mesh=self.mesh,
            material=material,
            cast_shadow=self.cast_shadow if self.mesh else False,
            receive_shadow=self.receive_shadow if self.mesh else False,
            children=[c.to_node() for c in self.children],
        )


NodeSpec.model_rebuild()


class SceneManifest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: str = "museum"
    nodes: list[NodeSpec] = Field(default_factory=list)


def load_manifest(path: Path) -> SceneStore:
    try:
        manifest = SceneManifest.model_validate(read_yaml(path))
    except (ValidationError, ValueError, yaml.YAMLError) as e:
        raise SceneError(f"{path}: invalid scene manifest: {e}") from e

    root = SceneNode(name=manifest.name)
    for spec in manifest.nodes:
        root.add(spec.to_node())
    return SceneStore(root)


def load_mesh_file(path: Path) -> SceneStore:
    """Load an OBJ/glTF file; every geometry node becomes a shadowed mesh node."""
    _require_trimesh()
    try:
        loaded = trimesh.load(str(path), force="scene")
    except Exception as e:
        raise SceneError(f"{path}: failed to load mesh file: {e}") from e

    root = SceneNode(name=path.stem)
    for node_name in loaded.graph.nodes_geometry:
        root.add(SceneNode(
            name=str(node_name),
            is_mesh=True,
            material=Material(),
            cast_shadow=True,
            receive_shadow=True,
        ))
    return SceneStore(root)


def load_scene(path: Path) -> SceneStore:
    if not path.exists():
        raise SceneError(f"Scene file not found: {path}")

    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        return load_manifest(path)
    if suffix in {".obj", ".glb", ".gltf"}:
        return load_mesh_file(path)
    raise SceneError(f"Unsupported scene format '{suffix}': {path}")
