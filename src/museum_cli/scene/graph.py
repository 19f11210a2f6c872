from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Optional

DEFAULT_COLOR = (200, 200, 200)


@dataclass(frozen=True)
class Material:
    map: Optional[str] = None
    color: tuple[int, int, int] = DEFAULT_COLOR
    metalness: float = 0.0
    roughness: float = 1.0

    @classmethod
    def textured(cls, uri: str) -> "Material":
        """Non-reflective, moderately rough material showing ``uri``."""
        return cls(map=uri, color=(255, 255, 255), metalness=0.0, roughness=0.5)


@dataclass(eq=False)
class SceneNode:
    name: str
    is_mesh: bool = False
    material: Optional[Material] = None
    cast_shadow: bool = False
    receive_shadow: bool = False
    children: list["SceneNode"] = field(default_factory=list)

    def add(self, child: "SceneNode") -> "SceneNode":
        self.children.append(child)
        return child


@dataclass(frozen=True)
class NodeState:
    path: str
    name: str
    is_mesh: bool
    material: Optional[Material]
    cast_shadow: bool
    receive_shadow: bool


@dataclass(frozen=True)
class SceneSnapshot:
    version: int
    nodes: tuple[NodeState, ...]

    def by_path(self) -> dict[str, NodeState]:
        return {n.path: n for n in self.nodes}

    def meshes(self) -> list[NodeState]:
        return [n for n in self.nodes if n.is_mesh]


class SceneStore:
    """Owner of the live scene graph.

    Readers take snapshots; the only write is ``replace_material``, which swaps
    a node's material reference and shadow flags without awaiting.
    """

    def __init__(self, root: SceneNode):
        self._root = root
        self._version = 0

    @property
    def root(self) -> SceneNode:
        return self._root

    @property
    def version(self) -> int:
        return self._version

    def walk(self) -> Iterator[tuple[str, SceneNode]]:
        """Yield ``(path, node)`` for every node exactly once, depth first."""
        seen: set[int] = set()
        stack = [(self._root.name, self._root)]
        while stack:
            path, node = stack.pop()
            if id(node) in seen:
                continue
            seen.add(id(node))
            yield path, node
            for child in reversed(node.children):
                stack.append((f"{path}/{child.name}", child))

    def traverse(self) -> Iterator[SceneNode]:
        for _, node in self.walk():
            yield node

    def find(self, name: str) -> list[SceneNode]:
        return [node for node in self.traverse() if node.name == name]

    def snapshot(self) -> SceneSnapshot:
        return SceneSnapshot(
            version=self._version,
            nodes=tuple(
                NodeState(
                    path=path,
                    name=node.name,
                    is_mesh=node.is_mesh,
                    material=node.material,
                    cast_shadow=node.cast_shadow,
                    receive_shadow=node.receive_shadow,
                )
                for path, node in self.walk()
            ),
        )

    def referenced_maps(self) -> set[str]:
        return {
            node.material.map
            for node in self.traverse()
            if node.material is not None and node.material.map is not None
        }

    def replace_material(
        self,
        node: SceneNode,
        material: Material,
        cast_shadow: bool = True,
        receive_shadow: bool = True,
    ) -> None:
        if not node.is_mesh:
            raise ValueError(f"Node '{node.name}' is not a mesh")
        node.material = material
        node.cast_shadow = cast_shadow
        node.receive_shadow = receive_shadow
        self._version += 1
