from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from museum_cli.gen.assets import AssetStore
from museum_cli.scene.binder import TargetSelector, apply_to_targets
from museum_cli.scene.graph import Material, SceneNode, SceneStore
from museum_cli.scene.loaders import SceneError, load_scene
from museum_cli.scene.render_loop import RenderLoop


def _materials(scene: SceneStore) -> dict[str, Material]:
    return {node.name: node.material for node in scene.traverse() if node.is_mesh}


class TestSceneStore:
    def test_traverse_visits_each_node_once(self, gallery_scene: SceneStore) -> None:
        names = [node.name for node in gallery_scene.traverse()]
        assert names == ["museum", "ArtRoom", "FrameA", "FrameB", "Sidebar"]

    def test_shared_child_is_visited_once(self) -> None:
        shared = SceneNode(name="FrameShared", is_mesh=True, material=Material())
        root = SceneNode(name="root", children=[shared, SceneNode(name="group", children=[shared])])

        names = [node.name for node in SceneStore(root).traverse()]

        assert names.count("FrameShared") == 1

    def test_snapshot_is_detached_from_later_writes(self, gallery_scene: SceneStore) -> None:
        before = gallery_scene.snapshot()
        node = gallery_scene.find("FrameA")[0]

        gallery_scene.replace_material(node, Material.textured("file:///tmp/x.png"))

        assert before.by_path()["museum/ArtRoom/FrameA"].material.map is None
        assert gallery_scene.snapshot().version == before.version + 1

    def test_replace_material_rejects_non_mesh(self, gallery_scene: SceneStore) -> None:
        room = gallery_scene.find("ArtRoom")[0]
        with pytest.raises(ValueError):
            gallery_scene.replace_material(room, Material())

    def test_materials_are_immutable(self) -> None:
        material = Material.textured("file:///tmp/a.png")
        with pytest.raises(Exception):
            material.roughness = 0.1  # type: ignore[misc]


class TestApplyToTargets:
    def test_rebinds_only_matching_nodes(self, gallery_scene: SceneStore, tmp_path: Path) -> None:
        sidebar_before = gallery_scene.find("Sidebar")[0].material

        with AssetStore(tmp_path / "assets") as assets:
            handle = assets.put(b"png", name="out1.png", content_type="image/png")
            count = apply_to_targets(gallery_scene, handle, TargetSelector("Frame"))

            assert count == 2
            for name in ("FrameA", "FrameB"):
                node = gallery_scene.find(name)[0]
                assert node.material.map == handle.uri
                assert node.material.metalness == 0.0
                assert node.material.roughness == 0.5
                assert node.cast_shadow is True
                assert node.receive_shadow is True

            sidebar = gallery_scene.find("Sidebar")[0]
            assert sidebar.material is sidebar_before
            assert sidebar.cast_shadow is False

    def test_no_match_returns_zero_and_changes_nothing(
        self, gallery_scene: SceneStore, tmp_path: Path
    ) -> None:
        before = _materials(gallery_scene)
        version = gallery_scene.version

        with AssetStore(tmp_path / "assets") as assets:
            handle = assets.put(b"png", name="out1.png")
            count = apply_to_targets(gallery_scene, handle, TargetSelector("Portrait"))

        assert count == 0
        after = _materials(gallery_scene)
        assert all(after[name] is before[name] for name in before)
        assert gallery_scene.version == version

    def test_selector_is_case_sensitive(self) -> None:
        selector = TargetSelector("Frame")
        assert selector.matches("PictureFrame_01")
        assert not selector.matches("frame_lower")

    def test_revoked_handle_is_refused(self, gallery_scene: SceneStore, tmp_path: Path) -> None:
        with AssetStore(tmp_path / "assets") as assets:
            handle = assets.put(b"png", name="out1.png")
            assets.release(handle)

            with pytest.raises(ValueError):
                apply_to_targets(gallery_scene, handle, TargetSelector())
        assert gallery_scene.find("FrameA")[0].material.map is None


class TestLoadScene:
    def test_load_yaml_manifest(self, tmp_path: Path) -> None:
        manifest = tmp_path / "scene.yaml"
        manifest.write_text(
            """
name: gallery
nodes:
  - name: Room
    mesh: false
    children:
      - name: FrameNorth
        color: [10, 20, 30]
      - name: Bench
        cast_shadow: false
""".strip(),
            encoding="utf-8",
        )

        store = load_scene(manifest)
        paths = [path for path, _ in store.walk()]

        assert paths == ["gallery", "gallery/Room", "gallery/Room/FrameNorth", "gallery/Room/Bench"]
        frame = store.find("FrameNorth")[0]
        assert frame.is_mesh and frame.material.color == (10, 20, 30)
        assert store.find("Bench")[0].cast_shadow is False
        assert store.find("Room")[0].material is None

    def test_invalid_manifest_raises_scene_error(self, tmp_path: Path) -> None:
        manifest = tmp_path / "scene.yaml"
        manifest.write_text("nodes:\n  - mesh: true\n", encoding="utf-8")

        with pytest.raises(SceneError):
            load_scene(manifest)

    def test_missing_file_raises_scene_error(self, tmp_path: Path) -> None:
        with pytest.raises(SceneError) as exc_info:
            load_scene(tmp_path / "nope.yaml")
        assert "not found" in str(exc_info.value)

    def test_unsupported_suffix(self, tmp_path: Path) -> None:
        path = tmp_path / "scene.fbx"
        path.write_bytes(b"")
        with pytest.raises(SceneError):
            load_scene(path)

    def test_sample_scene_has_frames(self) -> None:
        store = load_scene(Path(__file__).parent.parent / "scenes" / "museum.yaml")
        frames = [n.name for n in store.traverse() if n.is_mesh and "Frame" in n.name]
        assert frames == ["FrameNorth01", "FrameNorth02", "FrameSouth01", "SkylightFrameGlass"]

    def test_load_glb_scene(self, tmp_path: Path) -> None:
        trimesh = pytest.importorskip("trimesh")

        mesh_scene = trimesh.Scene()
        mesh_scene.add_geometry(trimesh.creation.box(), node_name="FrameA", geom_name="frame_a")
        mesh_scene.add_geometry(trimesh.creation.box(), node_name="Wall", geom_name="wall")
        path = tmp_path / "gallery.glb"
        mesh_scene.export(str(path))

        store = load_scene(path)
        names = {n.name for n in store.traverse() if n.is_mesh}

        assert {"FrameA", "Wall"} <= names
        assert all(n.cast_shadow and n.receive_shadow for n in store.traverse() if n.is_mesh)


class TestRenderLoop:
    def test_renders_requested_frames(self, gallery_scene: SceneStore) -> None:
        seen = []
        loop = RenderLoop(gallery_scene, fps=1000, on_frame=seen.append)

        frames = asyncio.run(loop.run(max_frames=5))

        assert frames == 5
        assert len(seen) == 5
        assert loop.last_snapshot is seen[-1]

    def test_start_and_stop(self, gallery_scene: SceneStore) -> None:
        async def scenario() -> int:
            loop = RenderLoop(gallery_scene, fps=1000)
            loop.start()
            await asyncio.sleep(0.02)
            assert loop.running
            return await loop.stop()

        assert asyncio.run(scenario()) >= 1

    def test_rejects_non_positive_fps(self, gallery_scene: SceneStore) -> None:
        with pytest.raises(ValueError):
            RenderLoop(gallery_scene, fps=0)


class TestContactSheet:
    def test_preview_shows_texture_and_colors(self, gallery_scene: SceneStore, tmp_path: Path) -> None:
        pytest.importorskip("PIL")
        from PIL import Image

        from museum_cli.scene.preview import render_contact_sheet

        texture = tmp_path / "tex.png"
        Image.new("RGBA", (32, 32), (255, 0, 0, 255)).save(texture)
        frame = gallery_scene.find("FrameA")[0]
        gallery_scene.replace_material(frame, Material.textured(texture.as_uri()))

        out = render_contact_sheet(gallery_scene.snapshot(), tmp_path / "sheet.png", tile=64)

        with Image.open(out) as sheet:
            assert sheet.size == (128, 2 * (64 + 20))
            assert sheet.getpixel((10, 10))[:3] == (255, 0, 0)
            assert sheet.getpixel((64 + 10, 10))[:3] == (40, 40, 40)

    def test_remote_and_unreadable_textures_fall_back_to_color(
        self, gallery_scene: SceneStore, tmp_path: Path
    ) -> None:
        pytest.importorskip("PIL")
        from PIL import Image

        from museum_cli.scene.preview import render_contact_sheet

        broken = tmp_path / "broken.png"
        broken.write_bytes(b"not a png")
        frame_a, frame_b = gallery_scene.find("FrameA")[0], gallery_scene.find("FrameB")[0]
        gallery_scene.replace_material(frame_a, Material(map="https://cdn.example/wall.png", color=(0, 200, 0)))
        gallery_scene.replace_material(frame_b, Material(map=broken.as_uri(), color=(0, 0, 200)))

        out = render_contact_sheet(gallery_scene.snapshot(), tmp_path / "sheet.png", tile=64)

        with Image.open(out) as sheet:
            assert sheet.getpixel((10, 10))[:3] == (0, 200, 0)
            assert sheet.getpixel((64 + 10, 10))[:3] == (0, 0, 200)
