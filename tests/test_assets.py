from __future__ import annotations

import os
from pathlib import Path

import pytest

from museum_cli.gen.assets import AssetStore


class TestAssetStore:
    def test_put_writes_file_and_returns_handle(self, tmp_path: Path) -> None:
        with AssetStore(tmp_path / "assets") as assets:
            handle = assets.put(b"image-bytes", name="out1.png", content_type="image/png")

            assert handle.path.exists()
            assert handle.path.suffix == ".png"
            assert handle.path.read_bytes() == b"image-bytes"
            assert handle.size == len(b"image-bytes")
            assert handle.uri == handle.path.as_uri()
            assert assets.live_handles == [handle]

    def test_suffix_falls_back_to_content_type(self, tmp_path: Path) -> None:
        with AssetStore(tmp_path / "assets") as assets:
            handle = assets.put(b"x", name="noext", content_type="image/png")
            assert handle.path.suffix == ".png"

    def test_release_revokes_and_deletes(self, tmp_path: Path) -> None:
        with AssetStore(tmp_path / "assets") as assets:
            handle = assets.put(b"x", name="a.png")
            assets.release(handle)

            assert handle.revoked
            assert not handle.path.exists()
            assert assets.live_handles == []
            assets.release(handle)

    def test_release_superseded_keeps_unbound_and_referenced(self, tmp_path: Path) -> None:
        with AssetStore(tmp_path / "assets") as assets:
            old = assets.put(b"old", name="old.png")
            current = assets.put(b"new", name="new.png")
            in_flight = assets.put(b"pending", name="pending.png")
            assets.mark_bound(old)
            assets.mark_bound(current)

            released = assets.release_superseded({current.uri})

            assert released == [old]
            assert old.revoked
            assert not current.revoked
            assert not in_flight.revoked

    def test_close_releases_everything(self, tmp_path: Path) -> None:
        assets = AssetStore()
        root = assets.root
        handles = [assets.put(b"x", name=f"{i}.png") for i in range(3)]

        assets.close()

        assert all(h.revoked for h in handles)
        assert not root.exists()
        with pytest.raises(RuntimeError):
            assets.put(b"x", name="late.png")

    def test_close_keeps_caller_owned_root(self, tmp_path: Path) -> None:
        root = tmp_path / "assets"
        with AssetStore(root) as assets:
            assets.put(b"x", name="a.png")
        assert root.exists()
        assert list(root.iterdir()) == []

    def test_failed_rename_keeps_original_error(self, tmp_path: Path, monkeypatch) -> None:
        def broken_replace(src, dst):
            raise OSError("disk full")

        with AssetStore(tmp_path / "assets") as assets:
            monkeypatch.setattr(os, "replace", broken_replace)

            with pytest.raises(OSError, match="disk full"):
                assets.put(b"x", name="a.png")

            assert list(assets.root.iterdir()) == []
            assert assets.live_handles == []
