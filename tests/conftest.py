from __future__ import annotations

import json
from typing import Any, Optional

import httpx
import pytest

from museum_cli.gen.config import ComfyUIServiceConfig
from museum_cli.scene.graph import Material, SceneNode, SceneStore

BASE_URL = "http://comfy.test"
FAKE_PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


class FakeComfyServer:
    """Stand-in for the /prompt, /history and /view endpoints."""

    def __init__(
        self,
        prompt_id: str = "abc123",
        images: Optional[list[dict[str, Any]]] = None,
        pending_polls: int = 0,
        image_bytes: bytes = FAKE_PNG,
    ):
        self.prompt_id = prompt_id
        self.images = (
            images
            if images is not None
            else [{"filename": "out1.png", "subfolder": "", "type": "output"}]
        )
        self.pending_polls = pending_polls
        self.image_bytes = image_bytes
        self.history_override: Optional[Any] = None
        self.fail: dict[str, str] = {}
        self.submitted: list[dict[str, Any]] = []
        self.history_calls = 0
        self.view_params: list[dict[str, str]] = []

    def _failure(self, stage: str, request: httpx.Request) -> Optional[httpx.Response]:
        mode = self.fail.get(stage)
        if mode == "transport":
            raise httpx.ConnectError("connection refused", request=request)
        if mode == "status":
            return httpx.Response(500, text="internal error")
        return None

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path

        if request.method == "POST" and path == "/prompt":
            failure = self._failure("submit", request)
            if failure is not None:
                return failure
            self.submitted.append(json.loads(request.content))
            return httpx.Response(
                200, json={"prompt_id": self.prompt_id, "number": 0, "node_errors": {}}
            )

        if request.method == "GET" and path.startswith("/history/"):
            self.history_calls += 1
            failure = self._failure("resolve", request)
            if failure is not None:
                return failure
            if self.history_override is not None:
                return httpx.Response(200, json=self.history_override)
            if self.pending_polls > 0:
                self.pending_polls -= 1
                return httpx.Response(200, json={})
            prompt_id = path.rsplit("/", 1)[1]
            return httpx.Response(200, json={
                prompt_id: {
                    "prompt": [],
                    "outputs": {"9": {"images": self.images}},
                    "status": {"status_str": "success", "completed": True},
                }
            })

        if request.method == "GET" and path == "/view":
            self.view_params.append(dict(request.url.params))
            failure = self._failure("fetch", request)
            if failure is not None:
                return failure
            return httpx.Response(
                200, content=self.image_bytes, headers={"content-type": "image/png"}
            )

        return httpx.Response(404, text="not found")

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def fake_server() -> FakeComfyServer:
    return FakeComfyServer()


@pytest.fixture
def comfy_config() -> ComfyUIServiceConfig:
    return ComfyUIServiceConfig(base_url=BASE_URL, client_id="test-client", poll_interval_sec=0.01)


def build_gallery_scene() -> SceneStore:
    root = SceneNode(name="museum")
    room = root.add(SceneNode(name="ArtRoom"))
    for name in ("FrameA", "FrameB", "Sidebar"):
        room.add(SceneNode(
            name=name,
            is_mesh=True,
            material=Material(color=(40, 40, 40)),
            cast_shadow=False,
            receive_shadow=False,
        ))
    return SceneStore(root)


@pytest.fixture
def gallery_scene() -> SceneStore:
    return build_gallery_scene()
