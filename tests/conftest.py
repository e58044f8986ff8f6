"""Shared fixtures: real images as data URLs and a scripted gateway."""

from __future__ import annotations

import io
from typing import Any, List, Optional, Sequence

import pytest
from PIL import Image

from config.settings import AppConfig
from modules.pipelines.gateway import GeneratedContent
from modules.pipelines.orchestrator import PipelineOrchestrator
from modules.services.history_service import GenerationHistoryService
from modules.services.storage_service import StorageService
from modules.utils.image_utils import ImagePayload, InputItem


def make_image_bytes(size=(128, 96), color=(200, 40, 40), fmt: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


def make_data_url(size=(128, 96), color=(200, 40, 40), fmt: str = "PNG") -> str:
    mime_type = "image/jpeg" if fmt == "JPEG" else "image/png"
    return ImagePayload.from_bytes(make_image_bytes(size, color, fmt), mime_type).to_data_url()


def make_item(name: str = "photo.png", size=(128, 96), color=(200, 40, 40)) -> InputItem:
    return InputItem.from_data_url(make_data_url(size, color), name)


class FakeGateway:
    """模拟生成网关，按顺序返回预设结果或抛出预设异常。"""

    def __init__(self, outputs: Optional[Sequence[Any]] = None) -> None:
        self.outputs: List[Any] = list(outputs or [])
        self.edit_calls: list[tuple[list[ImagePayload], str, Optional[str]]] = []
        self.generate_calls: list[str] = []
        self.video_calls: list[tuple[str, Optional[ImagePayload], str]] = []
        self.video_blob = b"fake-mp4"

    def _next(self) -> GeneratedContent:
        outcome = self.outputs.pop(0) if self.outputs else None
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is None:
            return GeneratedContent(image_url=make_data_url(color=(30, 120, 200)), text=None)
        return outcome

    def edit_image(self, images, prompt, mask_base64=None) -> GeneratedContent:
        self.edit_calls.append((list(images), prompt, mask_base64))
        return self._next()

    def generate_image(self, prompt) -> GeneratedContent:
        self.generate_calls.append(prompt)
        return self._next()

    def generate_video(self, prompt, image=None, aspect_ratio="16:9", on_progress=None) -> bytes:
        self.video_calls.append((prompt, image, aspect_ratio))
        if self.outputs and isinstance(self.outputs[0], Exception):
            raise self.outputs.pop(0)
        if on_progress is not None:
            on_progress("Initializing video generation...")
        return self.video_blob


@pytest.fixture
def config(tmp_path) -> AppConfig:
    return AppConfig(
        api_key="test-key",
        data_dir=tmp_path / "data",
        log_dir=tmp_path / "logs",
        history_path=tmp_path / "data" / "history.sqlite3",
        transformation_order_path=tmp_path / "data" / "transformation_order.json",
        media_dir=tmp_path / "data" / "media",
        video_poll_interval=10.0,
        video_max_wait=60.0,
    )


@pytest.fixture
def storage(config) -> StorageService:
    service = StorageService(config.media_dir)
    yield service
    service.revoke_all()


@pytest.fixture
def history(config, storage) -> GenerationHistoryService:
    service = GenerationHistoryService(config.history_path, storage=storage)
    yield service
    service.close()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def orchestrator(gateway, history, config, storage) -> PipelineOrchestrator:
    return PipelineOrchestrator(gateway, history, config=config, storage=storage)
