"""Callback implementations for the transformation workspace."""

from __future__ import annotations

import logging
import random
import time
from pathlib import Path
from typing import Any, Optional, Sequence, Union

from config.settings import AppConfig
from modules.pipelines.errors import PersistenceError
from modules.pipelines.gateway import ProgressCallback
from modules.pipelines.orchestrator import BatchResult, PipelineOrchestrator, PipelineStageResult, VideoResult
from modules.prompts.catalog import TransformationRegistry, TransformationSpec
from modules.prompts.templating import build_prompt
from modules.services.history_service import GenerationHistoryService, GenerationRecord
from modules.services.storage_service import StorageService
from modules.ui.state import SessionState, TransformationOrderStore, merge_transformation_order
from modules.utils.image_utils import ImagePayload, InputItem

logger = logging.getLogger(__name__)

ImageSource = Union[InputItem, str, Path]

BATCH_NOT_SUPPORTED_MESSAGE = "当前效果不支持批量处理，请只上传一张图片。"


def build_callbacks(
    config: AppConfig,
    orchestrator: PipelineOrchestrator,
    history: GenerationHistoryService,
    storage: Optional[StorageService] = None,
    state: Optional[SessionState] = None,
    registry: Optional[TransformationRegistry] = None,
    order_store: Optional[TransformationOrderStore] = None,
    rng: Optional[random.Random] = None,
) -> dict[str, Any]:
    """Return a dictionary of workspace callback functions."""

    catalog = registry or TransformationRegistry()
    session = state or SessionState()
    orders = order_store or TransformationOrderStore(config.transformation_order_path)
    if not session.transformations:
        session.transformations = merge_transformation_order(orders.load(), catalog.list())

    def _to_item(source: ImageSource) -> InputItem:
        if isinstance(source, InputItem):
            return source
        return InputItem.from_path(source)

    def _remember(record_id: Optional[int], record: GenerationRecord) -> None:
        if record_id is None:
            return
        record.id = record_id
        record.timestamp = int(time.time() * 1000)
        session.history.insert(0, record)

    def _result_message(result: PipelineStageResult | VideoResult) -> str:
        if result.persistence_error is not None:
            return f"生成成功，但保存到历史记录失败：{result.persistence_error}"
        return "生成成功"

    def _current_prompt(spec: TransformationSpec) -> str:
        return build_prompt(spec, session.prompt_options, session.custom_prompt, rng)

    def on_select_transformation(key: str) -> tuple[Optional[TransformationSpec], str]:
        try:
            spec = catalog.get(key)
        except KeyError as exc:
            return None, f"选择失败：{exc}"

        session.selected = spec
        session.clear_outputs()
        if not spec.is_custom:
            session.custom_prompt = ""
        session.prompt_options = {}

        if len(session.input_items) > 1 and not spec.supports_batch:
            session.input_items = []
            session.error = BATCH_NOT_SUPPORTED_MESSAGE
            return spec, BATCH_NOT_SUPPORTED_MESSAGE
        return spec, f"已选择：{spec.title}"

    def on_images_selected(sources: Sequence[ImageSource]) -> tuple[list[InputItem], str]:
        spec = session.selected
        if spec is None:
            return session.input_items, "请先选择一种效果。"
        if len(sources) > 1 and not spec.supports_batch:
            session.error = BATCH_NOT_SUPPORTED_MESSAGE
            return session.input_items, BATCH_NOT_SUPPORTED_MESSAGE

        try:
            items = [_to_item(source) for source in sources]
        except OSError as exc:
            return session.input_items, f"读取图片失败：{exc}"

        session.input_items = [*session.input_items, *items]
        session.mask_data_url = None
        session.clear_outputs()
        return session.input_items, f"已添加 {len(items)} 张图片"

    def on_secondary_selected(source: Optional[ImageSource]) -> tuple[Optional[InputItem], str]:
        if source is None:
            session.secondary_item = None
            return None, "已移除第二张图片"
        try:
            session.secondary_item = _to_item(source)
        except OSError as exc:
            return None, f"读取图片失败：{exc}"
        return session.secondary_item, f"已选择第二张图片：{session.secondary_item.name}"

    def on_generate(
        on_progress: Optional[ProgressCallback] = None,
    ) -> tuple[Optional[PipelineStageResult | VideoResult | BatchResult], str]:
        spec = session.selected
        if spec is None:
            return None, "生成失败：请先选择一种效果。"
        if spec.is_auto_flow:
            return None, "虚拟试穿请使用专用的分步流程。"

        session.clear_outputs()
        try:
            if spec.is_generative:
                result = orchestrator.run_generative(spec.key, spec.key, _current_prompt(spec))
                _remember(
                    result.record_id,
                    GenerationRecord(image_url=result.image_url, text=result.text, original_filename=result.source_filename),
                )
                session.last_result = result
                return result, _result_message(result)

            if spec.is_video:
                item = session.input_items[0] if session.input_items else None
                video = orchestrator.run_video(
                    spec.key,
                    session.custom_prompt,
                    item,
                    session.aspect_ratio,
                    on_progress,
                )
                _remember(
                    video.record_id,
                    GenerationRecord(
                        video_blob=video.video_blob,
                        video_url=video.video_url,
                        original_filename=video.source_filename,
                    ),
                )
                session.last_result = video
                return video, _result_message(video)

            if not session.input_items:
                return None, "生成失败：请先上传图片。"
            if spec.is_multi_image and not spec.is_secondary_optional and session.secondary_item is None:
                return None, "生成失败：请上传两张图片。"
            if spec.is_custom and not session.custom_prompt.strip():
                return None, "生成失败：请输入提示词。"

            if len(session.input_items) > 1:
                if not spec.supports_batch:
                    return None, BATCH_NOT_SUPPORTED_MESSAGE
                batch = orchestrator.run_batch(spec.key, session.input_items, lambda: _current_prompt(spec))
                for item in batch.results:
                    _remember(
                        item.record_id,
                        GenerationRecord(image_url=item.image_url, text=item.text, original_filename=item.source_filename),
                    )
                session.batch_result = batch
                session.input_items = []
                return batch, f"批量处理完成：成功 {batch.success_count} 张，失败 {batch.fail_count} 张"

            primary = session.input_items[0]
            if spec.is_two_step:
                result = orchestrator.run_two_step(
                    spec.key,
                    primary,
                    session.secondary_item,
                    _current_prompt(spec),
                    spec.step_two_prompt or "",
                )
            else:
                mask = None
                if session.mask_data_url:
                    mask = ImagePayload.from_data_url(session.mask_data_url).base64
                secondary = session.secondary_item if spec.is_multi_image else None
                result = orchestrator.run_stage(
                    spec.key,
                    primary,
                    secondary,
                    _current_prompt(spec),
                    mask_base64=mask,
                )
        except Exception as exc:  # noqa: BLE001
            session.error = str(exc)
            return None, f"生成失败：{exc}"

        _remember(
            result.record_id,
            GenerationRecord(
                image_url=result.image_url,
                secondary_image_url=result.secondary_image_url,
                text=result.text,
                original_filename=result.source_filename,
            ),
        )
        session.last_result = result
        return result, _result_message(result)

    def on_set_mask(mask_data_url: Optional[str]) -> str:
        session.mask_data_url = mask_data_url or None
        return "已设置蒙版" if session.mask_data_url else "已清除蒙版"

    def on_use_as_input(image_url: str) -> tuple[Optional[InputItem], str]:
        if not image_url:
            return None, "没有可用的图片。"
        try:
            ImagePayload.from_data_url(image_url)
        except ValueError as exc:
            return None, f"无法将该图片用作输入：{exc}"

        item = InputItem.from_data_url(image_url, f"edited-{int(time.time() * 1000)}.png")
        session.reset()
        session.input_items = [item]
        return item, "已将结果设为新的输入图片，请重新选择效果。"

    def on_load_history() -> tuple[list[GenerationRecord], str]:
        for record in session.history:
            if storage is not None:
                storage.revoke(record.video_url)
        try:
            session.history = history.list_all()
        except PersistenceError as exc:
            session.history = []
            return [], f"加载历史记录失败：{exc}"
        return session.history, f"共 {len(session.history)} 条历史记录"

    def on_clear_history(confirmed: bool = False) -> str:
        if not confirmed:
            return "已取消清空历史记录"
        try:
            history.clear()
        except PersistenceError as exc:
            return f"清空历史记录失败：{exc}"
        if storage is not None:
            for record in session.history:
                storage.revoke(record.video_url)
        session.history = []
        return "历史记录已清空"

    def on_download(record_id: int, part: str, target_dir: Path | str) -> tuple[Optional[Path], str]:
        record = next((entry for entry in session.history if entry.id == record_id), None)
        if record is None:
            return None, f"下载失败：未找到历史记录 {record_id}"
        if storage is None:
            return None, "下载失败：未配置存储服务"
        try:
            path = storage.save_download(record, part, Path(target_dir))
        except (OSError, ValueError) as exc:
            return None, f"下载失败：{exc}"
        if path is None:
            return None, "该记录没有可下载的内容"
        return path, f"已保存到 {path}"

    def on_download_selected(record_ids: Sequence[int], target_dir: Path | str) -> tuple[list[Path], str]:
        if storage is None:
            return [], "下载失败：未配置存储服务"
        wanted = set(record_ids)
        records = [entry for entry in session.history if entry.id in wanted]
        if not records:
            return [], "请先选择要下载的历史记录"
        try:
            paths = storage.save_selected(records, Path(target_dir))
        except (OSError, ValueError) as exc:
            return [], f"下载失败：{exc}"
        return paths, f"已保存 {len(paths)} 个文件到 {target_dir}"

    def on_reorder_transformations(key: str, new_index: int) -> tuple[list[str], str]:
        try:
            session.move_transformation(key, new_index)
        except KeyError as exc:
            return session.transformation_keys(), f"排序失败：{exc}"
        keys = session.transformation_keys()
        orders.save(keys)
        return keys, "效果顺序已保存"

    def on_reset() -> str:
        session.reset()
        return "已重置"

    return {
        "on_select_transformation": on_select_transformation,
        "on_images_selected": on_images_selected,
        "on_secondary_selected": on_secondary_selected,
        "on_generate": on_generate,
        "on_set_mask": on_set_mask,
        "on_use_as_input": on_use_as_input,
        "on_load_history": on_load_history,
        "on_clear_history": on_clear_history,
        "on_download": on_download,
        "on_download_selected": on_download_selected,
        "on_reorder_transformations": on_reorder_transformations,
        "on_reset": on_reset,
    }
