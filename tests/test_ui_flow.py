"""Workspace callback and session state tests."""

from __future__ import annotations

import random

import pytest

from conftest import make_data_url, make_image_bytes, make_item
from modules.pipelines.errors import GenerationFailed
from modules.pipelines.orchestrator import BatchResult, PipelineStageResult, VideoResult
from modules.prompts.catalog import OptionValue, PromptOption, TransformationRegistry, TransformationSpec
from modules.ui import callbacks
from modules.ui.state import SessionState, TransformationOrderStore, merge_transformation_order


@pytest.fixture
def session() -> SessionState:
    return SessionState()


@pytest.fixture
def cb(config, orchestrator, history, storage, session):
    return callbacks.build_callbacks(
        config,
        orchestrator,
        history,
        storage=storage,
        state=session,
        rng=random.Random(7),
    )


def _spec(key: str) -> TransformationSpec:
    return TransformationSpec(key=key, title=key.title(), prompt=f"{key} prompt")


def test_merge_order_keeps_saved_drops_stale_appends_new():
    canonical = [_spec("a"), _spec("b"), _spec("c"), _spec("d")]

    merged = merge_transformation_order(["c", "gone", "a"], canonical)

    assert [spec.key for spec in merged] == ["c", "a", "b", "d"]
    assert merge_transformation_order(None, canonical) == canonical


def test_order_store_round_trip_and_corrupt_file(tmp_path):
    store = TransformationOrderStore(tmp_path / "order.json")
    assert store.load() is None

    store.save(["b", "a"])
    assert store.load() == ["b", "a"]

    store.path.write_text("{broken", encoding="utf-8")
    assert store.load() is None


def test_move_transformation_clamps_index():
    state = SessionState(transformations=[_spec("a"), _spec("b"), _spec("c")])

    state.move_transformation("a", 10)
    assert state.transformation_keys() == ["b", "c", "a"]

    state.move_transformation("a", -3)
    assert state.transformation_keys() == ["a", "b", "c"]
    with pytest.raises(KeyError):
        state.move_transformation("zzz", 0)


def test_initial_order_follows_catalog(cb, session):
    assert session.transformation_keys() == TransformationRegistry().keys()


def test_reorder_is_persisted(cb, config, session):
    keys, message = cb["on_reorder_transformations"]("pose", 0)

    assert keys[0] == "pose"
    assert "已保存" in message
    assert TransformationOrderStore(config.transformation_order_path).load() == keys


def test_select_transformation_clears_batch_when_not_supported(cb, session):
    session.input_items = [make_item("a.png"), make_item("b.png")]

    spec, message = cb["on_select_transformation"]("pose")

    assert spec.key == "pose"
    assert session.input_items == []
    assert "不支持批量" in message


def test_select_unknown_transformation(cb):
    spec, message = cb["on_select_transformation"]("nope")
    assert spec is None
    assert "选择失败" in message


def test_images_selected_requires_selection(cb):
    items, message = cb["on_images_selected"]([make_item()])
    assert items == []
    assert "请先选择" in message


def test_images_selected_rejects_batch_for_single_only(cb, session):
    cb["on_select_transformation"]("pose")

    items, message = cb["on_images_selected"]([make_item("a.png"), make_item("b.png")])

    assert items == []
    assert message == callbacks.BATCH_NOT_SUPPORTED_MESSAGE


def test_images_selected_reads_files(cb, tmp_path):
    path = tmp_path / "cat.png"
    path.write_bytes(make_image_bytes())
    cb["on_select_transformation"]("funko")

    items, message = cb["on_images_selected"]([path])

    assert [item.name for item in items] == ["cat.png"]
    assert "1" in message


def test_generate_single_image(cb, gateway, session, history):
    cb["on_select_transformation"]("funko")
    cb["on_images_selected"]([make_item("cat.png")])

    result, message = cb["on_generate"]()

    assert isinstance(result, PipelineStageResult)
    assert message == "生成成功"
    assert len(gateway.edit_calls) == 1
    assert session.last_result is result
    assert session.history[0].id == result.record_id
    assert history.list_all()[0].original_filename == "cat.png"


def test_generate_with_mask_sends_mask_payload(cb, gateway, session):
    cb["on_select_transformation"]("isolate")
    cb["on_images_selected"]([make_item("group.png")])
    mask = make_data_url(color=(255, 255, 255))
    cb["on_set_mask"](mask)

    cb["on_generate"]()

    assert gateway.edit_calls[0][2] == mask.split(",", 1)[1]


def test_generate_batch_resolves_template_per_item(cb, gateway, session):
    cb["on_select_transformation"]("halloweenScene")
    cb["on_images_selected"]([make_item("a.png"), make_item("b.png")])

    result, message = cb["on_generate"]()

    assert isinstance(result, BatchResult)
    assert result.success_count == 2
    assert "成功 2 张" in message
    assert session.input_items == []
    assert all("{" not in call[1] for call in gateway.edit_calls)


def test_generate_custom_requires_prompt(cb, gateway, session):
    cb["on_select_transformation"]("customPrompt")
    cb["on_images_selected"]([make_item()])

    result, message = cb["on_generate"]()
    assert result is None
    assert "请输入提示词" in message

    session.custom_prompt = "paint it gold"
    result, _ = cb["on_generate"]()
    assert result is not None
    assert gateway.edit_calls[0][1] == "paint it gold"


def test_generate_multi_image_requires_secondary(cb, gateway):
    cb["on_select_transformation"]("pose")
    cb["on_images_selected"]([make_item("person.png")])

    result, message = cb["on_generate"]()
    assert result is None
    assert "两张图片" in message

    cb["on_secondary_selected"](make_item("pose.png"))
    result, _ = cb["on_generate"]()
    assert result is not None
    assert len(gateway.edit_calls[0][0]) == 2


def test_generate_two_step(cb, gateway, session):
    cb["on_select_transformation"]("colorPalette")
    cb["on_images_selected"]([make_item("portrait.png")])
    cb["on_secondary_selected"](make_item("palette.png", size=(30, 30)))

    result, _ = cb["on_generate"]()

    assert result.secondary_image_url is not None
    assert len(gateway.edit_calls) == 2
    assert session.history[0].secondary_image_url == result.secondary_image_url


def test_generate_video(cb, gateway, session):
    cb["on_select_transformation"]("videoGeneration")
    session.custom_prompt = "waves at dusk"
    session.aspect_ratio = "9:16"
    progress: list[str] = []

    result, message = cb["on_generate"](progress.append)

    assert isinstance(result, VideoResult)
    assert message == "生成成功"
    assert gateway.video_calls[0] == ("waves at dusk", None, "9:16")
    assert progress
    assert session.history[0].video_url == result.video_url


def test_generate_auto_flow_is_noop(cb, gateway):
    cb["on_select_transformation"]("virtualTryOnAuto")

    result, _ = cb["on_generate"]()

    assert result is None
    assert gateway.edit_calls == []


def test_generate_failure_message(cb, gateway, session):
    gateway.outputs = [GenerationFailed("refused")]
    cb["on_select_transformation"]("funko")
    cb["on_images_selected"]([make_item()])

    result, message = cb["on_generate"]()

    assert result is None
    assert message == "生成失败：refused"
    assert session.error == "refused"


def test_use_as_input_resets_selection(cb, session):
    cb["on_select_transformation"]("funko")
    cb["on_images_selected"]([make_item()])
    output, _ = cb["on_generate"]()

    item, _ = cb["on_use_as_input"](output.image_url)

    assert session.selected is None
    assert session.input_items == [item]
    assert item.name.startswith("edited-")
    assert cb["on_use_as_input"]("garbage")[0] is None


def test_history_load_download_and_clear(cb, session, storage, tmp_path):
    cb["on_select_transformation"]("funko")
    cb["on_images_selected"]([make_item("cat.png")])
    result, _ = cb["on_generate"]()

    records, message = cb["on_load_history"]()
    assert [record.id for record in records] == [result.record_id]
    assert "1" in message

    path, _ = cb["on_download"](result.record_id, "primary", tmp_path / "downloads")
    assert path.name == "generated_cat.png"
    missing, _ = cb["on_download"](result.record_id, "secondary", tmp_path / "downloads")
    assert missing is None

    assert "取消" in cb["on_clear_history"](False)
    assert cb["on_clear_history"](True) == "历史记录已清空"
    assert cb["on_load_history"]()[0] == []


def test_clear_history_revokes_video_handles(cb, session, storage):
    cb["on_select_transformation"]("videoGeneration")
    session.custom_prompt = "waves"
    cb["on_generate"]()
    cb["on_load_history"]()
    assert storage.active_handles()

    cb["on_clear_history"](True)

    assert storage.active_handles() == []


def test_reset_clears_session(cb, session):
    cb["on_select_transformation"]("funko")
    cb["on_images_selected"]([make_item()])

    assert cb["on_reset"]() == "已重置"
    assert session.selected is None
    assert session.input_items == []


def test_generate_from_prompt_needs_no_input(config, orchestrator, history, storage, gateway):
    registry = TransformationRegistry()
    registry.add(TransformationSpec(key="poster", title="Poster", prompt="a retro travel poster", is_generative=True))
    session = SessionState()
    handlers = callbacks.build_callbacks(config, orchestrator, history, storage=storage, state=session, registry=registry)
    handlers["on_select_transformation"]("poster")

    result, message = handlers["on_generate"]()

    assert message == "生成成功"
    assert gateway.generate_calls == ["a retro travel poster"]
    assert result.source_filename.startswith("generated-poster-")
    assert session.transformation_keys()[-1] == "poster"


def test_download_selected_saves_chosen_records(cb, session, tmp_path):
    cb["on_select_transformation"]("funko")
    cb["on_images_selected"]([make_item("a.png")])
    first, _ = cb["on_generate"]()
    session.input_items = []
    cb["on_images_selected"]([make_item("b.png")])
    second, _ = cb["on_generate"]()

    paths, message = cb["on_download_selected"]([second.record_id], tmp_path / "picked")

    assert [path.name for path in paths] == ["generated_b.png"]
    assert "1" in message
    assert cb["on_download_selected"]([], tmp_path / "picked") == ([], "请先选择要下载的历史记录")
    both, _ = cb["on_download_selected"]([first.record_id, second.record_id], tmp_path / "all")
    assert sorted(path.name for path in both) == ["generated_a.png", "generated_b.png"]


def test_two_step_resolves_template_options(config, orchestrator, history, storage, gateway):
    registry = TransformationRegistry()
    registry.add(
        TransformationSpec(
            key="sketchPalette",
            title="Sketch Palette",
            prompt_template="Turn this into {style} line art.",
            options=(PromptOption(key="style", title="Style", values=(OptionValue("ink"), OptionValue("pencil"))),),
            step_two_prompt="Color it with the palette.",
            is_two_step=True,
        )
    )
    session = SessionState()
    handlers = callbacks.build_callbacks(config, orchestrator, history, storage=storage, state=session, registry=registry)
    handlers["on_select_transformation"]("sketchPalette")
    handlers["on_images_selected"]([make_item("portrait.png")])
    session.prompt_options = {"style": "pencil"}

    result, message = handlers["on_generate"]()

    assert message == "生成成功"
    assert result.secondary_image_url is not None
    assert [call[1] for call in gateway.edit_calls] == [
        "Turn this into pencil line art.",
        "Color it with the palette.",
    ]
