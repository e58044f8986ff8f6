"""One-off script for debugging a single image edit against the live API."""

import sys
from pathlib import Path

from app import create_app


def main() -> None:
    # 1. 准备真实配置与服务对象（需要 .env 中的 GEMINI_API_KEY）
    workspace = create_app()
    callbacks = workspace.callbacks

    # 2. 选择效果并载入输入图片
    source = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("debug_input.png")
    key = sys.argv[2] if len(sys.argv) > 2 else "funko"
    _, status = callbacks["on_select_transformation"](key)
    print("状态:", status)
    _, status = callbacks["on_images_selected"]([source])
    print("状态:", status)

    # 3. 调用生成回调，执行真实请求
    result, status = callbacks["on_generate"](print)
    print("状态:", status)
    if result is None:
        print("未返回结果，请检查状态信息。")
        return

    out_dir = Path("debug_output")
    path, status = callbacks["on_download"](result.record_id, "primary", out_dir)
    print("状态:", status)
    if path:
        print("图像已保存:", path.resolve())


if __name__ == "__main__":
    main()
