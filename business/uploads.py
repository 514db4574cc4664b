"""订单截图存储。

目录结构：``<upload_dir>/order-screenshots/<商家ID>/<yyyyMMdd>/<HHmm>.jpg``，
同一分钟内重复上传会覆盖前一张。
"""
import os
from datetime import datetime
from typing import Optional

from loguru import logger

from database.errors import ValidationError

SCREENSHOT_FOLDER = "order-screenshots"


def save_order_screenshot(upload_dir: str, merchant_id: str, content: bytes,
                          max_bytes: int,
                          now: Optional[datetime] = None) -> str:
    """保存截图，返回相对于 upload_dir 的 URL 路径。

    Raises:
        ValidationError: 文件为空或超过大小限制。
    """
    if not content:
        raise ValidationError("截图文件为空")
    if len(content) > max_bytes:
        raise ValidationError(f"截图文件不能超过 {max_bytes // (1024 * 1024)}MB")

    now = now or datetime.now()
    day_folder = now.strftime("%Y%m%d")
    file_name = now.strftime("%H%M") + ".jpg"

    directory = os.path.join(upload_dir, SCREENSHOT_FOLDER, merchant_id, day_folder)
    os.makedirs(directory, exist_ok=True)
    with open(os.path.join(directory, file_name), "wb") as f:
        f.write(content)

    relative = f"{SCREENSHOT_FOLDER}/{merchant_id}/{day_folder}/{file_name}"
    logger.info(f"订单截图已保存: {relative} ({len(content)} bytes)")
    return relative
