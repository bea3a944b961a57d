"""
侧车 JSON 存储 (Sidecar Store)
负责将字典数据通过存储适配器保存至 JSON 文件或从中读取，例如精确标记文件。
"""
import json
import logging

from infra.storage.file_storage import StorageAdapter

logger = logging.getLogger(__name__)


def save_json(storage: StorageAdapter, path: str, data: dict):
    """
    将字典保存为 JSON 文件，写入失败时抛出 StorageOperationError。

    Args:
        storage (StorageAdapter): 存储适配器。
        path (str): 目标文件路径。
        data (dict): 要保存的数据字典。
    """
    storage.write(path, json.dumps(data, ensure_ascii=False, indent=2))
    logger.debug(f"侧车文件已保存至: {path}")


def load_json(storage: StorageAdapter, path: str) -> dict:
    """
    从 JSON 文件加载字典。

    Returns:
        dict: 加载的数据字典，文件不存在或内容损坏时返回空字典。
    """
    if not storage.exists(path):
        logger.debug(f"未找到侧车文件: {path}")
        return {}

    try:
        data = json.loads(storage.read(path))
    except ValueError as e:
        logger.warning(f"侧车文件损坏，按空数据处理 {path}: {e}")
        return {}

    if not isinstance(data, dict):
        logger.warning(f"侧车文件格式不正确，按空数据处理: {path}")
        return {}
    return data
