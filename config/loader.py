"""
配置加载
读取 config.yaml 与可选的 user_config.yaml（PyYAML safe_load），按节合并后暴露 CONFIG。
环境变量 NOVELCRAFT_CONFIG 可以指定基础配置文件路径。
"""
import copy
import os
import logging
from typing import Optional

import yaml

from config import CONFIG_ENV_VAR
from core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    "storage": {
        "overflow_threshold": 5000,
        "preview_length": 200,
        "meta_file": "_book_meta.md",
        "characters_file": "_characters.md",
        "story_units_file": "_story_units.md",
        "events_file": "_events.md",
        "canvas_folder": "_canvas",
        "story_unit_texts_folder": "_story_unit_texts",
        "hidden_folder": ".novelcraft",
        "marks_file": "_precise_marks.json",
    },
    "logging": {
        "level": "INFO",
        "dir": "logs",
    },
}

# 需要按键合并的配置节
_MERGEABLE_SECTIONS = ("storage", "logging")


def get_config_path() -> str:
    return os.getenv(CONFIG_ENV_VAR) or os.path.abspath("config.yaml")


def get_user_config_path(config_path: Optional[str] = None) -> str:
    base_dir = os.path.dirname(config_path or get_config_path())
    return os.path.join(base_dir, "user_config.yaml")


def _read_yaml(path: str) -> dict:
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error(f"解析 {path} 文件失败: {e}", exc_info=True)
        raise ConfigurationError(f"错误: 解析 {path} 文件失败: {e}")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"错误: {path} 的顶层必须是映射")
    return data


def _merge_configs(base_config: dict, user_config: dict) -> dict:
    """
    合并基础配置和用户配置。
    storage 和 logging 节按键覆盖，其余顶层键直接替换。
    """
    merged_config = copy.deepcopy(base_config)
    for key, value in user_config.items():
        if key in _MERGEABLE_SECTIONS and isinstance(value, dict):
            merged_config[key] = merged_config.get(key) or {}
            merged_config[key].update(value)
        else:
            merged_config[key] = value
    return merged_config


def load_config(config_path: Optional[str] = None) -> dict:
    """
    加载并合并 默认配置、config.yaml、user_config.yaml。

    Raises:
        ConfigurationError: YAML 格式错误。
    """
    config_path = config_path or get_config_path()
    base_config = _read_yaml(config_path)
    if not base_config:
        logger.info(f"配置文件 {config_path} 未找到或为空，使用默认配置。")

    merged = _merge_configs(DEFAULT_CONFIG, base_config)
    merged = _merge_configs(merged, _read_yaml(get_user_config_path(config_path)))
    return merged


CONFIG = load_config()


def get_storage_settings(config: Optional[dict] = None) -> dict:
    """获取存储相关设置（溢出阈值、预览长度、文件名等）"""
    config = config if config is not None else CONFIG
    settings = dict(DEFAULT_CONFIG["storage"])
    settings.update(config.get("storage") or {})
    return settings


def get_logging_settings(config: Optional[dict] = None) -> dict:
    """获取日志设置（level, dir）"""
    config = config if config is not None else CONFIG
    settings = dict(DEFAULT_CONFIG["logging"])
    settings.update(config.get("logging") or {})
    return settings


def save_user_config(user_config_data: dict, config_path: Optional[str] = None):
    """
    将用户配置字典写回到 user_config.yaml 文件。

    Args:
        user_config_data (dict): 要保存的用户配置数据。
        config_path (str, optional): 基础配置文件路径，用户配置写在同一目录。
    """
    user_config_path = get_user_config_path(config_path)
    try:
        os.makedirs(os.path.dirname(user_config_path) or '.', exist_ok=True)
        with open(user_config_path, "w", encoding="utf-8") as f:
            yaml.dump(user_config_data, f, allow_unicode=True, sort_keys=False)
        logger.info(f"用户配置已成功保存到 {user_config_path}。")
    except OSError as e:
        logger.error(f"写入 {user_config_path} 文件失败: {e}", exc_info=True)
        raise ConfigurationError(f"错误: 写入 {user_config_path} 文件失败: {e}")
