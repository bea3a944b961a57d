import logging
import logging.handlers
import os
import sys

from config.loader import get_logging_settings

LOG_FILE_NAME = "app.log"
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'


def setup_logging(log_dir: str = None, level: str = None, config: dict = None):
    """
    设置书籍数据库的日志。
    日志同时输出到控制台和滚动文件（10 MB x 5），使用普通文本格式。

    日志目录依次取 log_dir 参数、环境变量 NOVELCRAFT_LOG_DIR、配置文件 logging.dir；
    日志级别依次取 level 参数、环境变量 LOG_LEVEL、配置文件 logging.level。

    Args:
        log_dir (str, optional): 日志目录。
        level (str, optional): 日志级别。
        config (dict, optional): 完整配置字典，默认使用已加载的 CONFIG。
    """
    settings = get_logging_settings(config)
    log_dir = log_dir or os.getenv("NOVELCRAFT_LOG_DIR") or settings["dir"]
    level = level or os.getenv("LOG_LEVEL") or settings["level"]
    os.makedirs(log_dir, exist_ok=True)

    formatter = logging.Formatter(LOG_FORMAT)

    # 移除已有 handler，避免重复输出
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)
        handler.close()

    logging.root.setLevel(str(level).upper())

    file_handler = logging.handlers.RotatingFileHandler(
        os.path.join(log_dir, LOG_FILE_NAME),
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setFormatter(formatter)
    logging.root.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logging.root.addHandler(console_handler)

    logging.captureWarnings(True)
    logging.getLogger(__name__).debug(f"日志系统初始化完成，日志目录: {log_dir}")
