from dotenv import load_dotenv
import logging
import os

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "NOVELCRAFT_CONFIG"


def load_environment(dotenv_path=None):
    """
    从.env文件加载环境变量到环境中。
    """
    load_dotenv(dotenv_path)
    logger.debug("环境变量已从 .env 文件加载。")
    if os.getenv(CONFIG_ENV_VAR):
        logger.debug(f"使用 {CONFIG_ENV_VAR} 指定的配置文件: {os.getenv(CONFIG_ENV_VAR)}")
