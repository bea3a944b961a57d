"""
日志与环境变量初始化测试
"""
import logging
import logging.handlers
import os

import pytest

from config import CONFIG_ENV_VAR, load_environment
from core.logger import setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    logging.captureWarnings(False)


class TestSetupLogging:

    def test_writes_to_rotating_file(self, tmp_path, restore_root_logger):
        setup_logging(log_dir=str(tmp_path), level="debug")
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert any(isinstance(h, logging.handlers.RotatingFileHandler) for h in root.handlers)

        logging.getLogger("services.book_database").info("已添加人物: 萧炎")
        for handler in root.handlers:
            handler.flush()

        content = (tmp_path / "app.log").read_text(encoding="utf-8")
        assert "INFO - services.book_database - 已添加人物: 萧炎" in content

    def test_reads_logging_section(self, tmp_path, monkeypatch, restore_root_logger):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        monkeypatch.delenv("NOVELCRAFT_LOG_DIR", raising=False)
        log_dir = tmp_path / "configured"

        setup_logging(config={"logging": {"level": "warning", "dir": str(log_dir)}})
        assert logging.getLogger().level == logging.WARNING
        assert (log_dir / "app.log").exists()

    def test_environment_overrides_config(self, tmp_path, monkeypatch, restore_root_logger):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        monkeypatch.setenv("NOVELCRAFT_LOG_DIR", str(tmp_path / "env"))

        setup_logging(config={"logging": {"level": "DEBUG", "dir": str(tmp_path / "configured")}})
        assert logging.getLogger().level == logging.ERROR
        assert (tmp_path / "env" / "app.log").exists()
        assert not (tmp_path / "configured").exists()


class TestLoadEnvironment:

    def test_reads_dotenv(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text(f"{CONFIG_ENV_VAR}=custom.yaml\n", encoding="utf-8")
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)

        load_environment(str(env_file))
        assert os.getenv(CONFIG_ENV_VAR) == "custom.yaml"
        monkeypatch.delenv(CONFIG_ENV_VAR)
