"""設定とロギングのテスト"""

import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from notion_pull.config.log import setup_logging
from notion_pull.config.settings import ExportSettings


class TestExportSettings:
    """ExportSettingsのテスト"""

    def test_defaults(self, make_settings):
        settings = make_settings(output_dir=Path("./export"))
        assert settings.output_dir == Path("./export")
        assert settings.concurrency == 4
        assert settings.download_concurrency == 4
        assert settings.force is False
        assert settings.dry_run is False
        assert settings.max_depth is None
        assert settings.log_level == "INFO"

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("NOTION_TOKEN", "secret_env")
        monkeypatch.setenv("NOTION_ROOT_PAGE_ID", "abc")
        monkeypatch.setenv("DOWNLOAD_CONCURRENCY", "9")
        monkeypatch.setenv("FORCE", "1")

        settings = ExportSettings(_env_file=None)

        assert settings.notion_token == "secret_env"
        assert settings.notion_root_page_id == "abc"
        assert settings.download_concurrency == 9
        assert settings.force is True

    def test_reads_env_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("NOTION_TOKEN", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("NOTION_TOKEN=secret_file\nOUTPUT_DIR=docs\nUNRELATED=1\n", encoding="utf-8")

        settings = ExportSettings(_env_file=env_file)

        assert settings.notion_token == "secret_file"
        assert settings.output_dir == Path("docs")

    def test_token_is_required(self, monkeypatch):
        monkeypatch.delenv("NOTION_TOKEN", raising=False)
        with pytest.raises(ValidationError):
            ExportSettings(_env_file=None)

    @pytest.mark.parametrize("field", ["concurrency", "download_concurrency"])
    def test_concurrency_must_be_positive(self, make_settings, field):
        with pytest.raises(ValidationError):
            make_settings(**{field: 0})

    def test_settings_are_frozen(self, make_settings):
        settings = make_settings()
        with pytest.raises(ValidationError):
            settings.force = True


class TestSetupLogging:
    """setup_loggingのテスト"""

    @pytest.fixture(autouse=True)
    def restore_logging(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        library_levels = {name: logging.getLogger(name).level for name in ("httpx", "httpcore", "notion_client")}
        yield
        root.handlers[:] = handlers
        root.setLevel(level)
        for name, library_level in library_levels.items():
            logging.getLogger(name).setLevel(library_level)

    def test_info_quiets_libraries(self):
        setup_logging("info")
        assert logging.getLogger().level == logging.INFO
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_debug_enables_libraries(self):
        setup_logging("DEBUG")
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("notion_client").level == logging.DEBUG

    def test_accepts_numeric_level(self):
        setup_logging(logging.ERROR)
        assert logging.getLogger().level == logging.ERROR

    def test_rejects_unknown_level(self):
        with pytest.raises(ValueError):
            setup_logging("chatty")
