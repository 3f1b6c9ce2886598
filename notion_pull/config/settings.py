"""エクスポート設定管理"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ExportSettings(BaseSettings):
    """エクスポート実行設定（実行中は不変）"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Notion API
    notion_token: str
    notion_root_page_id: str | None = None  # 未指定ならsearchでルートを探索
    proxy: str | None = None
    request_timeout: float = Field(default=30.0, gt=0)

    # 出力
    output_dir: Path = Path("./export")
    force: bool = False
    dry_run: bool = False

    # 並列度
    concurrency: int = Field(default=4, ge=1)
    download_concurrency: int = Field(default=4, ge=1)
    max_depth: int | None = Field(default=None, ge=0)

    log_level: str = "INFO"


@lru_cache
def get_settings() -> ExportSettings:
    """設定のシングルトンインスタンスを返す"""
    return ExportSettings()
