"""配置加载（pydantic-settings + config.yaml + .env）。"""

from research_core.config.settings import Settings, settings

__all__ = ["Settings", "settings"]
