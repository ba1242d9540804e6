"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
优先级：初始化参数 > 环境变量 > .env > config.yaml > secrets。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("RESEARCH_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """研究助手的全部配置项。"""

    # ---- 模型 Provider ----
    default_provider: str = Field(
        default="gemini",
        description="默认使用的 Provider 名称，例如 gemini、glm、kimi",
    )
    default_model: str = Field(
        default="research-chat",
        description="逻辑模型名，由 providers.registry 映射为具体厂商模型",
    )
    temperature: float = Field(default=0.3, ge=0.0, le=2.0, description="生成温度")

    gemini_api_key: Optional[str] = Field(default=None, description="Gemini API 密钥")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/openai",
        description="Gemini OpenAI 兼容接口基础URL",
    )
    glm_api_key: Optional[str] = Field(default=None, description="GLM API 密钥")
    glm_base_url: str = Field(
        default="https://open.bigmodel.cn/api/paas/v4",
        description="GLM API 基础URL",
    )
    kimi_api_key: Optional[str] = Field(default=None, description="Kimi API 密钥")
    kimi_base_url: str = Field(
        default="https://api.moonshot.cn/v1",
        description="Kimi API 基础URL",
    )
    http_timeout: float = Field(default=60.0, ge=1.0, description="HTTP 超时时间（秒）")

    # ---- 工具服务器 ----
    brave_api_key: str = Field(default="", description="Brave Search MCP 服务器使用的密钥")
    alphavantage_api_key: str = Field(default="", description="Alphavantage MCP 服务器使用的密钥")
    mcp_servers: Optional[List[Dict[str, Any]]] = Field(
        default=None,
        description="自定义 MCP 服务器列表；为空时使用内置的 Brave Search + Alphavantage",
    )
    mcp_startup_timeout: float = Field(default=30.0, ge=1.0, description="单个 MCP 服务器连接超时（秒）")
    mcp_call_timeout: float = Field(default=120.0, ge=1.0, description="单次工具调用超时（秒）")

    # ---- 对话引擎 ----
    max_model_attempts: int = Field(default=3, ge=1, le=10, description="模型调用最大尝试次数")
    retry_backoff_ms: int = Field(default=600, ge=0, description="线性退避基数（毫秒）")
    loop_guard_threshold: int = Field(default=3, ge=1, description="连续相同工具调用的阈值")
    min_reply_words: int = Field(default=12, ge=1, description="少于该词数的回答会被要求展开")

    # ---- Research ----
    research_default_depth: str = Field(default="Detailed", description="Concise / Detailed / Deep-dive")
    research_top_k: int = Field(default=6, ge=1, description="研究模式使用的搜索结果条数")
    quickchart_base_url: str = Field(default="https://quickchart.io/chart", description="QuickChart 接口地址")

    # ---- 日志与追踪 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")
    trace_dir: Optional[str] = Field(default=None, description="对话 trace 输出目录，为空则关闭")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("gemini_api_key", "glm_api_key", "kimi_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @field_validator("default_provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        name = v.strip().lower()
        if name not in {"gemini", "glm", "kimi"}:
            raise ValueError("default_provider must be gemini, glm or kimi")
        return name

    @field_validator("research_default_depth")
    @classmethod
    def validate_depth(cls, v: str) -> str:
        if v not in {"Concise", "Detailed", "Deep-dive"}:
            raise ValueError("research_default_depth must be Concise, Detailed or Deep-dive")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
