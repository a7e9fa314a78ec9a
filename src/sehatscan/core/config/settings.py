"""Application settings loaded from environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """SehatScan health server configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Loopback by default; there is no auth layer in front of the MCP transport.
    sehat_host: str = "127.0.0.1"
    sehat_port: int = 8001
    sehat_log_level: str = "info"
    sehat_allow_insecure_bind: bool = False

    # Identity of the single owner this server acts for
    sehat_owner_id: str = ""
    sehat_owner_name: str = ""
    sehat_owner_since: str = ""

    # Inference service
    inference_base_url: str = "http://127.0.0.1:8000"
    inference_face_path: str = "/analyze/face"
    inference_report_path: str = "/analyze/report"
    inference_risk_path: str = "/analyze/risk"
    inference_face_timeout_s: float = 30.0
    inference_report_timeout_s: float = 60.0
    inference_risk_timeout_s: float = 45.0

    # Upload limits
    upload_max_bytes: int = 10 * 1024 * 1024
    upload_min_bytes: int = 1

    # Source image archive (face scans only); empty URL disables archiving
    archive_upload_url: str = ""
    archive_token: str = ""
    archive_grace_s: float = 5.0

    # Storage
    db_path: str = "~/.sehatscan/health.db"
    encryption_key: str = ""
    # Comma-separated retired keys still accepted for decryption
    encryption_previous_keys: str = ""

    # Cache
    cache_enabled: bool = True
    cache_ttl_stats_s: int = 60 * 5
    cache_ttl_analyses_s: int = 60 * 2
    cache_ttl_health_summary_s: int = 60 * 15

    # Health assistant LLM
    llm_provider: Literal["anthropic", "openai", "mock"] = "anthropic"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-5-20250929"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
