"""
Gateway Configuration

Settings for the Cora assistant gateway.
"""

import os
from functools import lru_cache
from dataclasses import dataclass

from cora.logger import DEFAULT_LOG_FORMAT


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class Settings:
    """Gateway settings with environment variable support."""

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    log_level: str = "INFO"
    log_file: str = ""
    log_format: str = DEFAULT_LOG_FORMAT

    # API
    api_prefix: str = "/api/v1"
    api_title: str = "Cora Assistant Gateway"
    api_version: str = "1.0.0"

    # Assistant
    generator_backend: str = "keyword"  # "keyword", "ollama"
    ollama_host: str = "http://localhost:11434"
    ollama_model: str = "llama3.2"
    generation_timeout: float = 30.0
    max_context_messages: int = 20
    load_sample_documents: bool = True

    # WhatsApp
    whatsapp_enabled: bool = True
    whatsapp_api_url: str = "https://graph.facebook.com/v17.0"
    whatsapp_access_token: str = ""
    whatsapp_phone_number_id: str = ""
    whatsapp_verify_token: str = ""
    whatsapp_template_language: str = "pt_BR"

    # Routing
    dedup_capacity: int = 10_000
    dedup_ttl_seconds: float = 86_400.0
    reply_delay: float = 0.5

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables."""
        return cls(
            host=os.getenv("CORA_HOST", "0.0.0.0"),
            port=int(os.getenv("CORA_PORT", "8000")),
            debug=_env_bool("CORA_DEBUG", "false"),
            log_level=os.getenv("CORA_LOG_LEVEL", "INFO"),
            log_file=os.getenv("CORA_LOG_FILE", ""),
            log_format=os.getenv("CORA_LOG_FORMAT", DEFAULT_LOG_FORMAT),
            api_prefix=os.getenv("CORA_API_PREFIX", "/api/v1"),
            api_title=os.getenv("CORA_API_TITLE", "Cora Assistant Gateway"),
            api_version=os.getenv("CORA_API_VERSION", "1.0.0"),
            generator_backend=os.getenv("CORA_GENERATOR_BACKEND", "keyword"),
            ollama_host=os.getenv("CORA_OLLAMA_HOST", "http://localhost:11434"),
            ollama_model=os.getenv("CORA_OLLAMA_MODEL", "llama3.2"),
            generation_timeout=float(os.getenv("CORA_GENERATION_TIMEOUT", "30")),
            max_context_messages=int(os.getenv("CORA_MAX_CONTEXT_MESSAGES", "20")),
            load_sample_documents=_env_bool("CORA_LOAD_SAMPLE_DOCUMENTS", "true"),
            whatsapp_enabled=_env_bool("CORA_WHATSAPP_ENABLED", "true"),
            whatsapp_api_url=os.getenv("CORA_WHATSAPP_API_URL", "https://graph.facebook.com/v17.0"),
            whatsapp_access_token=os.getenv("CORA_WHATSAPP_ACCESS_TOKEN", ""),
            whatsapp_phone_number_id=os.getenv("CORA_WHATSAPP_PHONE_NUMBER_ID", ""),
            whatsapp_verify_token=os.getenv("CORA_WHATSAPP_VERIFY_TOKEN", ""),
            whatsapp_template_language=os.getenv("CORA_WHATSAPP_TEMPLATE_LANGUAGE", "pt_BR"),
            dedup_capacity=int(os.getenv("CORA_DEDUP_CAPACITY", "10000")),
            dedup_ttl_seconds=float(os.getenv("CORA_DEDUP_TTL_SECONDS", "86400")),
            reply_delay=float(os.getenv("CORA_REPLY_DELAY", "0.5")),
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings.from_env()
