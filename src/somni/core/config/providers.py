"""Provider configurations for external services."""

from pydantic import BaseModel, ConfigDict


class OpenAIConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    api_key: str = ""
    organization: str | None = None


class OpenRouterConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    api_key: str = ""
    base_url: str = "https://openrouter.ai/api/v1"
    # Sent as HTTP-Referer / X-Title so requests are attributed on openrouter.ai
    site_url: str = ""
    site_name: str = "somni"


__all__ = ["OpenAIConfig", "OpenRouterConfig"]
