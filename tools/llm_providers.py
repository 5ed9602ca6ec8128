"""LLM Provider Factory - Unified interface for the supported LLM providers.

Supports:
- Anthropic API (direct)
- AWS Bedrock (Claude models)

Example usage:
    from tools.llm_providers import ClaudeClient
    from config.settings import get_settings

    client = ClaudeClient(get_settings())
    text = client.generate("Summarize this issue", system_prompt="You are a PM.")
"""

import logging
from typing import TYPE_CHECKING

from langchain_core.messages import HumanMessage, SystemMessage

if TYPE_CHECKING:
    from langchain_core.language_models.chat_models import BaseChatModel

from config.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def get_llm_client(
    settings: Settings,
    temperature: float = 0.1,
    max_tokens: int = 4096,
) -> "BaseChatModel":
    """Create an LLM client based on the configured provider.

    Every client is bounded by ``settings.external_call_timeout``.

    Args:
        settings: Application settings with LLM configuration
        temperature: Sampling temperature (0.0-1.0). Lower = more deterministic.
        max_tokens: Maximum tokens in the response.

    Returns:
        A LangChain chat model instance

    Raises:
        ValueError: If the configured provider is not supported or credentials are missing
    """
    provider = settings.llm_provider

    if provider == "anthropic":
        return _create_anthropic_client(settings, temperature, max_tokens)
    elif provider == "bedrock":
        return _create_bedrock_client(settings, temperature, max_tokens)
    else:
        raise ValueError(f"Unsupported LLM provider: {provider}")


def _create_anthropic_client(
    settings: Settings,
    temperature: float,
    max_tokens: int,
) -> "BaseChatModel":
    """Create a direct Anthropic API client."""
    from langchain_anthropic import ChatAnthropic

    if not settings.anthropic_api_key:
        raise ValueError(
            "ANTHROPIC_API_KEY is required when using anthropic provider. "
            "Set it in your .env file or environment."
        )

    logger.info(f"Creating Anthropic client: model={settings.anthropic_model}")

    return ChatAnthropic(
        api_key=settings.anthropic_api_key,
        model_name=settings.anthropic_model,
        temperature=temperature,
        max_tokens=max_tokens,
        timeout=settings.external_call_timeout,
    )


def _create_bedrock_client(
    settings: Settings,
    temperature: float,
    max_tokens: int,
) -> "BaseChatModel":
    """Create an AWS Bedrock LLM client.

    Uses IAM credentials from the environment or instance profile.
    """
    from botocore.config import Config
    from langchain_aws import ChatBedrock

    logger.info(f"Creating Bedrock client: model={settings.bedrock_model_id}, region={settings.bedrock_region}")

    return ChatBedrock(
        model_id=settings.bedrock_model_id,
        region_name=settings.bedrock_region,
        config=Config(
            connect_timeout=settings.external_call_timeout,
            read_timeout=settings.external_call_timeout,
        ),
        model_kwargs={
            "temperature": temperature,
            "max_tokens": max_tokens,
        },
    )


def get_provider_info(settings: Settings) -> dict:
    """Get information about the currently configured LLM provider."""
    provider = settings.llm_provider

    if provider == "anthropic":
        return {
            "provider": "anthropic",
            "model": settings.anthropic_model,
            "description": "Anthropic API (direct)",
        }
    elif provider == "bedrock":
        return {
            "provider": "bedrock",
            "model": settings.bedrock_model_id,
            "region": settings.bedrock_region,
            "description": "AWS Bedrock (Claude models)",
        }
    else:
        return {
            "provider": provider,
            "description": "Unknown provider",
        }


def _content_text(content) -> str:
    """Flatten a chat message content (string or content blocks) to text."""
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


class ClaudeClient:
    """Text-in, text-out wrapper used by the stage roles."""

    def __init__(
        self,
        settings: Settings | None = None,
        llm: "BaseChatModel | None" = None,
        temperature: float = 0.1,
    ):
        self.settings = settings or get_settings()
        self._llm = llm
        self.temperature = temperature

    @property
    def llm(self) -> "BaseChatModel":
        """Chat model, created on first use."""
        if self._llm is None:
            self._llm = get_llm_client(self.settings, self.temperature, self.settings.llm_max_tokens)
        return self._llm

    def generate(self, prompt: str, system_prompt: str | None = None) -> str:
        """Send one prompt and return the completion text."""
        messages = []
        if system_prompt:
            messages.append(SystemMessage(content=system_prompt))
        messages.append(HumanMessage(content=prompt))

        logger.debug(f"LLM request: {len(prompt)} chars")
        response = self.llm.invoke(messages)
        return _content_text(response.content)
