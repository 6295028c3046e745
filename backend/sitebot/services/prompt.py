"""Client for the prompt-generation service that builds a website's chatbot."""

import logging
import uuid
from dataclasses import dataclass

import httpx

from sitebot.config import settings
from sitebot.exceptions import PromptGenerationError

logger = logging.getLogger(__name__)


@dataclass
class PromptResult:
    chatbot_id: str | None


class PromptGenerator:
    """Calls ``POST {prompt_service_url}`` with ``{"websiteId": ...}``.

    The service reads the website's scraped content itself, so it must only be
    called once the combined document has been stored.
    """

    def __init__(self, url: str | None = None, http_client: httpx.AsyncClient | None = None):
        self.url = url or settings.prompt_service_url
        self._http_client = http_client

    async def generate_prompt(self, website_id: uuid.UUID) -> PromptResult:
        client = self._http_client or httpx.AsyncClient(
            timeout=settings.prompt_service_timeout_seconds
        )
        try:
            response = await client.post(self.url, json={"websiteId": str(website_id)})
        except httpx.TransportError as e:
            raise PromptGenerationError(f"Prompt service unreachable: {e!r}") from e
        finally:
            if self._http_client is None:
                await client.aclose()

        if response.is_error:
            try:
                detail = response.json().get("error")
            except ValueError:
                detail = None
            raise PromptGenerationError(
                detail or f"Failed to generate AI prompt (HTTP {response.status_code})"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise PromptGenerationError("Prompt service returned invalid JSON") from e

        chatbot_id = data.get("chatbotId") if isinstance(data, dict) else None
        logger.info(f"Generated prompt for website {website_id} (chatbot {chatbot_id})")
        return PromptResult(chatbot_id=chatbot_id)
