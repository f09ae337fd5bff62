"""
filename_advisor.py - AI suggested filenames for composed PDFs.

The service is optional. Whatever happens on the way to it, suggest()
always ends with a usable name.
"""

import logging
import re
from datetime import date
from typing import List, Optional, Sequence, cast

from openai import AsyncOpenAI
from openai.types.chat import ChatCompletionMessageParam
from pydantic import BaseModel, Field

from .config import (
    DEFAULT_FILENAME_PREFIX,
    FALLBACK_FILENAME_STEM,
    PDF_SUFFIX,
    AdvisorSettings,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert at suggesting relevant filenames based on a list of "
    "image descriptions."
)

UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9]")


class FilenameRequest(BaseModel):
    """Request: descriptions of the images in the PDF."""

    descriptions: List[str] = Field(
        description="A list of descriptions of the images in the PDF."
    )


class FilenameSuggestion(BaseModel):
    """Structured output schema for the suggestion."""

    filename: str = Field(description="A suggested filename for the PDF.")


def default_filename(today: Optional[date] = None) -> str:
    """Date-stamped name used when there is nothing to describe."""
    today = today or date.today()
    return f"{DEFAULT_FILENAME_PREFIX}-{today.isoformat()}{PDF_SUFFIX}"


def fallback_filename(descriptions: Sequence[str]) -> str:
    """Deterministic name from the first description, e.g. "my photo.jpg" -> "my-photo.pdf"."""
    stem = descriptions[0].split(".")[0] if descriptions else ""
    stem = stem or FALLBACK_FILENAME_STEM
    return UNSAFE_FILENAME_CHARS.sub("-", stem) + PDF_SUFFIX


def normalize_filename(filename: str) -> str:
    """Ensure a .pdf extension."""
    filename = filename.strip()
    if not filename.lower().endswith(PDF_SUFFIX):
        filename += PDF_SUFFIX
    return filename


def build_prompt(descriptions: Sequence[str]) -> str:
    lines = "\n".join(f"- {description}" for description in descriptions)
    return (
        "Given the following image descriptions, suggest a concise and "
        "descriptive filename for the PDF:\n\n"
        f"{lines}\n\n"
        "Filename: "
    )


class FilenameAdvisor:
    """Asks an OpenAI-compatible chat endpoint for a filename."""

    def __init__(
        self,
        settings: Optional[AdvisorSettings] = None,
        client: Optional[AsyncOpenAI] = None
    ):
        self.settings = settings or AdvisorSettings.from_env()
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.settings.enabled:
                raise RuntimeError(
                    "FOTOPDF_API_KEY environment variable is not set. "
                    "Please set it with: export FOTOPDF_API_KEY='your-api-key'"
                )
            self._client = AsyncOpenAI(
                base_url=self.settings.api_base_url,
                api_key=self.settings.api_key,
                timeout=self.settings.timeout,
                max_retries=self.settings.max_retry_attempts,
            )
        return self._client

    async def request(self, request: FilenameRequest) -> FilenameSuggestion:
        """
        One round trip to the service.

        Raises whatever the client raises, or ValueError on an empty answer.
        """
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_prompt(request.descriptions)},
        ]
        response = await self.client.chat.completions.parse(
            model=self.settings.model_name,
            messages=cast(List[ChatCompletionMessageParam], messages),
            response_format=FilenameSuggestion,
        )

        parsed = response.choices[0].message.parsed if response.choices else None
        if parsed is None or not parsed.filename.strip():
            raise ValueError("Service returned no filename")

        logger.debug(f"Service suggested {parsed.filename!r}")
        return parsed

    async def suggest(self, descriptions: Sequence[str]) -> str:
        """
        Suggest a filename. The result may lack the .pdf extension; see
        normalize_filename().

        Empty input short-circuits to default_filename() without calling
        the service. Any failure falls back to fallback_filename().
        """
        descriptions = list(descriptions)
        if not descriptions:
            return default_filename()

        try:
            request = FilenameRequest(descriptions=descriptions)
            suggestion = await self.request(request)
            return suggestion.filename.strip()
        except Exception as e:
            logger.warning(f"Filename suggestion failed, using fallback: {e}")
            return fallback_filename(descriptions)
