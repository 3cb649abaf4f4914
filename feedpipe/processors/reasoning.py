from __future__ import annotations

import json
import logging
import re
from typing import Any

from google import genai
from google.genai import types

from feedpipe.errors import MalformedResponseError

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)


class ReasoningClient:
    """Handle on the Gemini API, created once at process start and passed
    to every component that needs it.

    ``client`` may be injected so tests can substitute a fake.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gemini-2.0-flash",
        client: Any = None,
    ) -> None:
        self.model = model
        self._client = client if client is not None else genai.Client(api_key=api_key)

    def generate(
        self,
        prompt: str,
        image: bytes | None = None,
        mime_type: str = "image/png",
    ) -> str:
        contents: list[Any] = []
        if image is not None:
            contents.append(types.Part.from_bytes(data=image, mime_type=mime_type))
        contents.append(prompt)

        response = self._client.models.generate_content(model=self.model, contents=contents)
        text = getattr(response, "text", None)
        if not text:
            raise MalformedResponseError("Reasoning service returned an empty response")
        return text.strip()


def extract_json_object(text: str) -> dict[str, Any]:
    """Locate and parse the JSON object embedded in a model reply.

    Tolerates prose before/after the object and triple-backtick fences.
    """
    if not text:
        raise MalformedResponseError("No JSON object in empty response")

    candidates = [block.strip() for block in _FENCE_PATTERN.findall(text)]
    candidates.append(text.strip())

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            return parsed

    decoder = json.JSONDecoder()
    for candidate in candidates:
        start = candidate.find("{")
        while start != -1:
            try:
                parsed, _ = decoder.raw_decode(candidate, start)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, dict):
                return parsed
            start = candidate.find("{", start + 1)

    logger.debug("Unparsable response: %s", text[:500])
    raise MalformedResponseError(f"No JSON object found in response: {text[:120]!r}")
