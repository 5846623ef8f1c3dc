import json
import logging
import re
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ..client import BedrockClient
from ..prompts import PromptTemplate

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_JSON_OBJECT = re.compile(r"({.*})", re.DOTALL)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


def extract_json(text: str) -> Optional[Dict[str, Any]]:
    """
    Pull a JSON object out of free-form model output

    Handles prose around the object, markdown code fences, single-quoted keys
    and trailing commas. Returns None when nothing usable is found.
    """
    if not text:
        return None

    fenced = _CODE_FENCE.search(text)
    if fenced:
        text = fenced.group(1)

    json_match = _JSON_OBJECT.search(text)
    if not json_match:
        return None

    candidate = json_match.group(1)
    for attempt in (candidate, _TRAILING_COMMA.sub(r"\1", candidate.replace("'", '"'))):
        try:
            parsed = json.loads(attempt)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


class UseCase(ABC):
    """A single prompt template sent to the completion model"""

    def __init__(self, template: PromptTemplate, client: Optional[BedrockClient] = None):
        self.template = template
        self.client = client or BedrockClient()

    def prompt_for(self, data: Dict[str, Any]) -> str:
        return self.template.render(**data)

    def complete(self, prompt: str) -> str:
        """
        Send a prompt with the template's generation settings

        Returns:
            The completion text ("" when the model answered with nothing)

        Raises:
            BedrockClientError: If the model call fails
        """
        start_time = time.time()
        response = self.client.invoke(prompt, max_tokens=self.template.max_tokens,
                                      temperature=self.template.temperature)
        logger.debug(f"{self.template.name} completed in {int((time.time() - start_time) * 1000)}ms")
        return response.get("text", "")

    @abstractmethod
    def run(self, data: Dict[str, Any]) -> Any:
        """Execute the use case on a dict of template values"""

    def close(self):
        self.client.close()
