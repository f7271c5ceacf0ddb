"""
Text generation and classification collaborators.

Thin adapters over the OpenAI chat completions API. Both calls raise
``AiError`` on any failure; the turn-taking engine decides what a failure
means.
"""

import json
from dataclasses import dataclass
from typing import List, Sequence

from openai import AsyncOpenAI, OpenAIError

from common.constants import AI_USERNAME, AI_ACTION_MARKER, AI_MAX_REPLY_CHARS
from common.protocol_definitions import MemoryPair
from server.errors import AiError
from server.utils.config import ServerConfig
from server.utils.logger import logger

GENERATION_PROMPT = (
    f"You are {AI_USERNAME}, a participant in a casual group chat. "
    "Reply to the latest message from the user in plain text, in at most "
    "{max_chars} characters. Do not prefix your reply with your name. "
    f"To describe an action instead of speaking, start the reply with "
    f"'{AI_ACTION_MARKER}' followed by the action, e.g. '{AI_ACTION_MARKER}waves'."
)

CLASSIFIER_PROMPT = (
    f"You watch a group chat that includes a participant named {AI_USERNAME}. "
    f"Decide whether the latest message is addressed to {AI_USERNAME} and expects "
    "an answer from it. Earlier exchanges between the sender and "
    f"{AI_USERNAME}, if any, are given for context. "
    'Answer with a JSON object: {"addressed": true or false, "reason": "<short reason>"}.'
)


@dataclass(frozen=True)
class ClassificationResult:
    addressed: bool
    reason: str = ''


def build_generation_messages(prompt: str, context: Sequence[MemoryPair],
                              max_chars: int = AI_MAX_REPLY_CHARS) -> List[dict]:
    """System framing, remembered pairs oldest first, then the query."""
    messages = [{"role": "system", "content": GENERATION_PROMPT.format(max_chars=max_chars)}]
    for pair in context:
        messages.append({"role": "user", "content": pair.prompt})
        messages.append({"role": "assistant", "content": pair.response})
    messages.append({"role": "user", "content": prompt})
    return messages


def build_classifier_messages(text: str, context: Sequence[MemoryPair]) -> List[dict]:
    payload = {
        "message": text,
        "previous_exchanges": [p.to_dict() for p in context],
    }
    return [
        {"role": "system", "content": CLASSIFIER_PROMPT},
        {"role": "user", "content": json.dumps(payload, ensure_ascii=False)},
    ]


def parse_classification(raw: str) -> ClassificationResult:
    """Parse the classifier's JSON answer. Raises AiError when malformed."""
    try:
        data = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        raise AiError(f"Classifier returned non-JSON output: {raw!r}") from e

    if not isinstance(data, dict) or not isinstance(data.get('addressed'), bool):
        raise AiError(f"Classifier returned malformed result: {raw!r}")

    reason = data.get('reason')
    return ClassificationResult(addressed=data['addressed'], reason=reason if isinstance(reason, str) else '')


class OpenAIChatClient:
    """Generation and classification through one OpenAI client."""

    def __init__(self, config: ServerConfig, client: AsyncOpenAI = None):
        self.config = config
        self.client = client or AsyncOpenAI(
            api_key=config.openai_api_key,
            base_url=config.openai_base_url,
            timeout=config.ai_timeout,
        )

    async def generate(self, prompt: str, context: Sequence[MemoryPair]) -> str:
        """Produce the virtual participant's reply to ``prompt``."""
        messages = build_generation_messages(prompt, context, self.config.ai_max_reply_chars)
        try:
            response = await self.client.chat.completions.create(
                model=self.config.ai_model,
                messages=messages,
                max_tokens=self.config.ai_max_tokens,
                temperature=0.7,
            )
        except OpenAIError as e:
            raise AiError(f"Generation failed: {e}") from e

        if not response.choices:
            raise AiError("Generation returned no choices")
        text = response.choices[0].message.content or ""
        return text.strip()[:self.config.ai_max_reply_chars]

    async def classify(self, text: str, context: Sequence[MemoryPair]) -> ClassificationResult:
        """Decide whether ``text`` is addressed to the virtual participant."""
        try:
            response = await self.client.chat.completions.create(
                model=self.config.ai_classifier_model,
                messages=build_classifier_messages(text, context),
                response_format={"type": "json_object"},
                max_tokens=60,
                temperature=0,
            )
        except OpenAIError as e:
            raise AiError(f"Classification failed: {e}") from e

        if not response.choices:
            raise AiError("Classification returned no choices")
        result = parse_classification(response.choices[0].message.content or "")
        logger.debug(f"Classifier: addressed={result.addressed} reason={result.reason!r}")
        return result
