"""
Turn-taking engine for the virtual participant.

Decides, per chat line, whether the AI should answer, runs the generation
round-trip, and keeps the per-user follow-up flag and memory up to date.

Decision order, first match wins:

1. Explicit address ("@ai: question") - answer the remainder, no classifier.
2. The word "ai" appears, or the sender's follow-up flag is set - ask the
   classifier. Memory is passed as context only when the flag triggered it.
   The flag is consumed here.
3. Otherwise stay quiet.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from common.constants import AI_ACTION_MARKER
from common.protocol_definitions import MemoryPair, create_ai_message, create_ai_action_message
from server.ai.addressing import parse_addressing
from server.ai.llm_client import ClassificationResult
from server.ai.memory import AiMemory
from server.errors import AiError
from server.utils.logger import logger


class Trigger:
    EXPLICIT = 'explicit'
    KEYWORD = 'keyword'
    FOLLOW_UP = 'follow_up'


@dataclass
class TurnDecision:
    respond: bool
    query: str = ''
    trigger: Optional[str] = None
    memory: List[MemoryPair] = field(default_factory=list)
    reason: str = ''


@dataclass(frozen=True)
class GenerationOutcome:
    ok: bool
    text: str = ''
    error: Optional[str] = None


@dataclass(frozen=True)
class AiReply:
    """What the engine wants broadcast. ``envelope`` is None when nothing is."""
    envelope: Optional[dict]
    outcome: GenerationOutcome


def split_action(reply: str):
    """Return (is_action, text) for a generated reply."""
    reply = reply.strip()
    marker = AI_ACTION_MARKER.rstrip()
    if reply == marker or reply.startswith(AI_ACTION_MARKER):
        return True, reply[len(marker):].strip()
    return False, reply


class TurnTakingEngine:
    """Decides when the virtual participant speaks and what it remembers."""

    def __init__(self, collaborator, memory: AiMemory):
        self.collaborator = collaborator
        self.memory = memory
        self._follow_up: Dict[str, bool] = {}
        self.lock = asyncio.Lock()

    async def expecting_follow_up(self, username: str) -> bool:
        async with self.lock:
            return self._follow_up.get(username.casefold(), False)

    async def set_follow_up(self, username: str, value: bool):
        async with self.lock:
            self._follow_up[username.casefold()] = value

    async def _consume_follow_up(self, username: str) -> bool:
        async with self.lock:
            return self._follow_up.pop(username.casefold(), False)

    async def _classify(self, text: str, context: List[MemoryPair]) -> ClassificationResult:
        try:
            return await self.collaborator.classify(text, context)
        except AiError as e:
            logger.warning(f"Treating message as not addressed: {e}")
            return ClassificationResult(addressed=False, reason=str(e))

    async def _generate(self, query: str, context: List[MemoryPair]) -> GenerationOutcome:
        try:
            text = await self.collaborator.generate(query, context)
        except AiError as e:
            logger.warning(f"AI generation failed: {e}")
            return GenerationOutcome(ok=False, error=str(e))
        return GenerationOutcome(ok=True, text=text or '')

    async def decide(self, username: str, text: str) -> TurnDecision:
        """Run the address heuristic for one chat line."""
        addressing = parse_addressing(text)
        if addressing.is_explicit:
            memory = await self.memory.load(username)
            return TurnDecision(True, addressing.query, Trigger.EXPLICIT, memory, 'explicit address')

        follow_up = await self._consume_follow_up(username)
        if not (addressing.is_candidate or follow_up):
            return TurnDecision(False)

        trigger = Trigger.FOLLOW_UP if follow_up else Trigger.KEYWORD
        memory = await self.memory.load(username) if follow_up else []
        result = await self._classify(text, memory)
        logger.debug(f"Classifier for {username} ({trigger}): addressed={result.addressed} {result.reason!r}")
        if not result.addressed:
            return TurnDecision(False, trigger=trigger, reason=result.reason)

        if not follow_up:
            memory = await self.memory.load(username)
        return TurnDecision(True, text.strip(), trigger, memory, result.reason)

    async def respond(self, username: str, query: str, memory: List[MemoryPair]) -> AiReply:
        """Generate a reply, update follow-up state and memory."""
        outcome = await self._generate(query, memory)
        if not outcome.ok:
            await self.set_follow_up(username, False)
            return AiReply(None, outcome)

        await self.set_follow_up(username, True)

        is_action, text = split_action(outcome.text)
        if not text:
            if is_action:
                logger.warning(f"Discarding empty AI action for {username}")
            else:
                logger.info(f"AI returned an empty reply for {username}")
            return AiReply(None, outcome)

        await self.memory.remember(username, query, outcome.text.strip())
        logger.log_ai_exchange(username, query, outcome.text.strip())
        envelope = create_ai_action_message(text) if is_action else create_ai_message(text)
        return AiReply(envelope, outcome)

    async def handle_message(self, username: str, text: str) -> Optional[dict]:
        """Full turn for one chat line. Returns the envelope to broadcast, if any."""
        decision = await self.decide(username, text)
        if not decision.respond:
            return None
        logger.info(f"AI responding to {username} ({decision.trigger})")
        reply = await self.respond(username, decision.query, decision.memory)
        return reply.envelope
