"""
Address detection for the virtual participant.

Classifies a chat line as an explicit address ("@ai: ...", "ai ...",
"AI? ..."), an implicit candidate (the word "ai" appears somewhere), or
not addressed at all.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterator

ADDRESS_TOKEN = 'ai'
MENTION_PREFIX = '@'
SEPARATORS = ':?'


class AddressKind(Enum):
    EXPLICIT = 'explicit'
    IMPLICIT_CANDIDATE = 'implicit_candidate'
    NOT_ADDRESSED = 'not_addressed'


@dataclass(frozen=True)
class Addressing:
    kind: AddressKind
    query: str = ''

    @property
    def is_explicit(self) -> bool:
        return self.kind is AddressKind.EXPLICIT

    @property
    def is_candidate(self) -> bool:
        return self.kind is AddressKind.IMPLICIT_CANDIDATE


NOT_ADDRESSED = Addressing(AddressKind.NOT_ADDRESSED)
IMPLICIT_CANDIDATE = Addressing(AddressKind.IMPLICIT_CANDIDATE)


def _is_word_char(ch: str) -> bool:
    return ch.isalnum() or ch == '_'


def iter_words(text: str) -> Iterator[str]:
    """Yield runs of word characters."""
    start = None
    for i, ch in enumerate(text):
        if _is_word_char(ch):
            if start is None:
                start = i
        elif start is not None:
            yield text[start:i]
            start = None
    if start is not None:
        yield text[start:]


def mentions_token(text: str, token: str = ADDRESS_TOKEN) -> bool:
    """True if ``token`` appears as a whole word, ignoring case."""
    token = token.casefold()
    return any(word.casefold() == token for word in iter_words(text))


def _explicit_query(text: str) -> str:
    pos = 0
    if text.startswith(MENTION_PREFIX):
        pos += len(MENTION_PREFIX)

    end = pos + len(ADDRESS_TOKEN)
    if text[pos:end].casefold() != ADDRESS_TOKEN:
        return ''
    pos = end

    if pos < len(text) and text[pos] in SEPARATORS:
        pos += 1

    # whitespace after the token is mandatory
    if pos >= len(text) or not text[pos].isspace():
        return ''
    return text[pos:].strip()


def parse_addressing(text: str) -> Addressing:
    """Classify ``text`` for the turn-taking engine."""
    text = text.strip()
    query = _explicit_query(text)
    if query:
        return Addressing(AddressKind.EXPLICIT, query)
    if mentions_token(text):
        return IMPLICIT_CANDIDATE
    return NOT_ADDRESSED
