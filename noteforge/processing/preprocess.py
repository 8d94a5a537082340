"""Emoji substitution ahead of the markdown converter.

Every emoji in the note is replaced by a pandoc inline image pointing at a
locally cached twemoji PNG, so the DOCX renders it regardless of the fonts
installed. The rewrite is a plain text substitution over the whole
document: emoji inside code spans and fenced blocks are rewritten too.
A character followed by the text presentation selector (U+FE0E) was asked
to render as text and is left alone.
"""

import logging
import re
from typing import Dict, List

import emoji

from noteforge.errors import NetworkError
from noteforge.processing.glyph_cache import GlyphCache

logger = logging.getLogger(__name__)

VS15 = "\ufe0e"


def scan_tokens(text: str) -> List[str]:
    """Distinct emoji in order of first appearance, ignoring text-style ones."""
    return list(dict.fromkeys(
        match["emoji"]
        for match in emoji.emoji_list(text)
        if not text.startswith(VS15, match["match_end"])
    ))


def image_reference(path: str, size: str) -> str:
    return f"![]({path}){{width={size} height={size}}}"


class Preprocessor:
    def __init__(self, cache: GlyphCache, inline_size: str = "1em"):
        self.cache = cache
        self.inline_size = inline_size

    async def resolve_tokens(self, tokens: List[str]) -> Dict[str, str]:
        """Map each token to its image reference. Tokens that cannot be
        fetched are left out and stay literal."""
        references: Dict[str, str] = {}
        for token in tokens:
            try:
                path = await self.cache.resolve(token)
            except NetworkError as e:
                logger.warning(f"Failed to download emoji {token!r}: {e}")
                continue
            references[token] = image_reference(str(path), self.inline_size)
        return references

    async def process(self, text: str) -> str:
        tokens = scan_tokens(text)
        if not tokens:
            return text

        references = await self.resolve_tokens(tokens)
        if not references:
            return text

        # Longest first so a modifier sequence wins over its base emoji.
        pattern = re.compile(
            "|".join(
                re.escape(t) + f"(?!{VS15})"
                for t in sorted(references, key=len, reverse=True)
            )
        )
        return pattern.sub(lambda m: references[m.group(0)], text)
