"""Highlight a learner's known vocabulary inside lesson text.

Sentences are matched before words and longer entries before shorter ones,
so a word that sits inside an already highlighted sentence is never
highlighted a second time. Matching is case-insensitive but the returned
spans always carry the text exactly as it appears in the lesson.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .text_intervals import ConsumedRanges

WORD = 'word'
SENTENCE = 'sentence'
ITEM_TYPES = (WORD, SENTENCE)


@dataclass(frozen=True)
class VocabularyItem:
    """A known vocabulary entry as supplied by the vocabulary store."""

    content: str
    translation: str = ''
    kind: str = WORD

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'VocabularyItem':
        """Build an item from a store row (``text_content``/``item_type`` keys)."""
        content = data.get('text_content')
        if content is None:
            content = data.get('content') or data.get('word') or ''
        kind = data.get('item_type') or data.get('kind') or WORD
        return cls(
            content=content,
            translation=data.get('translation') or '',
            kind=SENTENCE if kind == SENTENCE else WORD,
        )


@dataclass(frozen=True)
class Span:
    """A highlighted region ``[start, end)`` of the lesson text."""

    text: str
    translation: str
    start: int
    end: int
    kind: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'text': self.text,
            'translation': self.translation,
            'start': self.start,
            'end': self.end,
            'type': self.kind,
        }


def _literal_pattern(content: str, word_boundary: bool) -> re.Pattern:
    escaped = re.escape(content)
    if word_boundary:
        escaped = r'(?<!\w)' + escaped + r'(?!\w)'
    return re.compile(escaped, re.IGNORECASE)


class VocabularyMatcher:
    """Maps a known-vocabulary set onto text as disjoint highlight spans.

    One matcher belongs to one lesson view. Call :meth:`set_vocabulary`
    whenever the known vocabulary changes and recompute the matches; results
    are never updated incrementally.
    """

    def __init__(self, items: Optional[Iterable[Union[VocabularyItem, Mapping[str, Any]]]] = None):
        self._vocabulary: List[VocabularyItem] = []
        if items is not None:
            self.set_vocabulary(items)

    @property
    def vocabulary(self) -> List[VocabularyItem]:
        return list(self._vocabulary)

    def set_vocabulary(self, items: Iterable[Union[VocabularyItem, Mapping[str, Any]]]) -> None:
        """Replace the working vocabulary wholesale."""
        self._vocabulary = [
            item if isinstance(item, VocabularyItem) else VocabularyItem.from_dict(item)
            for item in items
        ]

    def find_matches(self, text: str) -> List[Span]:
        """Return non-overlapping spans for every known item found in ``text``."""
        if not text or not self._vocabulary:
            return []

        # sorted() is stable, so equal lengths keep their original order
        ordered = sorted(self._vocabulary, key=lambda item: len(item.content), reverse=True)
        consumed = ConsumedRanges()
        spans: List[Span] = []

        for kind, word_boundary in ((SENTENCE, False), (WORD, True)):
            for item in ordered:
                if item.kind != kind or not item.content:
                    continue
                pattern = _literal_pattern(item.content, word_boundary)
                for match in pattern.finditer(text):
                    start, end = match.span()
                    if start == end:
                        continue
                    if consumed.claim(start, end):
                        spans.append(Span(
                            text=match.group(0),
                            translation=item.translation,
                            start=start,
                            end=end,
                            kind=kind,
                        ))

        spans.sort(key=lambda span: span.start)
        return spans

    def get_translation(self, text: str) -> Optional[str]:
        """Case-insensitive exact lookup of ``text`` against stored contents."""
        needle = (text or '').lower()
        for item in self._vocabulary:
            if item.content.lower() == needle:
                return item.translation or None
        return None
