"""Map selections in rendered lesson markup back to the source lesson text.

The lesson page renders the text as a tree of nodes: plain words, whitespace
runs and highlight elements, in an arrangement that changes every time the
learner's known vocabulary changes. A selection arrives as two anchors, each
a node of that tree plus an offset inside it. Offsets in the original text
are recovered by counting all text that precedes an anchor in document
order, so the result does not depend on how the text was split into nodes.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Mapping, NamedTuple, Optional, Sequence, Union

from markupsafe import Markup, escape

from .vocabulary_highlighting import SENTENCE, WORD, Span

_WHITESPACE_SPLIT = re.compile(r'(\s+)')
_HAS_WHITESPACE = re.compile(r'\s')

HIGHLIGHT_CLASS = 'vocabulary-highlight'


class TextNode:
    """Leaf holding a run of lesson text."""

    __slots__ = ('text',)

    def __init__(self, text: str):
        self.text = text

    @property
    def text_content(self) -> str:
        return self.text

    def __repr__(self):
        return f'<TextNode {self.text!r}>'


class ElementNode:
    """Markup element wrapping other nodes."""

    def __init__(self, tag: str = 'span', attrs: Optional[Dict[str, str]] = None,
                 children: Optional[Sequence['Node']] = None):
        self.tag = tag
        self.attrs = dict(attrs or {})
        self.children: List[Node] = list(children or [])

    def append(self, child: 'Node') -> 'Node':
        self.children.append(child)
        return child

    @property
    def text_content(self) -> str:
        return ''.join(leaf.text for leaf in iter_text_nodes(self))

    def __repr__(self):
        return f'<ElementNode {self.tag} children={len(self.children)}>'


Node = Union[TextNode, ElementNode]


class Anchor(NamedTuple):
    """A selection boundary: a node plus an offset inside it.

    For text nodes the offset counts characters; for elements it counts
    child nodes, as DOM ranges do.
    """

    node: Node
    offset: int


@dataclass(frozen=True)
class SelectionRange:
    """A user selection expressed in lesson text coordinates."""

    start: int
    end: int
    text: str
    kind: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'text': self.text,
            'start': self.start,
            'end': self.end,
            'item_type': self.kind,
        }


def iter_text_nodes(root: Node) -> Iterator[TextNode]:
    """Yield text leaves under ``root`` in document order."""
    stack: List[Node] = [root]
    while stack:
        node = stack.pop()
        if isinstance(node, TextNode):
            yield node
        else:
            stack.extend(reversed(node.children))


def text_offset(root: Node, anchor: Anchor) -> Optional[int]:
    """Return the number of characters preceding ``anchor`` inside ``root``.

    Returns None when the anchor node is not part of ``root`` or its offset
    is out of bounds.
    """
    target, offset = anchor
    if not isinstance(offset, int) or offset < 0:
        return None

    count = 0
    stack: List[Node] = [root]
    while stack:
        node = stack.pop()
        if node is target:
            if isinstance(node, TextNode):
                return count + offset if offset <= len(node.text) else None
            if offset > len(node.children):
                return None
            return count + sum(len(child.text_content) for child in node.children[:offset])
        if isinstance(node, TextNode):
            count += len(node.text)
        else:
            stack.extend(reversed(node.children))
    return None


def classify_selection(text: str) -> str:
    """Whitespace anywhere means a sentence, otherwise a single word."""
    return SENTENCE if _HAS_WHITESPACE.search(text or '') else WORD


def resolve_selection(container: Optional[Node], start: Optional[Anchor],
                      end: Optional[Anchor]) -> Optional[SelectionRange]:
    """Resolve two anchors inside ``container`` into a :class:`SelectionRange`.

    Any failure (no container, foreign node, bad offset, blank selection)
    yields None so selection handling can never break the page.
    """
    if container is None or start is None or end is None:
        return None
    try:
        start_index = text_offset(container, Anchor(*start))
        end_index = text_offset(container, Anchor(*end))
    except (TypeError, ValueError):
        return None
    if start_index is None or end_index is None:
        return None
    if end_index < start_index:
        start_index, end_index = end_index, start_index

    full_text = container.text_content
    raw = full_text[start_index:end_index]
    stripped = raw.strip()
    if not stripped:
        return None

    leading = len(raw) - len(raw.lstrip())
    start_index += leading
    end_index = start_index + len(stripped)
    return SelectionRange(
        start=start_index,
        end=end_index,
        text=stripped,
        kind=classify_selection(stripped),
    )


def resolve_double_click_word(selected_text: Optional[str]) -> Optional[str]:
    """Return the double-clicked word, or None when it is not a single word."""
    word = (selected_text or '').strip()
    if not word or _HAS_WHITESPACE.search(word):
        return None
    return word


# ---------------------------------------------------------------------------
# Fragment tree used by the renderer
# ---------------------------------------------------------------------------

def _gap_nodes(gap: str) -> List[Node]:
    nodes: List[Node] = []
    for piece in _WHITESPACE_SPLIT.split(gap):
        if not piece:
            continue
        css = 'lesson-space' if piece.isspace() else 'lesson-word'
        nodes.append(ElementNode('span', {'class': css}, [TextNode(piece)]))
    return nodes


def build_fragments(text: str, spans: Sequence[Span]) -> ElementNode:
    """Split ``text`` into the node tree the lesson page is rendered from.

    ``spans`` must be disjoint and sorted, as returned by
    ``VocabularyMatcher.find_matches``.
    """
    root = ElementNode('div', {'data-lesson-text': ''})
    cursor = 0
    for span in spans:
        if span.start > cursor:
            for node in _gap_nodes(text[cursor:span.start]):
                root.append(node)
        root.append(ElementNode(
            'mark',
            {
                'class': HIGHLIGHT_CLASS,
                'data-type': span.kind,
                'data-translation': span.translation,
            },
            [TextNode(text[span.start:span.end])],
        ))
        cursor = span.end
    if cursor < len(text):
        for node in _gap_nodes(text[cursor:]):
            root.append(node)
    return root


def node_at_path(root: Node, path: Sequence[int]) -> Optional[Node]:
    """Follow child indices from ``root``; None if the path leaves the tree."""
    node = root
    for index in path:
        if not isinstance(node, ElementNode) or not isinstance(index, int):
            return None
        if index < 0 or index >= len(node.children):
            return None
        node = node.children[index]
    return node


def fragments_from_json(data: Any) -> ElementNode:
    """Rebuild a fragment tree from its JSON form.

    A string is a text leaf, an object with ``children`` is an element and a
    bare list is the root's children. Raises ValueError on anything else.
    """
    def build(item: Any) -> Node:
        if isinstance(item, str):
            return TextNode(item)
        if isinstance(item, Mapping) and isinstance(item.get('children', []), list):
            tag = item.get('tag') or 'span'
            return ElementNode(str(tag), children=[build(child) for child in item.get('children', [])])
        raise ValueError(f'Unsupported fragment: {item!r}')

    if isinstance(data, list):
        return ElementNode('div', {'data-lesson-text': ''}, [build(child) for child in data])
    root = build(data)
    if not isinstance(root, ElementNode):
        return ElementNode('div', {'data-lesson-text': ''}, [root])
    return root


def render_fragments(root: ElementNode) -> Markup:
    """Render the fragment tree as HTML; every element carries its path."""
    def render(node: Node, path: List[int]) -> str:
        if isinstance(node, TextNode):
            return str(escape(node.text))
        attrs = dict(node.attrs)
        attrs['data-path'] = '.'.join(str(i) for i in path)
        attr_html = ''.join(f' {name}="{escape(value)}"' for name, value in attrs.items())
        inner = ''.join(render(child, path + [i]) for i, child in enumerate(node.children))
        return f'<{node.tag}{attr_html}>{inner}</{node.tag}>'

    return Markup(render(root, []))
