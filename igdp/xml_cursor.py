"""Read-only navigation over parsed XML documents.

A :class:`Cursor` wraps "an element or nothing". Descending from an empty
cursor yields another empty cursor, so a fixed path such as
``doc.descend("Envelope").descend("Body")`` never raises on a missing
element; absence simply propagates to the end of the chain.

Element names are matched on their local part, ignoring namespaces.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from xml.etree.ElementTree import Element  # nosec B405 - only used to build an empty container

import defusedxml.ElementTree as ET  # noqa: N817
from defusedxml import DefusedXmlException

from igdp.exceptions import XmlParseError

_DOCUMENT_TAG = "#document"


def local_name(tag: object) -> str | None:
    """Strip the ``{namespace}`` prefix from an element tag."""
    if not isinstance(tag, str):
        return None
    return tag.rsplit("}", 1)[-1]


@dataclass(frozen=True)
class Cursor:
    """Immutable position in an XML tree, possibly empty."""

    node: Element | None = None

    @property
    def exists(self) -> bool:
        return self.node is not None

    def descend(self, tag: str) -> Cursor:
        """Move to the first direct child named ``tag``."""
        if self.node is None:
            return _EMPTY
        for child in self.node:
            if local_name(child.tag) == tag:
                return Cursor(child)
        return _EMPTY

    def text(self) -> str | None:
        """Text content of the current element, if any."""
        if self.node is None:
            return None
        return self.node.text

    def descendants(self, tag: str) -> Iterator[Cursor]:
        """All elements below (and including) this one named ``tag``, in document order."""
        if self.node is None:
            return
        for element in self.node.iter():
            if local_name(element.tag) == tag:
                yield Cursor(element)


_EMPTY = Cursor()


def parse_document(text: str) -> Cursor:
    """Parse ``text`` and return a cursor over the document node.

    The document node has the root element as its only child, so the first
    ``descend`` call names the root element itself.

    Raises:
        XmlParseError: If ``text`` is not well-formed or uses forbidden
            constructs (entity expansion, external references)

    """
    try:
        root = ET.fromstring(text)  # noqa: S314  # nosec B314 - defusedxml.ElementTree.fromstring
    except ET.ParseError as e:
        msg = f"xml parsing error: {e}"
        raise XmlParseError(msg) from e
    except DefusedXmlException as e:
        msg = f"xml rejected: {e}"
        raise XmlParseError(msg) from e
    document = Element(_DOCUMENT_TAG)
    document.append(root)
    return Cursor(document)
