from __future__ import annotations

import hashlib
import time

from lxml import etree

from .metrics import elapsed_ms

DEFAULT_ALGORITHM = "sha256"
XML_SPACE = "{http://www.w3.org/XML/1998/namespace}space"


class FingerprintError(Exception):
    """Base class for failures turning a raw document into a fingerprint."""


class ParseError(FingerprintError):
    """Raised when the raw bytes are not a well-formed XML document."""


class CanonicalizationError(FingerprintError):
    """Raised when a parsed document cannot be serialised as canonical XML."""


def _make_parser() -> etree.XMLParser:
    return etree.XMLParser(
        remove_blank_text=False,
        resolve_entities="internal",
        no_network=True,
        huge_tree=False,
    )


def _is_blank(text: str | None) -> bool:
    return text is None or not text.strip()


def _is_indentation(element: etree._Element) -> bool:
    """True when every text run directly inside ``element`` is a line-break indent."""
    runs = [element.text] + [child.tail for child in element]
    if not all(_is_blank(run) for run in runs):
        return False
    return all("\n" in run for run in runs if run)


def _strip_indentation(element: etree._Element, preserve: bool = False) -> None:
    space = element.get(XML_SPACE)
    if space is not None:
        preserve = space == "preserve"
    if not preserve and len(element) and _is_indentation(element):
        element.text = None
        for child in element:
            child.tail = None
    for child in element:
        if isinstance(child.tag, str):
            _strip_indentation(child, preserve)


def parse(raw_bytes: bytes) -> etree._ElementTree:
    """Parse ``raw_bytes`` and drop the line-break indentation of element-only content.

    Whitespace inside mixed content, whitespace between inline siblings that
    contains no line break, and anything under ``xml:space="preserve"`` is kept.
    Internal DTD entities are expanded; external ones are never fetched.
    """
    try:
        root = etree.fromstring(raw_bytes, parser=_make_parser())
    except etree.XMLSyntaxError as exc:
        raise ParseError(f"malformed XML document: {exc}") from exc
    if root is None:
        raise ParseError("document has no root element")
    _strip_indentation(root)
    return root.getroottree()


def canonicalize(raw_bytes: bytes) -> bytes:
    """Return the inclusive C14N 1.0 form of ``raw_bytes`` with comments omitted.

    Indentation between elements is dropped while parsing, so re-indenting a
    document does not change its canonical form. Applying the function to its
    own output returns the same bytes.
    """
    tree = parse(raw_bytes)
    try:
        return etree.tostring(tree, method="c14n", exclusive=False, with_comments=False)
    except (etree.C14NError, ValueError) as exc:
        raise CanonicalizationError(f"unable to canonicalize document: {exc}") from exc


def timed_canonicalize(raw_bytes: bytes) -> tuple[bytes, int]:
    start = time.perf_counter()
    canonical = canonicalize(raw_bytes)
    return canonical, elapsed_ms(start)


def fingerprint(canonical_bytes: bytes, algorithm: str = DEFAULT_ALGORITHM) -> str:
    return hashlib.new(algorithm, canonical_bytes).hexdigest()


def is_supported_algorithm(algorithm: str) -> bool:
    # shake_* digests need an explicit length and cannot back a fixed fingerprint
    return algorithm in hashlib.algorithms_available and not algorithm.startswith("shake")


__all__ = [
    "DEFAULT_ALGORITHM",
    "CanonicalizationError",
    "FingerprintError",
    "ParseError",
    "canonicalize",
    "fingerprint",
    "is_supported_algorithm",
    "parse",
    "timed_canonicalize",
]
