import hashlib

import pytest
from lxml import etree

from provbench import fingerprint as fingerprint_module
from provbench.fingerprint import (
    CanonicalizationError,
    FingerprintError,
    ParseError,
    canonicalize,
    fingerprint,
    is_supported_algorithm,
    parse,
    timed_canonicalize,
)

COMPACT = b'<root xmlns="urn:x" b="2" a="1"><!-- generated --><child>text</child></root>'
PRETTY = b"""<?xml version="1.0" encoding="UTF-8"?>
<root   a="1"
        b="2" xmlns="urn:x">
  <child>text</child>
</root>
"""


class TestCanonicalize:
    def test_exact_canonical_form(self):
        assert canonicalize(PRETTY) == b'<root xmlns="urn:x" a="1" b="2"><child>text</child></root>'

    def test_insignificant_formatting_is_ignored(self):
        assert canonicalize(COMPACT) == canonicalize(PRETTY)
        assert fingerprint(canonicalize(COMPACT)) == fingerprint(canonicalize(PRETTY))

    def test_comments_are_stripped(self):
        assert b"generated" not in canonicalize(COMPACT)

    def test_empty_elements_are_expanded(self):
        assert canonicalize(b"<a><b/></a>") == b"<a><b></b></a>"

    def test_idempotent(self):
        once = canonicalize(PRETTY)
        assert canonicalize(once) == once

    def test_content_changes_change_the_fingerprint(self):
        other = PRETTY.replace(b"text", b"other text")
        assert fingerprint(canonicalize(other)) != fingerprint(canonicalize(PRETTY))

    def test_inline_whitespace_between_elements_is_significant(self):
        spaced = canonicalize(b"<p><b>a</b> <i>b</i></p>")
        joined = canonicalize(b"<p><b>a</b><i>b</i></p>")
        assert spaced == b"<p><b>a</b> <i>b</i></p>"
        assert fingerprint(spaced) != fingerprint(joined)

    def test_reindented_documents_share_a_fingerprint(self):
        indented = b"<p>\n  <b>a</b>\n  <i>b</i>\n</p>\n"
        tabbed = b"<p>\n\t<b>a</b>\n\t\t<i>b</i>\n</p>"
        assert canonicalize(indented) == canonicalize(tabbed) == b"<p><b>a</b><i>b</i></p>"

    def test_mixed_content_whitespace_is_kept(self):
        assert canonicalize(b"<p>see <b>a</b>\n</p>") == b"<p>see <b>a</b>\n</p>"

    def test_preserved_space_is_kept(self):
        doc = b'<r xml:space="preserve">\n  <a/>\n</r>'
        assert canonicalize(doc) == b'<r xml:space="preserve">\n  <a></a>\n</r>'

    def test_indented_output_is_idempotent(self):
        once = canonicalize(b"<r>\n  <a> x </a>\n  <b/> <c/>\n</r>")
        assert canonicalize(once) == once

    def test_malformed_input_raises_parse_error(self):
        with pytest.raises(ParseError):
            canonicalize(b"<root><unclosed></root>")

    def test_empty_input_raises_parse_error(self):
        with pytest.raises(ParseError):
            canonicalize(b"")

    def test_serialisation_failure_raises_canonicalization_error(self, monkeypatch):
        def failing_tostring(*args, **kwargs):
            raise etree.C14NError("C14N failed")

        monkeypatch.setattr(fingerprint_module.etree, "tostring", failing_tostring)
        with pytest.raises(CanonicalizationError) as excinfo:
            canonicalize(b"<a/>")
        assert isinstance(excinfo.value, FingerprintError)

    def test_timed_canonicalize_reports_whole_milliseconds(self):
        canonical, duration_ms = timed_canonicalize(PRETTY)
        assert canonical == canonicalize(PRETTY)
        assert isinstance(duration_ms, int)
        assert duration_ms >= 0


class TestParse:
    def test_returns_tree_with_root(self):
        tree = parse(PRETTY)
        assert etree.QName(tree.getroot()).localname == "root"

    def test_internal_entities_are_expanded(self):
        with_entity = b'<!DOCTYPE r [<!ENTITY e "expanded">]><r>&e;</r>'
        written_out = b"<r>expanded</r>"
        assert canonicalize(with_entity) == b"<r>expanded</r>"
        assert fingerprint(canonicalize(with_entity)) == fingerprint(canonicalize(written_out))


class TestFingerprint:
    def test_sha256_hex_digest(self):
        assert fingerprint(b"abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"

    def test_other_algorithm(self):
        assert fingerprint(b"abc", "sha512") == hashlib.sha512(b"abc").hexdigest()

    def test_supported_algorithms(self):
        assert is_supported_algorithm("sha256")
        assert not is_supported_algorithm("shake_128")
        assert not is_supported_algorithm("not-a-hash")
