"""Tests for content normalization and hashing."""

import hashlib

import pytest
from hypothesis import given, strategies as st

from config.settings import NormalizationOptions
from pipelines.errors import NormalizationError
from pipelines.normalizer import (
    compute_content_hash,
    generate_url_hash,
    hash_content,
    normalize,
    url_to_key,
)

EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

option_sets = st.builds(
    NormalizationOptions,
    strip_html_tags=st.booleans(),
    strip_timestamps=st.booleans(),
    strip_ads=st.booleans(),
    normalize_urls=st.booleans(),
    collapse_whitespace=st.booleans(),
    lowercase=st.booleans(),
)

markup_text = st.lists(
    st.sampled_from([
        "<p>", "</p>", "<b>", "<", ">", "Diabetes", "INSULIN", " ", "\n", "\t",
        "2024-01-15", "10:30", "03/15/2024", "Advertisement", "sponsored",
        "https://example.com/a?b=1#c", "?", "#", "glucose", "É", "é",
    ]),
    max_size=40,
).map("".join)


class TestNormalize:
    """Canonicalization steps."""

    def test_strips_tags_and_lowercases(self):
        assert normalize("<p>Hello <b>World</b></p>") == "hello world"

    def test_strips_script_and_style_blocks(self):
        raw = "<script>var a = 1;</script><style>p {}</style><p>Body text</p>"
        assert normalize(raw) == "body text"

    def test_strips_iso_timestamps(self):
        assert normalize("Updated 2024-01-15T10:30:00Z by staff") == "updated by staff"

    def test_strips_slash_dates_and_clock_times(self):
        assert normalize("Posted 03/15/2024 at 10:30 am") == "posted at"

    def test_strips_ad_markers(self):
        raw = "Great article Advertisement more text Sponsored content end"
        assert normalize(raw) == "great article more text end"

    def test_canonicalizes_urls(self):
        assert normalize("see https://Example.com/page?utm=1#top now") == "see https://example.com/page now"

    def test_options_toggle_independently(self):
        options = NormalizationOptions(lowercase=False, strip_html_tags=False)
        assert normalize("<b>Hello</b>   World", options) == "<b>Hello</b> World"

    def test_whitespace_kept_when_collapse_disabled(self):
        options = NormalizationOptions(collapse_whitespace=False)
        assert normalize("a\n\nb", options) == "a\n\nb"

    @pytest.mark.parametrize("raw", ["", "   ", "\n\t  \n", None])
    def test_empty_and_whitespace_content(self, raw):
        assert normalize(raw) == ""
        assert compute_content_hash(raw) == EMPTY_SHA256

    def test_markup_free_content(self):
        assert normalize("already plain text") == "already plain text"

    def test_unbalanced_brackets_settle(self):
        once = normalize("a <<b>c> d")
        assert once == "a c> d"
        assert normalize(once) == once

    def test_rejects_malformed_options(self):
        with pytest.raises(NormalizationError):
            normalize("text", {"lowercase": True})

    @given(markup_text, option_sets)
    def test_idempotent(self, text, options):
        once = normalize(text, options)
        assert normalize(once, options) == once

    @given(st.text(), option_sets)
    def test_idempotent_on_arbitrary_text(self, text, options):
        once = normalize(text, options)
        assert normalize(once, options) == once


class TestHashing:
    """Digest computation."""

    def test_sha256_hex_of_utf8(self):
        assert hash_content("abc") == hashlib.sha256("abc".encode("utf-8")).hexdigest()

    def test_non_ascii_is_utf8_encoded(self):
        assert hash_content("café") == hashlib.sha256("café".encode("utf-8")).hexdigest()

    def test_alternative_algorithm(self):
        assert hash_content("abc", "sha512") == hashlib.sha512(b"abc").hexdigest()

    def test_unsupported_algorithm(self):
        with pytest.raises(NormalizationError):
            hash_content("abc", "md5")

    def test_markup_changes_do_not_change_hash(self):
        assert compute_content_hash("<p>Insulin</p>") == compute_content_hash("<div>insulin</div>")

    def test_content_changes_change_hash(self):
        assert compute_content_hash("insulin") != compute_content_hash("metformin")

    @given(st.text(), option_sets)
    def test_hash_is_deterministic(self, text, options):
        assert compute_content_hash(text, options) == compute_content_hash(text, options)


class TestUrlHelpers:

    def test_generate_url_hash(self):
        url_hash = generate_url_hash("https://example.com/page")
        assert len(url_hash) == 16
        assert url_hash == hashlib.sha256(b"https://example.com/page").hexdigest()[:16]

    def test_url_to_key(self):
        assert url_to_key("https://a.com/x?y=1") == "https-a-com-x-y-1"

    def test_url_to_key_trims_edges(self):
        assert url_to_key("/path/") == "path"
