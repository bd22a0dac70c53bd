"""Unit tests for TextNormalizer."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from newsletter_ingestor.core.link_codec import LinkCodec
from newsletter_ingestor.core.models import Message
from newsletter_ingestor.core.normalizer import TextNormalizer, normalize


@pytest.fixture
def normalizer() -> TextNormalizer:
    return TextNormalizer()


class TestDocumentedElements:
    """Each supported element maps to its markdown equivalent."""

    def test_daily_digest_scenario(self, normalizer: TextNormalizer) -> None:
        html = '<h1>Daily</h1><p>See <a href="https://example.com/a">this</a>.</p>'
        assert normalizer.normalize(html) == "# Daily\n\nSee [this](https://example.com/a)."

    @pytest.mark.parametrize("level", [1, 2, 3, 4, 5, 6])
    def test_heading_levels(self, normalizer: TextNormalizer, level: int) -> None:
        html = f"<h{level}>Title</h{level}>"
        assert normalizer.normalize(html) == f"{'#' * level} Title"

    def test_heading_with_attributes(self, normalizer: TextNormalizer) -> None:
        assert normalizer.normalize('<h2 class="big" style="x">News</h2>') == "## News"

    def test_paragraphs_separated_by_blank_line(self, normalizer: TextNormalizer) -> None:
        assert normalizer.normalize("<p>One</p><p>Two</p>") == "One\n\nTwo"

    def test_line_breaks(self, normalizer: TextNormalizer) -> None:
        assert normalizer.normalize("a<br>b<br/>c<br />d") == "a\nb\nc\nd"

    def test_horizontal_rule(self, normalizer: TextNormalizer) -> None:
        assert normalizer.normalize("above<hr>below") == "above\n---\nbelow"

    def test_bold_and_strong(self, normalizer: TextNormalizer) -> None:
        assert normalizer.normalize("<b>x</b> and <strong>y</strong>") == "**x** and **y**"

    def test_italic_and_em(self, normalizer: TextNormalizer) -> None:
        assert normalizer.normalize("<i>x</i> and <em>y</em>") == "*x* and *y*"

    def test_anchor_with_single_quotes(self, normalizer: TextNormalizer) -> None:
        html = "<a class='btn' href='https://example.com/b' target='_blank'>Read</a>"
        assert normalizer.normalize(html) == "[Read](https://example.com/b)"

    def test_anchor_with_unquoted_href(self, normalizer: TextNormalizer) -> None:
        html = "<p>See <a href=https://example.com/a>this</a>.</p>"
        assert normalizer.normalize(html) == "See [this](https://example.com/a)."

    def test_anchor_without_href_keeps_text(self, normalizer: TextNormalizer) -> None:
        assert normalizer.normalize('<a name="top">Top</a>') == "Top"

    def test_anchor_with_nested_markup(self, normalizer: TextNormalizer) -> None:
        html = '<a href="https://example.com"><span>Go</span></a>'
        assert normalizer.normalize(html) == "[Go](https://example.com)"

    def test_unordered_list(self, normalizer: TextNormalizer) -> None:
        html = "<ul><li>one</li><li>two</li></ul>"
        assert normalizer.normalize(html) == "- one\n- two"

    def test_ordered_list_numbers_sequentially(self, normalizer: TextNormalizer) -> None:
        html = "<ol><li>first</li><li>second</li><li>third</li></ol>"
        assert normalizer.normalize(html) == "1. first\n2. second\n3. third"

    def test_ordered_list_counter_restarts_per_list(self, normalizer: TextNormalizer) -> None:
        html = "<ol><li>a</li><li>b</li></ol><p>between</p><ol><li>c</li></ol>"
        assert normalizer.normalize(html) == "1. a\n2. b\n\nbetween\n\n1. c"

    def test_list_items_without_closing_tags(self, normalizer: TextNormalizer) -> None:
        assert normalizer.normalize("<ul><li>one<li>two</ul>") == "- one\n- two"


class TestStripping:
    """Script, style and residual tags are removed."""

    def test_script_and_style_blocks_removed(self, normalizer: TextNormalizer) -> None:
        html = (
            "<style>p { color: red; }</style>"
            "<script type='text/javascript'>alert('x')</script>"
            "<p>Visible</p>"
        )
        assert normalizer.normalize(html) == "Visible"

    def test_residual_tags_stripped(self, normalizer: TextNormalizer) -> None:
        html = "<table><tr><td><span>cell</span></td></tr></table>"
        assert normalizer.normalize(html) == "cell"

    def test_comments_removed(self, normalizer: TextNormalizer) -> None:
        assert normalizer.normalize("<!-- tracking -->Hello") == "Hello"

    def test_div_closings_become_line_breaks(self, normalizer: TextNormalizer) -> None:
        assert normalizer.normalize("<div>one</div><div>two</div>") == "one\ntwo"


class TestEntities:
    """A fixed set of entities is decoded."""

    def test_basic_entities(self, normalizer: TextNormalizer) -> None:
        html = "Tom &amp; Jerry &lt;3 &quot;cheese&quot; &#39;n&apos; more &gt;"
        assert normalizer.normalize(html) == "Tom & Jerry <3 \"cheese\" 'n' more >"

    def test_non_breaking_spaces(self, normalizer: TextNormalizer) -> None:
        assert normalizer.normalize("a&nbsp;b\xa0c&#160;d") == "a b c d"

    def test_ampersand_decoded_last(self, normalizer: TextNormalizer) -> None:
        assert normalizer.normalize("&amp;lt;") == "&lt;"


class TestWhitespace:
    """Line trimming and blank line collapsing."""

    def test_plain_text_is_identity_modulo_trimming(self, normalizer: TextNormalizer) -> None:
        text = "Hello world\n\nSecond paragraph with https://example.com link."
        assert normalizer.normalize(f"  {text}\n\n") == text

    def test_lines_are_trimmed(self, normalizer: TextNormalizer) -> None:
        assert normalizer.normalize("   a   \n   b   ") == "a\nb"

    def test_blank_line_runs_collapse_to_one(self, normalizer: TextNormalizer) -> None:
        assert normalizer.normalize("a\n\n\n\n\nb") == "a\n\nb"

    def test_whitespace_only_lines_count_as_blank(self, normalizer: TextNormalizer) -> None:
        assert normalizer.normalize("a\n  \n \t \n\nb") == "a\n\nb"


class TestGracefulDegradation:
    """Malformed or empty input never raises."""

    @pytest.mark.parametrize("html", [None, ""])
    def test_empty_input(self, normalizer: TextNormalizer, html: str | None) -> None:
        assert normalizer.normalize(html) == ""

    @pytest.mark.parametrize(
        "html",
        [
            "<p>unclosed paragraph",
            "<b><b>nested</b></b>",
            "<a href=>broken</a>",
            "<<<>>>",
            "<h1>Title<h2>Sub</h1></h2>",
            "<ul><li><ul><li>deep</li></ul></li></ul>",
        ],
    )
    def test_malformed_markup_does_not_raise(self, normalizer: TextNormalizer, html: str) -> None:
        result = normalizer.normalize(html)
        assert isinstance(result, str)

    def test_module_level_shortcut(self) -> None:
        assert normalize("<p>x</p>") == "x"


class TestNormalizeMessage:
    """Choosing between the HTML and plain body of a message."""

    @staticmethod
    def _message(html: str | None, plain: str | None) -> Message:
        return Message(
            message_id="m1",
            thread_id="t1",
            subject="s",
            date=datetime(2024, 1, 1, tzinfo=UTC),
            sender="a@b.c",
            plain_body=plain,
            html_body=html,
        )

    def test_prefers_html_body(self, normalizer: TextNormalizer) -> None:
        message = self._message("<p>from html</p>", "from plain")
        assert normalizer.normalize_message(message) == "from html"

    def test_falls_back_to_plain_body(self, normalizer: TextNormalizer) -> None:
        message = self._message(None, "  from plain  ")
        assert normalizer.normalize_message(message) == "from plain"

    def test_falls_back_when_html_is_empty_after_normalizing(
        self, normalizer: TextNormalizer
    ) -> None:
        message = self._message("<style>x{}</style>", "from plain")
        assert normalizer.normalize_message(message) == "from plain"

    def test_no_bodies(self, normalizer: TextNormalizer) -> None:
        assert normalizer.normalize_message(self._message(None, None)) == ""

    def test_plain_body_keeps_autolinks(self, normalizer: TextNormalizer) -> None:
        message = self._message(None, "Read more <https://example.com/a>")
        assert normalizer.normalize_message(message) == "Read more <https://example.com/a>"

    def test_plain_body_keeps_angle_brackets(self, normalizer: TextNormalizer) -> None:
        message = self._message(None, "Big news today.\nAnd 3 < 5 > 2")
        assert normalizer.normalize_message(message) == "Big news today.\nAnd 3 < 5 > 2"

    def test_plain_body_entities_decoded(self, normalizer: TextNormalizer) -> None:
        message = self._message(None, "Q&amp;A&nbsp;today")
        assert normalizer.normalize_message(message) == "Q&A today"


class TestNormalizePlain:
    def test_autolink_is_shortened(self, normalizer: TextNormalizer) -> None:
        text = normalizer.normalize_plain("Read more <https://example.com/a>")
        shortened, link_map = LinkCodec().shorten(text)

        assert shortened == "Read more <LINK_001>"
        assert link_map == {"LINK_001": "https://example.com/a"}

    @pytest.mark.parametrize("text", [None, ""])
    def test_empty_input(self, normalizer: TextNormalizer, text: str | None) -> None:
        assert normalizer.normalize_plain(text) == ""
