"""Tests for artifact_bridge.converters.html_to_text."""

import pytest

from artifact_bridge.converters import html_to_text


class TestBreaks:
    """Block, line-break and table-cell tags become whitespace."""

    def test_paragraph_line_break_and_nbsp(self):
        assert (
            html_to_text("<p>Hello</p><br>World&nbsp;!")
            == "\n\nHello\nWorld !"
        )

    def test_div_and_tr_are_paragraph_breaks(self):
        assert html_to_text("<div>a</div><tr>b") == "\n\na\n\nb"

    def test_list_items_are_line_breaks(self):
        assert html_to_text("<ul><li>one</li><li>two</li></ul>") == "\none\ntwo"

    def test_table_cells_are_tabs(self):
        result = html_to_text("<table><tr><td>a</td><td>b</td></tr></table>")
        assert "a\tb" in result

    def test_self_closing_break(self):
        assert html_to_text("x<br/>y<BR />z") == "x\ny\nz"

    def test_literal_newlines_are_not_layout(self):
        assert html_to_text("<b>one\r\ntwo</b>") == "one two"


class TestStripping:
    """Tags, hidden blocks and entities."""

    def test_attributes_and_unknown_tags_removed(self):
        assert (
            html_to_text('<span class="x"><a href="/y">link</a></span>')
            == "link"
        )

    def test_script_style_and_head_removed_with_content(self):
        markup = (
            "<head><title>t</title></head>"
            "<style>p { color: red }</style>"
            "<script type='text/javascript'>alert(1)</script>body"
        )
        assert html_to_text(markup) == "body"

    def test_hidden_blocks_are_not_greedy(self):
        markup = "<script>a</script>keep<script>b</script>"
        assert html_to_text(markup) == "keep"

    @pytest.mark.parametrize(
        "entity, expected",
        [
            ("&lt;", "<"),
            ("&gt;", ">"),
            ("&copy;", "(c)"),
            ("&reg;", "(r)"),
            ("&trade;", "(tm)"),
            ("&bull;", " * "),
            ("&frasl;", "/"),
            ("&amp;", "&"),
        ],
    )
    def test_named_entities(self, entity, expected):
        assert html_to_text(f"x{entity}y") == f"x{expected}y"

    def test_unknown_entities_dropped(self):
        assert html_to_text("caf&eacute; &#233;ok") == "caf ok"


class TestCollapsing:
    """Runs of breaks are collapsed."""

    def test_many_paragraphs_collapse_to_one_blank_line(self):
        assert html_to_text("a<p><p><p><p>b") == "a\n\nb"

    def test_many_cells_collapse_to_four_tabs(self):
        assert html_to_text("a" + "<td>" * 9 + "b") == "a\t\t\t\tb"


class TestEdgeCases:
    """Empty and plain input."""

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty(self, value):
        assert html_to_text(value) == ""

    def test_plain_text_passes_through(self):
        assert html_to_text("Just text\nwith a break") == "Just text\nwith a break"

    def test_literal_angle_bracket_is_not_markup(self):
        assert html_to_text("x < 3\nsecond line") == "x < 3\nsecond line"
        assert html_to_text("a & b\nc") == "a & b\nc"

    @pytest.mark.parametrize(
        "markup",
        [
            "<p>Hello</p><br>World&nbsp;!",
            "<div>Steps:<ul><li>open</li><li>crash</li></ul></div>",
            "<table><tr><td>k</td><td>v</td></tr></table>",
            "<p>if x &lt; 3</p><p>then y</p>",
            "<p>a &gt; b</p><br>c",
            "<p>Tom &amp; Jerry</p><p>again</p>",
        ],
    )
    def test_idempotent_on_own_output(self, markup):
        once = html_to_text(markup)
        assert html_to_text(once) == once
