"""
Tests for the Edit Engine: request classification, block parsing and
application, and section extraction.
"""

import pytest

from app.generation.edit_engine import (
    EditBlock,
    EditScope,
    add_line_numbers,
    analyze_edit_scope,
    apply_edit_blocks,
    build_edit_request,
    extract_relevant_section,
    is_edit_request,
    is_new_design_request,
    parse_edit_response,
)

PAGE = "\n".join([
    "<!DOCTYPE html>",
    "<html>",
    "<body>",
    '<nav class="navbar">',
    "  <a href=\"/\">Home</a>",
    "</nav>",
    '<section class="hero">',
    "  <h1>Fresh coffee</h1>",
    "</section>",
    "<footer>",
    "  <p>Portland</p>",
    "</footer>",
    "</body>",
    "</html>",
])


class TestRequestClassification:
    def test_follow_up_on_existing_page_is_edit(self):
        assert is_edit_request("Make the headline bigger", has_existing_html=True) is True

    def test_no_page_is_never_edit(self):
        assert is_edit_request("Make the headline bigger", has_existing_html=False) is False

    @pytest.mark.parametrize("message", [
        "Start over with a bakery site",
        "Let's build a NEW WEBSITE for my gym",
        "Forget this, redo everything",
    ])
    def test_new_design_requests(self, message):
        assert is_new_design_request(message) is True
        assert is_edit_request(message, has_existing_html=True) is False

    @pytest.mark.parametrize("instruction,scope", [
        ("Switch the whole page to dark mode", EditScope.GLOBAL),
        ("Change all buttons to rounded", EditScope.GLOBAL),
        ("Add a link to the footer", EditScope.SECTION),
        ("Make the hero taller", EditScope.SECTION),
        ("Change the word Fresh to Roasted", EditScope.TARGETED),
    ])
    def test_scope(self, instruction, scope):
        assert analyze_edit_scope(instruction) == scope


class TestLineNumbers:
    def test_numbers_are_right_aligned(self):
        assert add_line_numbers("<a>\n<b>") == "   1| <a>\n   2| <b>"

    def test_offset(self):
        assert add_line_numbers("<a>", first_line=12) == "  12| <a>"


class TestParseEditResponse:
    def test_fenced_edit_blocks(self):
        response = (
            "```edit\n[3-3]\n<body class=\"bg-blue-500\">\n```\n"
            "```edit\n[8-8]\n  <h1>Roasted coffee</h1>\n```"
        )

        blocks = parse_edit_response(response)

        # Highest line first so applying one does not shift the other
        assert blocks == [
            EditBlock(8, 8, "  <h1>Roasted coffee</h1>"),
            EditBlock(3, 3, '<body class="bg-blue-500">'),
        ]

    def test_range_before_fence(self):
        blocks = parse_edit_response("[8-8]\n```html\n  <h1>Roasted</h1>\n```")

        assert blocks == [EditBlock(8, 8, "  <h1>Roasted</h1>")]

    def test_lines_label(self):
        blocks = parse_edit_response("Lines 10-12:\n```\n<footer></footer>\n```")

        assert blocks == [EditBlock(10, 12, "<footer></footer>")]

    @pytest.mark.parametrize("response", [
        "```edit\n[0-2]\n<p>x</p>\n```",
        "```edit\n[5-3]\n<p>x</p>\n```",
        "Sure! I changed the headline.",
        "",
    ])
    def test_unusable_responses(self, response):
        assert parse_edit_response(response) == []


class TestApplyEditBlocks:
    def test_replaces_line_ranges(self):
        blocks = parse_edit_response(
            "```edit\n[8-8]\n  <h1>Roasted coffee</h1>\n```\n"
            "```edit\n[10-12]\n<footer><p>Seattle</p></footer>\n```"
        )

        result = apply_edit_blocks(PAGE, blocks)

        lines = result.html.split("\n")
        assert result.success is True
        assert result.applied_count == 2
        assert lines[7] == "  <h1>Roasted coffee</h1>"
        assert lines[9] == "<footer><p>Seattle</p></footer>"
        assert lines[10] == "</body>"
        assert len(lines) == 12

    def test_block_can_insert_lines(self):
        result = apply_edit_blocks(PAGE, [EditBlock(8, 8, "  <h1>Fresh coffee</h1>\n  <button>Order</button>")])

        lines = result.html.split("\n")
        assert lines[8] == "  <button>Order</button>"
        assert len(lines) == 15

    def test_lines_past_the_end_are_clamped(self):
        result = apply_edit_blocks(PAGE, [EditBlock(40, 50, "</html>")])

        assert result.success is True
        assert result.html.split("\n")[-1] == "</html>"
        assert len(result.html.split("\n")) == 14

    def test_no_blocks(self):
        result = apply_edit_blocks(PAGE, [])

        assert result.success is False
        assert result.html == PAGE
        assert result.applied_count == 0


class TestSections:
    def test_footer_with_context(self):
        section = extract_relevant_section(PAGE, "Add a phone number to the footer")

        assert section.start_line == 8
        assert section.end_line == 14
        assert section.text.split("\n")[2] == "<footer>"

    def test_single_line_section(self):
        page = "<div>\n<header>Logo</header>\n<p>x</p>\n<p>y</p>\n<p>z</p>\n<p>w</p>"

        section = extract_relevant_section(page, "Make the header sticky")

        # <header> opens and closes on line 2; two lines of context each side
        assert (section.start_line, section.end_line) == (1, 4)

    def test_unknown_section(self):
        assert extract_relevant_section(PAGE, "Add a pricing table section") is None

    def test_section_request_shows_only_that_section(self):
        request = build_edit_request(PAGE, "Add a phone number to the footer")

        assert request.startswith("HTML (lines 8-14 of 14):")
        assert "  10| <footer>" in request
        assert "Home" not in request
        assert "USER REQUEST: Add a phone number to the footer" in request

    def test_targeted_request_shows_whole_page(self):
        request = build_edit_request(PAGE, "Change the word Fresh to Roasted")

        assert request.startswith("HTML (14 lines):")
        assert "   1| <!DOCTYPE html>" in request
        assert request.endswith("Respond with ONLY edit blocks. Use [LINE-LINE] format.")
