"""Unit tests for proposal text post-processing."""
from docflow.postprocess import detect_complex_html, post_process_proposal
from docflow.postprocess.processors import (
    CodeBlockProcessor,
    HtmlToMarkdownProcessor,
    ListFormattingProcessor,
    MarkdownFormattingProcessor,
    is_markdown_path,
    mask_code_segments,
    unmask_code_segments,
)


def test_empty_text():
    """Empty input yields empty output and no warnings."""
    result = post_process_proposal(None, "docs/a.md")
    assert result.text == ""
    assert not result.was_modified


def test_plain_text_unchanged():
    """Well-formed text passes through untouched."""
    text = "## Ports\n\nThe server listens on port 8080.\n\n- Change it in `config.yaml`."
    result = post_process_proposal(text, "docs/a.md")
    assert result.text == text
    assert result.warnings == []
    assert not result.was_modified


def test_is_markdown_path():
    """Markdown extensions and extensionless paths are markdown."""
    assert is_markdown_path("docs/a.md")
    assert is_markdown_path("docs/page.MDX")
    assert is_markdown_path("docs/README")
    assert not is_markdown_path("conf/app.yaml")


def test_mask_round_trip():
    """Masked code segments are restored verbatim."""
    text = "Use `a<b>` and\n```\n<p>x</p>\n```"
    masked, segments = mask_code_segments(text)
    assert "<p>" not in masked
    assert unmask_code_segments(masked, segments) == text


def test_unterminated_code_block_closed():
    """An odd number of fences gets a closing fence and a warning."""
    result = CodeBlockProcessor().process("Run:\n```bash\nnpm start", "docs/a.md")
    assert result.text.endswith("npm start\n```")
    assert result.warnings == ["Closed an unterminated code block"]


def test_single_line_json_expanded():
    """One-line JSON blocks are pretty-printed."""
    result = CodeBlockProcessor().process('```json\n{"port": 8080}\n```', "docs/a.md")
    assert result.text == '```json\n{\n  "port": 8080\n}\n```'


def test_html_converted_outside_code():
    """Simple HTML becomes markdown; code stays untouched."""
    result = post_process_proposal("<p>Use <strong>care</strong> with `<b>x</b>`.</p>", "docs/a.md")
    assert "**care**" in result.text
    assert "`<b>x</b>`" in result.text
    assert "<p>" not in result.text


def test_html_tags_with_attributes_converted():
    """Opening tags carrying attributes convert like bare ones; <pre> is not taken for <p>."""
    result = HtmlToMarkdownProcessor().process(
        '<p class="note">Use <strong class="x">care</strong> and <code class="lang">npm</code>.</p>', "docs/a.md"
    )
    assert result.text == "Use **care** and `npm`.\n\n"
    assert result.warnings == []
    assert "<pre>" in HtmlToMarkdownProcessor().process("<pre>x</pre>", "docs/a.md").text


def test_html_left_alone_for_non_markdown():
    """Non-markdown targets are not converted."""
    text = "<root><strong>x</strong></root>"
    assert post_process_proposal(text, "conf/app.xml").text == text


def test_complex_html_warnings():
    """Tables and leftover tags produce warnings."""
    warnings = detect_complex_html("<table><tr><td>1</td></tr></table>")
    assert warnings[0] == "Contains HTML table - manual conversion to markdown table may be needed"
    assert warnings[-1] == "Contains unconverted HTML elements: table, td, tr"


def test_heading_space_and_labels():
    """Headings get a space after the hashes; bold labels start a new paragraph."""
    result = MarkdownFormattingProcessor().process("##Ports\nIt failed. **Solution:** restart.", "docs/a.md")
    assert result.text == "## Ports\nIt failed.\n\n**Solution:** restart."


def test_run_on_list_items_split():
    """List items glued to the previous sentence are moved to their own paragraph."""
    result = ListFormattingProcessor().process("Do this:1. Install\n2. Run", "docs/a.md")
    assert result.text == "Do this:\n\n1. Install\n2. Run"
