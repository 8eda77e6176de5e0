from pagewise.ingest.dom import parse_html
from pagewise.ingest.segment import Segmenter, build_heading_hierarchy, sanitize_id

P1 = "Install the package from the index and pin the version in your lock file."
P2 = "Run the setup command once per machine to create the local cache folder."
P3 = "Call the client from your own code and pass the session token explicitly."


def _body(html):
    return parse_html(f"<html><body>{html}</body></html>", "https://docs.example.com/guide").find("body")


def _segment(html, **kw):
    return Segmenter(url="https://docs.example.com/guide", **kw).segment(_body(html))


def test_skipped_heading_levels_nest_by_number():
    chunks = _segment(f"<h1>Guide</h1><p>{P1}</p><h3>Setup</h3><p>{P2}</p><h2>Usage</h2><p>{P3}</p>")
    assert [c.heading_path for c in chunks] == [
        ["Guide"],
        ["Guide", "Setup"],
        ["Guide", "Usage"],
    ]
    guide, setup, usage = chunks
    assert setup.heading_level == 3
    assert setup.parent_chunk_id == guide.id
    assert usage.parent_chunk_id == guide.id
    assert setup.text == f"[H1: Guide] [H2: Setup] {P2}"
    assert setup.raw_text == P2
    assert all(len(c.raw_text) >= 30 for c in chunks)


def test_hierarchy_stack_pops_equal_and_deeper_levels():
    body = _body("<h2>A</h2><h4>B</h4><h3>C</h3><h2>D</h2>")
    roots = build_heading_hierarchy(body.findall(".//*"))
    assert [r.title for r in roots] == ["A", "D"]
    assert [c.title for c in roots[0].children] == ["B", "C"]


def test_heading_without_enough_content_is_not_materialized():
    chunks = _segment(f"<h1>Title</h1><p>too short</p><h2>Body</h2><p>{P1}</p>")
    assert len(chunks) == 1
    assert chunks[0].heading_path == ["Title", "Body"]
    assert chunks[0].parent_chunk_id is None


def test_table_is_serialized_row_by_row():
    chunks = _segment(
        "<h2>Prices</h2><table>"
        "<tr><th>Item</th><th>Cost</th></tr>"
        "<tr><td>Tea</td><td>3</td></tr>"
        "<tr><td>Coffee</td><td>4</td></tr>"
        "</table>"
    )
    assert len(chunks) == 1
    assert "Table:\nItem | Cost\nTea | 3\nCoffee | 4" in chunks[0].raw_text
    assert chunks[0].content_type == "mixed"


def test_excluded_subtree_is_skipped_without_ending_span():
    chunks = _segment(
        f"<h2>Video</h2><p>{P1}</p><iframe src='https://player.example'>player fallback</iframe><p>{P2}</p>"
    )
    assert len(chunks) == 1
    assert P1 in chunks[0].raw_text and P2 in chunks[0].raw_text
    assert "fallback" not in chunks[0].raw_text
    assert chunks[0].content_type == "paragraph"


def test_hidden_block_with_heading_does_not_end_span():
    tail = "Beta text after the hidden block."
    chunks = _segment(
        f"<h2>Title</h2><p>{P1}</p><div style='display:none'><h3>Hidden</h3></div><p>{tail}</p>"
    )
    assert [c.heading_path for c in chunks] == [["Title"]]
    assert chunks[0].raw_text == f"{P1} {tail}"


def test_excluded_subtree_with_heading_does_not_end_span():
    tail = "Beta text after the embedded object."
    chunks = _segment(f"<h2>Title</h2><p>{P1}</p><object><h3>Fallback</h3></object><p>{tail}</p>")
    assert [c.heading_path for c in chunks] == [["Title"]]
    assert chunks[0].raw_text == f"{P1} {tail}"
    assert "Fallback" not in chunks[0].raw_text


def test_read_more_phrases_are_stripped():
    chunks = _segment(f"<h2>News</h2><p>{P1} <a href='/more'>Read More</a></p>")
    assert "Read More" not in chunks[0].raw_text
    assert chunks[0].raw_text == P1


def test_leading_content_before_first_heading_is_captured():
    lead = "Welcome to the guide. This introduction explains what the tool is for."
    chunks = _segment(f"<p>{lead}</p><h1>Guide</h1><p>{P1}</p>")
    assert [c.id for c in chunks][0].startswith("content-")
    assert chunks[0].raw_text == lead
    assert chunks[0].heading_path == []
    assert chunks[1].heading_path == ["Guide"]


def test_uncovered_content_is_grouped_in_batches():
    paras = "".join(f"<p>Paragraph number {i} has more than fifty characters of filler text.</p>" for i in range(7))
    chunks = _segment(f"<div class='intro'>{paras}</div><div class='x'><h1>Guide</h1></div>", group_size=5)
    groups = [c for c in chunks if c.id.startswith("content-")]
    assert len(groups) == 2
    assert "number 0" in groups[0].raw_text and "number 4" in groups[0].raw_text
    assert "number 5" in groups[1].raw_text


def test_hidden_headings_are_ignored():
    chunks = _segment(f"<h2 style='display: none'>Secret</h2><h2>Shown</h2><p>{P1}</p>")
    assert [c.heading_path for c in chunks] == [["Shown"]]


def test_no_headings_falls_back_to_semantic_containers():
    chunks = _segment(f"<section><p>{P1}</p></section><article><p>{P2}</p></article>")
    assert [c.id for c in chunks] == ["section-0", "section-1"]
    assert [c.semantic_tag for c in chunks] == ["section", "article"]


def test_no_headings_no_containers_uses_whole_root():
    chunks = _segment(f"<div><p>{P1}</p><p>{P2}</p></div>")
    assert len(chunks) == 1
    assert chunks[0].id == "root-0"
    assert P1 in chunks[0].raw_text and P2 in chunks[0].raw_text


def test_duplicate_content_is_kept_once():
    chunks = _segment(f"<h2>One</h2><p>{P1}</p><h2>Two</h2><p>{P1.upper()}</p>")
    assert len(chunks) == 1


def test_ids_are_unique_for_repeated_headings():
    chunks = _segment(f"<h2>FAQ</h2><p>{P1}</p><h2>FAQ</h2><p>{P2}</p>")
    ids = [c.id for c in chunks]
    assert len(set(ids)) == 2
    assert ids[0] == "heading-2-faq"


def test_locator_and_url_are_attached():
    chunks = _segment(f"<h2 id='install'>Install</h2><p>{P1}</p>")
    c = chunks[0]
    assert c.locator.css_selector == "#install"
    assert c.url == "https://docs.example.com/guide"
    assert c.semantic_tag == "h2"


def test_sanitize_id():
    assert sanitize_id("  Getting Started: v2.0! ") == "getting-started-v2-0"


def test_scenario_two_headings(scenario_html):
    body = parse_html(scenario_html).find("body")
    chunks = Segmenter().segment(body)
    assert [c.heading_path for c in chunks] == [["Intro"], ["Intro", "Details"]]
    assert chunks[0].raw_text == "Quantum lattice gardens bloom every spring."
