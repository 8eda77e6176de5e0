from pagewise.ingest.dom import parse_html
from pagewise.ingest.main_content import find_main_content

LONG = "This paragraph carries enough real prose to look like the body of an article. " * 2


def test_semantic_main_wins():
    doc = parse_html(f"<html><body><nav><a href='/'>Home</a></nav><main><p>{LONG}</p></main></body></html>")
    assert find_main_content(doc).tag == "main"


def test_content_selector_needs_enough_text():
    doc = parse_html(
        "<html><body>"
        "<div class='content'>tiny</div>"
        f"<div id='main'><p>{LONG}</p></div>"
        "</body></html>"
    )
    assert find_main_content(doc).get("id") == "main"


def test_heuristics_skip_link_farm():
    links = "".join(f"<a href='/p{i}'>link {i}</a>" for i in range(8))
    doc = parse_html(
        "<html><body>"
        f"<div class='sidebar'>{links}</div>"
        f"<div class='story'><p>{LONG}</p><p>{LONG}</p><p>{LONG}</p></div>"
        "</body></html>"
    )
    assert find_main_content(doc).get("class") == "story"


def test_oracle_is_consulted_before_heuristics():
    doc = parse_html(f"<html><body><div id='a'><p>{LONG}</p></div><div id='b'><p>x</p></div></body></html>")
    picked = find_main_content(doc, oracle=lambda root: root.get_element_by_id("b"))
    assert picked.get("id") == "b"


def test_failing_oracle_falls_through():
    def oracle(root):
        raise RuntimeError("model offline")

    doc = parse_html(f"<html><body><p>{LONG}</p></body></html>")
    assert find_main_content(doc, oracle=oracle).tag == "body"
