import pytest

from flatcache import codec
from flatcache.errors import DecodeError


def test_parse_document_splits_front_matter_and_body():
    text = "---\ntitle: Hello\ntags:\n  - a\n  - b\n---\nBody text\n"

    data = codec.parse_document(text, path="blog/post.md")

    assert data == {"title": "Hello", "tags": ["a", "b"], "content": "Body text\n"}


def test_parse_document_without_body_has_no_content_key():
    data = codec.parse_document("---\ntitle: Hi\n---\n")

    assert data == {"title": "Hi"}


def test_parse_document_blank_body_is_ignored():
    data = codec.parse_document("---\ntitle: Hi\n---\n\n   \n")

    assert "content" not in data


def test_parse_document_accepts_plain_yaml():
    assert codec.parse_document("title: Plain\n") == {"title": "Plain"}


def test_parse_empty_text_returns_empty_mapping():
    assert codec.parse_document("") == {}
    assert codec.parse_yaml("   \n") == {}


def test_parse_yaml_rejects_non_mapping():
    with pytest.raises(DecodeError) as excinfo:
        codec.parse_yaml("- a\n- b\n", path="list.yaml")

    assert excinfo.value.path == "list.yaml"


def test_parse_yaml_rejects_malformed_text():
    with pytest.raises(DecodeError):
        codec.parse_yaml("title: [unclosed\n", path="broken.yaml")


def test_dump_keeps_key_order_and_unicode():
    text = codec.dump({"zeta": 1, "alpha": "héllo"})

    assert text.index("zeta") < text.index("alpha")
    assert "héllo" in text


def test_dump_empty_mapping_is_empty_text():
    assert codec.dump({}) == ""


def test_dump_front_matter_round_trips_through_parse():
    text = codec.dump_front_matter({"title": "Hi"}, "Body\n")

    assert text.startswith("---\n")
    assert codec.parse_document(text) == {"title": "Hi", "content": "Body\n"}


def test_dump_front_matter_header_only():
    text = codec.dump_front_matter({"id": "abc"})

    assert text == "---\nid: abc\n---\n"
    assert codec.parse_document(text) == {"id": "abc"}
