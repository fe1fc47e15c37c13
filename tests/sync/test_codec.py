"""Tests for the markdown asset codec."""

from datetime import UTC, datetime

import pytest

from compound_kb.models.asset import AssetType
from compound_kb.sync.codec import (
    Frontmatter,
    content_hash,
    created_stamp,
    derive_path,
    from_record,
    is_asset_path,
    parse,
    serialize,
    to_record,
)
from tests.conftest import sample_input

FIXED = datetime(2025, 1, 2, 3, 4, 5, tzinfo=UTC)

ASSET_FILE = """\
---
type: pitfall
name: redis-timeout
product_line: infra
title: "Redis timeout"
tags: ["redis", "latency"]
created: 2025-01-01T00:00:00+00:00
updated: 2025-01-02T00:00:00+00:00
---

Set socket_timeout explicitly.
"""


def test_serialize_fixed_key_order():
    fm = Frontmatter(
        type="pitfall",
        name="redis-timeout",
        product_line="infra",
        title="Redis timeout",
        tags=["redis", "latency"],
        created="2025-01-01T00:00:00+00:00",
        updated="2025-01-02T00:00:00+00:00",
    )
    assert serialize(fm, "Set socket_timeout explicitly.") == ASSET_FILE


def test_serialize_source_project_last():
    fm = Frontmatter(
        type="skill",
        name="x",
        title="X",
        created="c",
        updated="u",
        source_project="/work/api",
    )
    text = serialize(fm, "body")
    header = text.split("---\n")[1].splitlines()
    assert [line.split(":")[0] for line in header] == [
        "type",
        "name",
        "product_line",
        "title",
        "tags",
        "created",
        "updated",
        "source_project",
    ]
    assert "tags: []" in header


def test_parse_asset_file():
    doc = parse(ASSET_FILE)
    assert doc.frontmatter is not None
    assert doc.frontmatter["type"] == "pitfall"
    assert doc.frontmatter["title"] == "Redis timeout"
    assert doc.frontmatter["tags"] == ["redis", "latency"]
    assert doc.body == "Set socket_timeout explicitly."


def test_parse_without_frontmatter():
    doc = parse("# Just a heading\n\nSome text.\n")
    assert doc.frontmatter is None
    assert doc.body == "# Just a heading\n\nSome text.\n"


def test_parse_unterminated_frontmatter():
    doc = parse("---\ntype: pitfall\nname: x\nno closing fence\n")
    assert doc.frontmatter is None


def test_parse_crlf_line_endings():
    doc = parse(ASSET_FILE.replace("\n", "\r\n"))
    assert doc.frontmatter is not None
    assert doc.frontmatter["name"] == "redis-timeout"
    assert doc.body == "Set socket_timeout explicitly."


def test_parse_quoted_values_and_arrays():
    text = (
        "---\n"
        "title: \"Say \\\"hi\\\": now\"\n"
        "alt: 'single: quoted'\n"
        "tags: [\"a, b\", 'c', d , \"e\"]\n"
        "empty: []\n"
        "---\n\nbody\n"
    )
    fm = parse(text).frontmatter
    assert fm is not None
    assert fm["title"] == 'Say "hi": now'
    assert fm["alt"] == "single: quoted"
    assert fm["tags"] == ["a, b", "c", "d", "e"]
    assert fm["empty"] == []


def test_body_preserves_inner_blank_lines():
    text = from_record(sample_input(content="line one\n\nline three\n"), now=FIXED)
    assert parse(text).body == "line one\n\nline three\n"


def test_round_trip_preserves_fields():
    original = sample_input(
        title='Quotes "inside" and \\ backslash',
        tags=["a", "b c"],
        source_project="/work/api",
    )
    path = derive_path(original)
    record = to_record(path, from_record(original, now=FIXED))
    assert record is not None
    assert record.type == original.type
    assert record.name == original.name
    assert record.product_line == original.product_line
    assert record.title == original.title
    assert record.tags == original.tags
    assert record.content == original.content
    assert record.source_project == "/work/api"
    assert record.repository_path == path


def test_round_trip_keeps_body_line_endings_and_multiline_title():
    original = sample_input(title="Redis\ntimeout", content="line one\r\nline two")
    text = from_record(original, now=FIXED)
    assert text.splitlines()[4] == 'title: "Redis\\ntimeout"'

    record = to_record(derive_path(original), text)
    assert record is not None
    assert record.title == "Redis\ntimeout"
    assert record.content == "line one\r\nline two"


def test_to_record_carries_content_hash():
    text = from_record(sample_input(), now=FIXED)
    record = to_record("knowledge/infra/redis-timeout.md", text)
    assert record is not None
    assert record.repository_hash == content_hash(text)
    assert content_hash(text) != content_hash(text + "\n")


def test_from_record_keeps_created_stamp():
    text = from_record(sample_input(), created="2024-06-01T00:00:00+00:00", now=FIXED)
    fm = parse(text).frontmatter
    assert fm is not None
    assert fm["created"] == "2024-06-01T00:00:00+00:00"
    assert fm["updated"] == FIXED.isoformat()
    assert created_stamp(text) == "2024-06-01T00:00:00+00:00"


def test_created_stamp_missing():
    assert created_stamp(None) is None
    assert created_stamp("no frontmatter") is None


def test_to_record_defaults():
    text = "---\ntype: glossary\nname: idempotency\n---\n\nSame result twice.\n"
    record = to_record("knowledge/general/idempotency.md", text)
    assert record is not None
    assert record.product_line == "general"
    assert record.title == "idempotency"
    assert record.tags == []
    assert record.content == "Same result twice."


def test_to_record_legacy_adr_type():
    text = "---\ntype: adr\nname: use-sqlite\ntitle: Use SQLite\n---\n\nBecause.\n"
    record = to_record("knowledge/general/use-sqlite.md", text)
    assert record is not None
    assert record.type == AssetType.DECISION_RECORD


@pytest.mark.parametrize(
    "text",
    [
        "# README\n",
        "---\nname: missing-type\n---\n\nbody\n",
        "---\ntype: pitfall\n---\n\nbody\n",
        "---\ntype: rumor\nname: x\n---\n\nbody\n",
    ],
)
def test_to_record_rejects_non_assets(text):
    assert to_record("knowledge/general/x.md", text) is None


def test_derive_path():
    assert derive_path(sample_input()) == "knowledge/infra/redis-timeout.md"
    assert derive_path(sample_input(product_line="infra.devops")) == (
        "knowledge/infra/devops/redis-timeout.md"
    )
    assert derive_path(sample_input(product_line="general")) == (
        "knowledge/general/redis-timeout.md"
    )


@pytest.mark.parametrize("name", ["../escape", "a/b", "a\\b", ".hidden"])
def test_derive_path_rejects_unsafe_names(name):
    # model_copy skips validation, like rows stored before names were checked
    unsafe = sample_input().model_copy(update={"name": name})
    with pytest.raises(ValueError):
        derive_path(unsafe)


def test_is_asset_path():
    assert is_asset_path("knowledge/infra/a.md")
    assert not is_asset_path("knowledge/_index.json")
    assert not is_asset_path("README.md")
    assert not is_asset_path("docs/knowledge/a.md")
