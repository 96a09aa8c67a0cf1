"""Tests for note parsing."""

from vault_search.search.parser import (
    extract_inline_tags,
    file_properties,
    parse_note,
    split_frontmatter,
)


def props(parsed) -> dict[str, list]:
    result: dict[str, list] = {}
    for p in parsed.properties:
        result.setdefault(p.name, []).append(p.value)
    return result


class TestFrontmatter:
    def test_split_frontmatter(self):
        content = "---\ntitle: Plan\nstatus: draft\n---\n\nBody text"
        frontmatter, body = split_frontmatter(content)
        assert frontmatter == {"title": "Plan", "status": "draft"}
        assert body == "Body text"

    def test_no_frontmatter(self):
        frontmatter, body = split_frontmatter("Just text")
        assert frontmatter == {}
        assert body == "Just text"

    def test_invalid_yaml_keeps_content(self):
        content = "---\ntitle: [unclosed\n---\nBody"
        frontmatter, body = split_frontmatter(content, "bad.md")
        assert frontmatter == {}
        assert body == content

    def test_unconstructible_date_keeps_content(self):
        content = "---\ndue: 2024-13-45\n---\nquarterly report"
        frontmatter, body = split_frontmatter(content, "report.md")
        assert frontmatter == {}
        assert body == content

        note = parse_note(content, "report.md")
        assert "quarterly report" in note.body
        assert [p.name for p in note.properties] == ["file_type", "file_category"]

    def test_non_mapping_frontmatter(self):
        content = "---\n- a\n- b\n---\nBody"
        frontmatter, body = split_frontmatter(content)
        assert frontmatter == {}
        assert body == content


class TestInlineTags:
    def test_extracts_tags(self):
        assert extract_inline_tags("A #project note (#idea) and #area/work.") == [
            "project",
            "idea",
            "area/work",
        ]

    def test_ignores_headings_and_numbers(self):
        assert extract_inline_tags("# Heading\n## Sub\nIssue #123") == []

    def test_ignores_anchors_inside_words(self):
        assert extract_inline_tags("see page#section") == []

    def test_ignores_code_fences(self):
        body = "Real #tag\n```\n#not-a-tag\n```\n"
        assert extract_inline_tags(body) == ["tag"]


class TestParseNote:
    def test_body_excludes_frontmatter(self):
        parsed = parse_note("---\nstatus: done\n---\nHello world", "notes/a.md")
        assert parsed.body == "Hello world"
        assert parsed.frontmatter == {"status": "done"}

    def test_tags_are_merged_and_deduplicated(self):
        content = "---\ntags: [Project, '#idea']\n---\nWork on #project and #later"
        parsed = parse_note(content, "a.md")
        assert parsed.tags == ["project", "idea", "later"]
        assert props(parsed)["tags"] == ["project", "idea", "later"]

    def test_tags_as_string(self):
        parsed = parse_note("---\ntags: alpha, beta\n---\n", "a.md")
        assert parsed.tags == ["alpha", "beta"]

    def test_properties_are_normalized(self):
        content = "---\nStatus: Done\npriority: 3\nscore: 2.0\ndone: true\nmeta:\n  nested: 1\n---\n"
        values = props(parse_note(content, "a.md"))
        assert values["status"] == ["done"]
        assert values["priority"] == [3]
        assert values["score"] == [2]
        assert values["done"] == ["true"]
        assert "meta" not in values

    def test_list_properties_expand(self):
        values = props(parse_note("---\naliases: [One, Two]\n---\n", "a.md"))
        assert values["aliases"] == ["one", "two"]

    def test_file_properties(self):
        values = props(parse_note("text", "notes/a.md"))
        assert values["file_type"] == ["md"]
        assert values["file_category"] == ["note"]

    def test_file_properties_for_unknown_extension(self):
        values = {p.name: p.value for p in file_properties("data/table.xyz")}
        assert values == {"file_type": "xyz", "file_category": "other"}
        assert file_properties("Makefile") == []
