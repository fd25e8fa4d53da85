"""Tests for scrippet header parsing and identity derivation."""

import pytest

from scrippets.scripts.metadata import (
    build_header_snippet,
    get_description,
    parse_directives,
    parse_metadata,
    slugify,
    to_display_name,
    to_identifier,
    update_scrippet_id,
)


class TestParseDirectives:
    """Tests for parse_directives function."""

    def test_multiple_directives_on_one_line(self):
        """Values should stop at the next directive."""
        directives = parse_directives("@id: focus-leaf @desc: Focus the leaf")

        assert directives == {"id": "focus-leaf", "desc": "Focus the leaf"}

    def test_keys_are_lowercased(self):
        """Directive keys should be case-insensitive."""
        directives = parse_directives("@ID: one\n@Name: Two")

        assert directives == {"id": "one", "name": "Two"}

    def test_first_occurrence_wins(self):
        """A repeated key should keep its first value."""
        directives = parse_directives("@id: first\n@id: second")

        assert directives["id"] == "first"

    def test_empty_values_skipped(self):
        """Directives without a value should be ignored."""
        directives = parse_directives("@id:\n@name: Real")

        assert directives == {"name": "Real"}

    def test_value_stops_at_line_end(self):
        """Values should not run onto the next line."""
        directives = parse_directives("@desc: line one\nplain text after")

        assert directives == {"desc": "line one"}


class TestParseMetadata:
    """Tests for parse_metadata function."""

    def test_docstring_header(self):
        """Directives in the module docstring should be extracted."""
        source = '"""\n@id: hello\n@name: Hello World\n"""\n\ndef invoke(host):\n    pass\n'

        parsed = parse_metadata(source)

        assert parsed.metadata == {"id": "hello", "name": "Hello World"}
        assert parsed.front_matter is None
        assert parsed.docstring is not None

    def test_front_matter_header(self):
        """A '# ---' block should be parsed as YAML."""
        source = "# ---\n# id: focus-leaf\n# name: Focus Leaf\n# ---\n\ninvoke = None\n"

        parsed = parse_metadata(source)

        assert parsed.metadata == {"id": "focus-leaf", "name": "Focus Leaf"}
        assert parsed.front_matter is not None
        assert source[parsed.front_matter.start:parsed.front_matter.end].endswith("# ---\n")

    def test_front_matter_wins_over_docstring(self):
        """Front-matter keys should override docstring directives."""
        source = (
            "# ---\n# id: from-yaml\n# ---\n"
            '"""@id: from-doc @desc: described"""\n'
        )

        parsed = parse_metadata(source)

        assert parsed.metadata["id"] == "from-yaml"
        assert parsed.metadata["desc"] == "described"

    def test_recognized_keys_normalized_in_front_matter(self):
        """Recognized keys should be lowercased, others kept as written."""
        source = "# ---\n# ID: upper\n# Owner: me\n# ---\n"

        parsed = parse_metadata(source)

        assert parsed.metadata == {"id": "upper", "Owner": "me"}

    def test_shebang_and_blank_lines_skipped(self):
        """The header may follow a shebang and blank lines."""
        source = '#!/usr/bin/env python\n\n\n"""@id: after-shebang"""\n'

        parsed = parse_metadata(source)

        assert parsed.metadata == {"id": "after-shebang"}

    def test_invalid_yaml_treated_as_absent(self):
        """Unparseable front-matter should not fail the file."""
        source = '# ---\n# id: [unclosed\n# ---\n"""@name: Still Named"""\n'

        parsed = parse_metadata(source)

        assert parsed.front_matter is None
        assert parsed.metadata == {"name": "Still Named"}

    def test_non_mapping_yaml_treated_as_absent(self):
        """Front-matter must be a mapping."""
        source = "# ---\n# - a\n# - b\n# ---\n"

        parsed = parse_metadata(source)

        assert parsed.front_matter is None
        assert parsed.metadata == {}

    def test_unterminated_block_is_not_front_matter(self):
        """A block without a closing delimiter should be ignored."""
        source = "# ---\n# id: nope\nx = 1\n"

        parsed = parse_metadata(source)

        assert parsed.metadata == {}

    def test_docstring_must_lead(self):
        """A docstring after code should not count as a header."""
        source = 'x = 1\n"""@id: late"""\n'

        parsed = parse_metadata(source)

        assert parsed.metadata == {}

    def test_no_header(self):
        """Plain code should yield empty metadata."""
        parsed = parse_metadata("def invoke(host):\n    pass\n")

        assert parsed.metadata == {}
        assert parsed.docstring is None


class TestIdentity:
    """Tests for ID and display-name derivation."""

    def test_slugify(self):
        """Slugs are lowercase with single hyphens."""
        assert slugify("  Focus  Active_Leaf!! ") == "focus-active-leaf"
        assert slugify("---") == ""

    def test_identifier_from_metadata(self):
        """An explicit id should be slugified."""
        assert to_identifier("scrippets/a.py", {"id": "My Script"}) == "my-script"

    def test_identifier_from_filename(self):
        """Without an id, the filename stem should be used."""
        assert to_identifier("scrippets/Daily Note.py", {}) == "daily-note"

    def test_blank_id_falls_back_to_filename(self):
        """Whitespace-only ids should be ignored."""
        assert to_identifier("scrippets/foo.py", {"id": "   "}) == "foo"

    def test_identifier_can_be_empty(self):
        """A name with no usable characters should yield an empty id."""
        assert to_identifier("scrippets/___.py", {}) == ""

    def test_display_name(self):
        """Names come from metadata or a prettified stem."""
        assert to_display_name("scrippets/x.py", {"name": "Explicit"}) == "Explicit"
        assert to_display_name("scrippets/focus-active_leaf.py", {}) == "Focus Active Leaf"

    def test_description_aliases(self):
        """description wins over desc."""
        assert get_description({"desc": "short"}) == "short"
        assert get_description({"description": "long", "desc": "short"}) == "long"
        assert get_description({}) is None


class TestHeaderSnippet:
    """Tests for build_header_snippet function."""

    def test_escapes_and_marks_directives(self):
        """HTML should be escaped and directive labels highlighted."""
        snippet = build_header_snippet('"""@id: <x>"""\nline2')

        assert "<mark>@id</mark>: &lt;x&gt;" in snippet
        assert snippet.count("<br>") == 1

    def test_limits_lines(self):
        """Only the first max_lines lines should be included."""
        source = "\n".join(f"line {i}" for i in range(20))

        snippet = build_header_snippet(source, max_lines=3)

        assert snippet == "line 0<br>line 1<br>line 2"


class TestUpdateScrippetId:
    """Tests for update_scrippet_id function."""

    def test_rewrites_front_matter(self):
        """The id should be replaced in place, other keys kept in order."""
        source = "# ---\n# name: Leaf\n# id: old\n# owner: me\n# ---\nbody = 1\n"

        updated = update_scrippet_id(source, "new-id")

        assert updated == "# ---\n# name: Leaf\n# id: new-id\n# owner: me\n# ---\nbody = 1\n"

    def test_adds_id_to_front_matter(self):
        """A missing id should be added first."""
        source = "# ---\n# name: Leaf\n# ---\n"

        updated = update_scrippet_id(source, "leaf-2")

        assert parse_metadata(updated).metadata == {"id": "leaf-2", "name": "Leaf"}
        assert updated.startswith("# ---\n# id: leaf-2\n")

    def test_replaces_docstring_directive(self):
        """An existing @id directive should be replaced."""
        source = '"""\n@id: old @desc: keep me\n"""\nx = 1\n'

        updated = update_scrippet_id(source, "fresh")

        assert updated == '"""\n@id: fresh @desc: keep me\n"""\nx = 1\n'

    def test_inserts_docstring_directive(self):
        """A docstring without @id should gain one."""
        source = '"""\n@desc: hello\n"""\n'

        updated = update_scrippet_id(source, "hello")

        assert updated == '"""\n@id: hello\n@desc: hello\n"""\n'

    def test_inserts_before_summary_line(self):
        """Prose on the opening line should stay out of the id value."""
        source = '"""Focus the active leaf.\n\n@desc: x\n"""\nx = 1\n'

        updated = update_scrippet_id(source, "leaf-2")

        assert updated.startswith('"""@id: leaf-2\nFocus the active leaf.')
        assert to_identifier("leaf.py", parse_metadata(updated).metadata) == "leaf-2"
        assert parse_metadata(updated).metadata["desc"] == "x"

    def test_inserts_into_one_line_docstring(self):
        """A one-line docstring should keep its summary on its own line."""
        updated = update_scrippet_id('"""Simple docstring."""\n', "b")

        assert updated == '"""@id: b\nSimple docstring."""\n'

    def test_inserts_into_empty_docstring(self):
        """An empty docstring should hold just the directive."""
        updated = update_scrippet_id('""""""\n', "solo")

        assert parse_metadata(updated).metadata == {"id": "solo"}

    def test_adds_header_after_shebang(self):
        """Sources without a header should get one after the shebang."""
        source = "#!/usr/bin/env python\nx = 1\n"

        updated = update_scrippet_id(source, "fresh")

        assert updated == '#!/usr/bin/env python\n"""\n@id: fresh\n"""\nx = 1\n'
        assert to_identifier("any.py", parse_metadata(updated).metadata) == "fresh"

    @pytest.mark.parametrize(
        "source",
        [
            "# ---\n# id: a\n# ---\n",
            '"""@id: a"""\n',
            '"""Simple docstring."""\n',
            '"""Summary.\n\n@desc: x\n"""\n',
            "x = 1\n",
        ],
    )
    def test_result_declares_new_id(self, source):
        """Every header form should end up declaring the new id."""
        updated = update_scrippet_id(source, "b")

        assert parse_metadata(updated).metadata["id"] == "b"
