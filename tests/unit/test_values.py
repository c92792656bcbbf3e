"""Unit tests for chart values merging and override parsing."""

import pytest

from kindplane.bootstrap.values import (
    load_values_file,
    merge_values,
    parse_overrides,
    resolve_values,
    split_key,
)
from kindplane.errors import MalformedOverrideError, ValidationError


class TestMergeValues:
    """Tests for merge_values."""

    def test_later_source_wins_on_scalars(self):
        """Test that later sources override scalar leaves."""
        assert merge_values({"a": 1}, {"a": 2}) == {"a": 2}

    def test_nested_dicts_merge_recursively(self):
        """Test that dicts at the same path are merged, not replaced."""
        base = {"image": {"repo": "nginx", "tag": "1.0"}, "replicas": 1}
        override = {"image": {"tag": "2.0"}}
        assert merge_values(base, override) == {
            "image": {"repo": "nginx", "tag": "2.0"},
            "replicas": 1,
        }

    def test_lists_replaced_wholesale(self):
        """Test that lists are treated as scalars."""
        assert merge_values({"args": ["a", "b"]}, {"args": ["c"]}) == {"args": ["c"]}

    def test_scalar_replaces_dict_and_back(self):
        """Test that type changes at a path take the later value."""
        assert merge_values({"a": {"b": 1}}, {"a": "x"}) == {"a": "x"}
        assert merge_values({"a": "x"}, {"a": {"b": 1}}) == {"a": {"b": 1}}

    def test_none_and_empty_sources_ignored(self):
        """Test that None and empty sources contribute nothing."""
        assert merge_values(None, {"a": 1}, {}, None) == {"a": 1}
        assert merge_values() == {}

    def test_inputs_not_mutated(self):
        """Test that inputs are left untouched and share no structure with the result."""
        base = {"a": {"b": 1}}
        override = {"a": {"c": 2}}
        result = merge_values(base, override)

        result["a"]["b"] = 99
        assert base == {"a": {"b": 1}}
        assert override == {"a": {"c": 2}}

    def test_merge_is_associative(self):
        """Test that grouping of sources does not change the result."""
        a = {"x": {"y": 1, "z": 1}, "k": [1]}
        b = {"x": {"y": 2}, "k": [2]}
        c = {"x": {"z": 3, "w": {"q": 1}}}
        assert merge_values(merge_values(a, b), c) == merge_values(a, merge_values(b, c))


class TestSplitKey:
    """Tests for split_key."""

    def test_dotted_key(self):
        """Test splitting on dots."""
        assert split_key("a.b.c") == ["a", "b", "c"]

    def test_escaped_dot(self):
        """Test that a backslash-escaped dot stays in the segment."""
        assert split_key("a\\.b.c") == ["a.b", "c"]

    def test_empty_segments_dropped(self):
        """Test that leading, trailing and doubled dots are ignored."""
        assert split_key(".a..b.") == ["a", "b"]


class TestParseOverrides:
    """Tests for parse_overrides."""

    def test_siblings_share_parent(self):
        """Test that overrides under the same prefix build one subtree."""
        assert parse_overrides(["a.b=1", "a.c=2"]) == {"a": {"b": "1", "c": "2"}}

    def test_escaped_dot_is_single_key(self):
        """Test that an escaped dot produces a flat key."""
        assert parse_overrides(["a\\.b=1"]) == {"a.b": "1"}

    def test_values_stay_strings(self):
        """Test that values are not type-coerced."""
        assert parse_overrides(["replicas=3", "enabled=true"]) == {"replicas": "3", "enabled": "true"}

    def test_only_first_equals_splits(self):
        """Test that '=' inside the value is preserved."""
        assert parse_overrides(["args=--flag=x"]) == {"args": "--flag=x"}

    def test_empty_value_allowed(self):
        """Test that an empty value is kept as an empty string."""
        assert parse_overrides(["a="]) == {"a": ""}

    def test_later_override_wins(self):
        """Test that a repeated key takes the last value."""
        assert parse_overrides(["a=1", "a=2"]) == {"a": "2"}

    def test_missing_equals_fails(self):
        """Test that a pair without '=' is rejected."""
        with pytest.raises(MalformedOverrideError) as exc_info:
            parse_overrides(["noeq"])
        assert exc_info.value.override == "noeq"
        assert "expected key=value" in exc_info.value.message

    def test_empty_key_fails(self):
        """Test that an empty key is rejected."""
        with pytest.raises(MalformedOverrideError, match="empty key"):
            parse_overrides(["=value"])

    def test_nesting_under_scalar_fails(self):
        """Test that nesting below an existing scalar is rejected."""
        with pytest.raises(MalformedOverrideError, match="already set to a scalar"):
            parse_overrides(["a=1", "a.b=2"])

    def test_malformed_override_is_validation_error(self):
        """Test that callers can catch override problems as validation errors."""
        with pytest.raises(ValidationError):
            parse_overrides(["noeq"])


class TestLoadValuesFile:
    """Tests for load_values_file and resolve_values."""

    def test_load_mapping(self, tmp_path):
        """Test loading a YAML mapping."""
        path = tmp_path / "values.yaml"
        path.write_text("replicas: 2\nimage:\n  tag: v1\n")
        assert load_values_file(path) == {"replicas": 2, "image": {"tag": "v1"}}

    def test_empty_file_is_empty_tree(self, tmp_path):
        """Test that an empty file yields {}."""
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_values_file(path) == {}

    def test_missing_file_fails(self, tmp_path):
        """Test that a missing file raises ValidationError."""
        with pytest.raises(ValidationError, match="failed to read values file"):
            load_values_file(tmp_path / "missing.yaml")

    def test_non_mapping_fails(self, tmp_path):
        """Test that a top-level list is rejected."""
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValidationError, match="must contain a mapping"):
            load_values_file(path)

    def test_resolve_precedence(self, tmp_path):
        """Test files < inline < overrides, with relative paths against base_dir."""
        (tmp_path / "base.yaml").write_text("a: file1\nb: file1\nc: file1\n")
        (tmp_path / "env.yaml").write_text("b: file2\n")

        result = resolve_values(
            ["base.yaml", "env.yaml"],
            inline={"c": "inline", "d": "inline"},
            overrides=["d=set"],
            base_dir=tmp_path,
        )

        assert result == {"a": "file1", "b": "file2", "c": "inline", "d": "set"}
