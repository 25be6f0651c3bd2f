"""Tests for shallow_merge, NO_VALUE and json_equal."""

from __future__ import annotations

import copy

import pytest

from hookchain.errors import MergeError
from hookchain.merge import NO_VALUE, canonical_json, is_present, json_equal, shallow_merge


class TestShallowMerge:
    def test_both_absent_is_no_value(self):
        result = shallow_merge(NO_VALUE, NO_VALUE)
        assert result is NO_VALUE
        assert result != {}

    def test_absent_patch_returns_base(self):
        base = {"a": 1}
        assert shallow_merge(base, NO_VALUE) == base

    def test_absent_base_returns_patch(self):
        patch = {"b": 2}
        assert shallow_merge(NO_VALUE, patch) == patch

    def test_patch_keys_overwrite(self):
        result = shallow_merge({"a": 1, "b": 2}, {"b": 3, "c": 4})
        assert result == {"a": 1, "b": 3, "c": 4}

    def test_nested_objects_not_deep_merged(self):
        base = {"a": {"x": 1}}
        patch = {"a": {"y": 2}}
        assert shallow_merge(base, patch) == {"a": {"y": 2}}

    def test_overwrite_regardless_of_shape(self):
        base = {"a": {"x": 1}, "b": [1, 2], "c": "s"}
        patch = {"a": 7, "b": {"k": True}, "c": [None]}
        assert shallow_merge(base, patch) == patch

    def test_inputs_not_mutated(self):
        base = {"a": {"x": 1}}
        patch = {"b": 2}
        base_before = copy.deepcopy(base)
        patch_before = copy.deepcopy(patch)
        shallow_merge(base, patch)
        assert base == base_before
        assert patch == patch_before

    def test_empty_patch_yields_empty_object_not_no_value(self):
        result = shallow_merge(NO_VALUE, {})
        assert result == {}
        assert is_present(result)

    @pytest.mark.parametrize("bad", ["str", 1, 1.5, True, None, [1, 2]])
    def test_non_object_patch_raises(self, bad):
        with pytest.raises(MergeError, match="patch"):
            shallow_merge({"a": 1}, bad)

    @pytest.mark.parametrize("bad", ["str", [1], None])
    def test_non_object_base_raises(self, bad):
        with pytest.raises(MergeError, match="base"):
            shallow_merge(bad, {"a": 1})

    def test_error_names_json_type(self):
        with pytest.raises(MergeError, match="array"):
            shallow_merge({}, [1])


class TestNoValue:
    def test_singleton_survives_copies(self):
        assert copy.copy(NO_VALUE) is NO_VALUE
        assert copy.deepcopy(NO_VALUE) is NO_VALUE

    def test_falsy_and_repr(self):
        assert not NO_VALUE
        assert repr(NO_VALUE) == "NO_VALUE"

    def test_null_is_present(self):
        assert is_present(None)
        assert not is_present(NO_VALUE)


class TestJsonEqual:
    def test_key_order_independent(self):
        assert json_equal({"a": 1, "b": {"c": 2, "d": 3}}, {"b": {"d": 3, "c": 2}, "a": 1})

    def test_true_is_not_one(self):
        assert not json_equal({"a": True}, {"a": 1})

    def test_no_value_vs_empty_object(self):
        assert json_equal(NO_VALUE, NO_VALUE)
        assert not json_equal(NO_VALUE, {})
        assert not json_equal(NO_VALUE, None)

    def test_array_order_matters(self):
        assert not json_equal([1, 2], [2, 1])

    def test_canonical_json_is_compact_and_sorted(self):
        assert canonical_json({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'
        assert canonical_json(NO_VALUE) is None
