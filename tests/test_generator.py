"""
Combination generator tests.

Covers sizing, ordering, exclusion, parallel lockstep, seeded shuffling,
restart from an offset and placeholder validation.
"""

import pytest

from downzer.core.exceptions import PlaceholderError, RangeFormatError, WordlistError
from downzer.core.generator import (
    CombinationSpace,
    CombinationSpec,
    TargetStream,
    build_wordlists,
    find_placeholders,
    parse_exclusions,
    parse_range,
    read_wordlist,
    render,
)


def targets(template, spec, offset=0):
    space = CombinationSpace.from_spec(spec, template)
    return [target for _, target in TargetStream(template, space, offset)]


# =========================================================================
# Input parsing
# =========================================================================


class TestInputParsing:

    def test_range_is_inclusive(self):
        assert parse_range("3-7") == (3, 7)
        assert parse_range("5-5") == (5, 5)

    @pytest.mark.parametrize("spec", ["7-3", "abc", "1-", "-5", "1-2-3", ""])
    def test_bad_range_rejected(self, spec):
        with pytest.raises(RangeFormatError):
            parse_range(spec)

    def test_inline_wordlist(self):
        assert read_wordlist("admin, backup,,old") == ["admin", "backup", "old"]

    def test_file_wordlist_allows_commas_per_line(self, tmp_path):
        path = tmp_path / "words.txt"
        path.write_text("a,b\nc\n\n  d  \n")
        assert read_wordlist(str(path)) == ["a", "b", "c", "d"]

    def test_plus_joins_adjacent_lists(self):
        assert build_wordlists(["a,b", "+", "c", "x"]) == [["a", "b", "c"], ["x"]]

    def test_plus_chain_joins_three_lists(self):
        assert build_wordlists(["a", "+", "b", "+", "c"]) == [["a", "b", "c"]]

    @pytest.mark.parametrize("tokens", [["+", "a"], ["a", "+"], ["a", "+", "+", "b"]])
    def test_dangling_plus_rejected(self, tokens):
        with pytest.raises(WordlistError):
            build_wordlists(tokens)

    def test_exclusions_split_on_commas_and_spaces(self):
        assert parse_exclusions("a, b  c,d") == frozenset({"a", "b", "c", "d"})
        assert parse_exclusions(None) == frozenset()

    def test_placeholders_in_order_of_appearance(self):
        assert find_placeholders("x/FUZZW2/FUZZR/FUZZW1/FUZZR") == ["FUZZW2", "FUZZR", "FUZZW1"]


# =========================================================================
# Cross product
# =========================================================================


class TestCrossProduct:

    def test_range_times_wordlist(self):
        spec = CombinationSpec(range=(0, 2), wordlists=(("a", "b"),))
        space = CombinationSpace.from_spec(spec, "FUZZR-FUZZW1")
        assert len(space) == 6

    def test_exclusion_shrinks_space(self):
        spec = CombinationSpec(range=(0, 2), wordlists=(("a", "b"),), exclude=frozenset({"a"}))
        assert targets("FUZZR-FUZZW1", spec) == ["0-b", "1-b", "2-b"]

    def test_last_dimension_varies_fastest(self):
        spec = CombinationSpec(range=(0, 1), wordlists=(("a", "b"), ("x", "y")))
        assert targets("FUZZR/FUZZW1/FUZZW2", spec) == [
            "0/a/x", "0/a/y", "0/b/x", "0/b/y",
            "1/a/x", "1/a/y", "1/b/x", "1/b/y",
        ]

    def test_order_is_deterministic(self):
        spec = CombinationSpec(range=(1, 20), wordlists=(("a", "b", "c"),))
        assert targets("FUZZW1FUZZR", spec) == targets("FUZZW1FUZZR", spec)

    def test_template_without_placeholders_is_one_target(self):
        assert targets("https://example.com/", CombinationSpec()) == ["https://example.com/"]

    def test_huge_space_is_not_materialised(self):
        spec = CombinationSpec(range=(0, 10 ** 12), wordlists=(("a", "b"),))
        space = CombinationSpace.from_spec(spec, "FUZZR.FUZZW1")
        assert len(space) == 2 * (10 ** 12 + 1)
        assert render("FUZZR.FUZZW1", space[len(space) - 1]) == f"{10 ** 12}.b"

    def test_empty_wordlist_after_exclusion_gives_empty_space(self):
        spec = CombinationSpec(wordlists=(("a",),), exclude=frozenset({"a"}))
        assert targets("FUZZW1", spec) == []


# =========================================================================
# Parallel mode
# =========================================================================


class TestParallel:

    def test_lockstep_stops_at_shortest(self):
        spec = CombinationSpec(range=(1, 5), wordlists=(("a", "b", "c"),), parallel=True)
        assert targets("FUZZR-FUZZW1", spec) == ["1-a", "2-b", "3-c"]

    def test_parallel_length_is_min_after_exclusion(self):
        spec = CombinationSpec(
            wordlists=(("a", "b", "c", "d"), ("w", "x", "y")),
            exclude=frozenset({"b"}),
            parallel=True,
        )
        space = CombinationSpace.from_spec(spec, "FUZZW1FUZZW2")
        assert len(space) == 3


# =========================================================================
# Shuffle and restart
# =========================================================================


class TestShuffleAndOffset:

    def test_fixed_seed_is_reproducible_permutation(self):
        base = CombinationSpec(range=(0, 49), wordlists=(("a", "b", "c"),))
        shuffled = CombinationSpec(range=(0, 49), wordlists=(("a", "b", "c"),), shuffle=True, seed=1234)

        ordered = targets("FUZZR-FUZZW1", base)
        first = targets("FUZZR-FUZZW1", shuffled)
        second = targets("FUZZR-FUZZW1", shuffled)

        assert first == second
        assert sorted(first) == sorted(ordered)
        assert len(set(first)) == len(ordered)
        assert first != ordered

    def test_with_seed_fixes_seed_once(self):
        spec = CombinationSpec(range=(0, 9), shuffle=True).with_seed()
        assert spec.seed is not None
        assert spec.with_seed().seed == spec.seed
        assert CombinationSpec(range=(0, 9)).with_seed().seed is None

    def test_seed_survives_persistence(self):
        spec = CombinationSpec(range=(0, 30), wordlists=(("a", "b"),), shuffle=True).with_seed()
        restored = CombinationSpec.from_dict(spec.to_dict())
        assert restored == spec
        assert targets("FUZZR/FUZZW1", restored) == targets("FUZZR/FUZZW1", spec)

    def test_restart_from_offset_continues_sequence(self):
        spec = CombinationSpec(range=(0, 9), wordlists=(("a", "b"),), shuffle=True, seed=7)
        full = targets("FUZZR-FUZZW1", spec)
        assert targets("FUZZR-FUZZW1", spec, offset=8) == full[8:]

    def test_stream_tracks_position(self):
        spec = CombinationSpec(range=(0, 4))
        space = CombinationSpace.from_spec(spec, "FUZZR")
        stream = TargetStream("FUZZR", space, offset=2)
        assert stream.remaining == 3
        assert next(stream) == (2, "2")
        assert stream.position == 3
        assert stream.remaining == 2


# =========================================================================
# Placeholder validation
# =========================================================================


class TestPlaceholders:

    def test_missing_wordlist_rejected_before_generation(self):
        spec = CombinationSpec(range=(0, 2))
        with pytest.raises(PlaceholderError) as exc:
            CombinationSpace.from_spec(spec, "FUZZR/FUZZW1")
        assert exc.value.placeholder == "FUZZW1"

    def test_missing_range_rejected(self):
        with pytest.raises(PlaceholderError):
            CombinationSpace.from_spec(CombinationSpec(wordlists=(("a",),)), "FUZZR-FUZZW1")

    def test_fuzzw10_is_not_fuzzw1_followed_by_zero(self):
        wordlists = tuple((f"w{i}",) for i in range(1, 11))
        spec = CombinationSpec(wordlists=wordlists)
        assert targets("FUZZW1-FUZZW10", spec) == ["w1-w10"]

    def test_fuzzw10_without_tenth_list_rejected(self):
        spec = CombinationSpec(wordlists=(("a",),))
        with pytest.raises(PlaceholderError) as exc:
            CombinationSpace.from_spec(spec, "FUZZW1FUZZW10")
        assert exc.value.placeholder == "FUZZW10"

    def test_unused_dimension_is_accepted(self):
        spec = CombinationSpec(range=(0, 1), wordlists=(("a", "b"),))
        space = CombinationSpace.from_spec(spec, "FUZZR")
        assert len(space) == 4
