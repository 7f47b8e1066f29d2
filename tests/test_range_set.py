import pytest

from audiostream.range_set import Range, RangeSet

UNIVERSE = range(0, 80)


def _assert_normalised(range_set):
    ranges = list(range_set)
    for range_ in ranges:
        assert range_.length > 0
    for previous, following in zip(ranges, ranges[1:]):
        assert previous.end() < following.start


def _sample_sets():
    a = RangeSet([Range(0, 10), Range(20, 15), Range(50, 5)])
    b = RangeSet([Range(5, 20), Range(40, 12), Range(70, 3)])
    return a, b


def test_empty_set():
    rs = RangeSet()
    assert rs.is_empty()
    assert len(rs) == 0
    assert str(rs) == "()"
    assert 0 not in rs


def test_range_str_and_end():
    range_ = Range(3, 4)
    assert str(range_) == "[3, 6]"
    assert range_.end() == range_.start + range_.length


def test_set_str():
    rs = RangeSet([Range(20, 5), Range(0, 5)])
    assert str(rs) == "([0, 4][20, 24])"


def test_zero_length_is_ignored():
    rs = RangeSet()
    rs.add_range(Range(5, 0))
    assert rs.is_empty()


def test_disjoint_ranges_are_sorted():
    low = Range(0, 5)
    high = Range(20, 5)
    rs = RangeSet([high, low])
    assert list(rs) == [low, high]
    assert len(rs) == low.length + high.length


def test_touching_ranges_merge():
    a = Range(0, 10)
    b = Range(10, 5)
    rs = RangeSet([a, b])
    assert list(rs) == [Range(a.start, b.end() - a.start)]


def test_bridging_range_merges_neighbours():
    left = Range(0, 5)
    right = Range(10, 5)
    rs = RangeSet([left, right])
    rs.add_range(Range(3, 9))
    assert list(rs) == [Range(left.start, right.end() - left.start)]


def test_contains_and_contained_length():
    block = Range(10, 10)
    rs = RangeSet([block])
    assert 15 in rs
    assert block.end() not in rs
    assert rs.contained_length_from_value(15) == block.end() - 15
    assert rs.contained_length_from_value(5) == 0
    assert rs.contained_length_from_value(block.end()) == 0


def test_subtract_punches_hole():
    whole = Range(0, 20)
    hole = Range(5, 5)
    rs = RangeSet([whole])
    rs.subtract_range(hole)
    assert list(rs) == [
        Range(whole.start, hole.start),
        Range(hole.end(), whole.end() - hole.end()),
    ]


def test_subtract_head_of_range():
    whole = Range(10, 10)
    cut = Range(0, 15)
    rs = RangeSet([whole])
    rs.subtract_range(cut)
    assert list(rs) == [Range(cut.end(), whole.end() - cut.end())]


def test_subtract_tail_and_following_ranges():
    rs = RangeSet([Range(0, 10), Range(20, 5), Range(30, 10)])
    cut = Range(5, 30)
    rs.subtract_range(cut)
    assert list(rs) == [Range(0, cut.start), Range(cut.end(), 40 - cut.end())]
    _assert_normalised(rs)


def test_subtract_everything():
    rs = RangeSet([Range(3, 4), Range(10, 2)])
    rs.subtract_range(Range(0, 100))
    assert rs.is_empty()


def test_intersection_matches_membership():
    a, b = _sample_sets()
    inter = a.intersection(b)
    _assert_normalised(inter)
    for value in UNIVERSE:
        assert (value in inter) == (value in a and value in b)


def test_union_matches_membership():
    a, b = _sample_sets()
    union = a.union(b)
    _assert_normalised(union)
    for value in UNIVERSE:
        assert (value in union) == (value in a or value in b)


def test_minus_matches_membership():
    a, b = _sample_sets()
    difference = a.minus(b)
    _assert_normalised(difference)
    for value in UNIVERSE:
        assert (value in difference) == (value in a and value not in b)


def test_minus_and_union_do_not_modify_operands():
    a, b = _sample_sets()
    before_a, before_b = a.copy(), b.copy()
    a.minus(b)
    a.union(b)
    a.intersection(b)
    assert a == before_a
    assert b == before_b


def test_contains_range_set():
    outer = RangeSet([Range(0, 50)])
    inner = RangeSet([Range(5, 5), Range(30, 10)])
    assert outer.contains_range_set(inner)
    assert not inner.contains_range_set(outer)
    assert outer.contains_range_set(RangeSet())


def test_copy_is_independent():
    rs = RangeSet([Range(0, 10)])
    duplicate = rs.copy()
    duplicate.add_range(Range(20, 5))
    assert list(rs) == [Range(0, 10)]
    assert len(duplicate) == len(rs) + 5


def test_getitem_out_of_range():
    rs = RangeSet([Range(0, 4)])
    assert rs[0] == Range(0, 4)
    with pytest.raises(IndexError):
        rs[1]