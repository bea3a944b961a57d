"""
精确位置与范围的比较规则测试。
"""
from core.positions import (
    PrecisePosition,
    PreciseRange,
    compare_positions,
    is_position_after,
    is_valid_range,
)


class TestComparePositions:

    def test_chapter_index_dominates(self):
        a = PrecisePosition(0, 99, 99)
        b = PrecisePosition(1, 1, 0)
        assert compare_positions(a, b) == -1
        assert compare_positions(b, a) == 1

    def test_line_then_offset(self):
        assert compare_positions(PrecisePosition(2, 3, 0), PrecisePosition(2, 4, 0)) == -1
        assert compare_positions(PrecisePosition(2, 3, 7), PrecisePosition(2, 3, 5)) == 1
        assert compare_positions(PrecisePosition(2, 3, 5), PrecisePosition(2, 3, 5)) == 0

    def test_ordering_operators(self):
        positions = [PrecisePosition(1, 1, 0), PrecisePosition(0, 5, 10), PrecisePosition(0, 5, 2)]
        assert sorted(positions) == [PrecisePosition(0, 5, 2), PrecisePosition(0, 5, 10), PrecisePosition(1, 1, 0)]
        assert PrecisePosition(0, 1, 0) <= PrecisePosition(0, 1, 0)

    def test_is_position_after_accepts_equal(self):
        p = PrecisePosition(0, 5, 10)
        assert is_position_after(p, p)
        assert is_position_after(PrecisePosition(2, 1, 0), p)
        assert not is_position_after(PrecisePosition(0, 5, 9), p)


class TestPreciseRange:

    def test_validity(self):
        start = PrecisePosition(0, 5, 10)
        assert is_valid_range(PreciseRange(start, PrecisePosition(2, 1, 0)))
        assert not PreciseRange(start, PrecisePosition(0, 4, 50)).is_valid()

    def test_from_dict_accepts_camel_case(self):
        r = PreciseRange.from_dict({
            "start": {"chapterIndex": 0, "lineNumber": 5, "characterOffset": 10},
            "end": {"chapter_index": 2, "line_number": 1},
        })
        assert r.start == PrecisePosition(0, 5, 10)
        assert r.end == PrecisePosition(2, 1, 0)
        assert r.chapter_span == 2

    def test_to_dict_is_snake_case(self):
        r = PreciseRange(PrecisePosition(0, 1, 2), PrecisePosition(1, 3, 4))
        assert r.to_dict() == {
            "start": {"chapter_index": 0, "line_number": 1, "character_offset": 2},
            "end": {"chapter_index": 1, "line_number": 3, "character_offset": 4},
        }
