"""
精确位置模型 (Position & Range)
以 章节索引 + 行号 + 字符偏移 定位正文中的任意位置，支持跨章节的文本范围。
"""
from dataclasses import dataclass, asdict
from functools import total_ordering
from typing import Any, Dict, Tuple


def _pick(data: Dict[str, Any], snake: str, camel: str, default: Any = 0) -> Any:
    value = data.get(snake)
    if value is None:
        value = data.get(camel)
    return default if value is None else value


@total_ordering
@dataclass(frozen=True)
class PrecisePosition:
    """
    精确位置。

    chapter_index 从 0 开始，line_number 从 1 开始，character_offset 为行内偏移。
    比较顺序为 (章节索引, 行号, 字符偏移) 的字典序。
    """
    chapter_index: int
    line_number: int
    character_offset: int = 0

    def sort_key(self) -> Tuple[int, int, int]:
        return (self.chapter_index, self.line_number, self.character_offset)

    def __lt__(self, other):
        if not isinstance(other, PrecisePosition):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PrecisePosition":
        return cls(
            chapter_index=int(_pick(data, "chapter_index", "chapterIndex")),
            line_number=int(_pick(data, "line_number", "lineNumber")),
            character_offset=int(_pick(data, "character_offset", "characterOffset")),
        )


@dataclass(frozen=True)
class PreciseRange:
    """精确范围，end 必须不早于 start。"""
    start: PrecisePosition
    end: PrecisePosition

    @property
    def chapter_span(self) -> int:
        """范围跨越的章节边界数"""
        return self.end.chapter_index - self.start.chapter_index

    def is_valid(self) -> bool:
        return is_valid_range(self)

    def to_dict(self) -> Dict[str, Dict[str, int]]:
        return {"start": self.start.to_dict(), "end": self.end.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PreciseRange":
        return cls(
            start=PrecisePosition.from_dict(data.get("start") or {}),
            end=PrecisePosition.from_dict(data.get("end") or {}),
        )


def compare_positions(a: PrecisePosition, b: PrecisePosition) -> int:
    """三级字典序比较，返回 -1 / 0 / 1"""
    ka, kb = a.sort_key(), b.sort_key()
    if ka < kb:
        return -1
    if ka > kb:
        return 1
    return 0


def is_position_after(a: PrecisePosition, b: PrecisePosition) -> bool:
    """判断位置 a 是否不早于位置 b（相同位置视为合法的结束位置）"""
    return compare_positions(a, b) >= 0


def is_valid_range(position_range: PreciseRange) -> bool:
    return is_position_after(position_range.end, position_range.start)
