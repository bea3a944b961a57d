"""
精确标记业务服务 (Precise Marking Service)
在正文中放置开始/结束标记，配对后得到可跨章节的精确范围，
可以提取范围内的文本，并转换为故事单元。

标记状态：未配对(pending) --create_end_mark--> 已配对；未配对标记只能被显式删除。
标记数据保存在侧车文件 .novelcraft/_precise_marks.json 中。
"""
import secrets
import string
import logging
from typing import List, Optional, Union

from core.exceptions import DatabaseNotInitializedError, EntityNotFoundError, ValidationError
from core.frontmatter import parse_frontmatter
from core.positions import PrecisePosition, PreciseRange, is_position_after
from core.schemas import (
    ChapterRange,
    MarkStorage,
    PreciseMark,
    StoryUnit,
    UnpairedMark,
    now_iso,
    now_millis,
)
from infra.storage import sidecar_store
from infra.storage.collection_document import SECTION_SEPARATOR
from infra.storage.file_storage import join_path
from services.book_database import BookDatabaseService

logger = logging.getLogger(__name__)

_MARK_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_mark_id() -> str:
    suffix = "".join(secrets.choice(_MARK_ID_ALPHABET) for _ in range(9))
    return f"pm_{now_millis()}_{suffix}"


def default_mark_name(mark_id: str) -> str:
    return f"标记_{mark_id[-6:]}"


def extract_lines_range(lines: List[str], start_line: int, start_offset: int,
                        end_line: int, end_offset: int) -> str:
    """按 0-based 行号和行内偏移截取文本，行号越界时收缩到有效范围"""
    start_line = max(start_line, 0)
    end_line = min(end_line, len(lines) - 1)
    if start_line > end_line:
        return ""

    result = []
    for i in range(start_line, end_line + 1):
        line = lines[i]
        if i == start_line and i == end_line:
            result.append(line[start_offset:end_offset])
        elif i == start_line:
            result.append(line[start_offset:])
        elif i == end_line:
            result.append(line[:end_offset])
        else:
            result.append(line)
    return "\n".join(result)


def _as_position(value: Union[PrecisePosition, dict]) -> PrecisePosition:
    return value if isinstance(value, PrecisePosition) else PrecisePosition.from_dict(value)


class PreciseMarkingService:
    """
    精确标记引擎。

    Args:
        database (BookDatabaseService): 书籍数据库仓库，提供存储适配器、章节扫描和故事单元写入。
    """

    def __init__(self, database: BookDatabaseService):
        self.database = database
        self.storage = database.storage

    def marks_path(self, book_path: str) -> str:
        settings = self.database.settings
        return join_path(book_path, settings["hidden_folder"], settings["marks_file"])

    # --- 侧车文件 ---

    def load_marks(self, book_path: str) -> MarkStorage:
        """读取标记文件，缺失或损坏时返回空的标记存储"""
        data = sidecar_store.load_json(self.storage, self.marks_path(book_path))
        if not data:
            return MarkStorage(book_id=self.database.get_book_id(book_path) or "", last_updated=now_iso())
        return MarkStorage.from_dict(data)

    def save_marks(self, book_path: str, marks: MarkStorage):
        marks.last_updated = now_iso()
        sidecar_store.save_json(self.storage, self.marks_path(book_path), marks.to_dict())

    def _require_book_id(self, book_path: str) -> str:
        book_id = self.database.get_book_id(book_path)
        if not book_id:
            raise DatabaseNotInitializedError(book_path)
        return book_id

    # --- 创建标记 ---

    def create_start_mark(self, book_path: str, position, name: Optional[str] = None) -> str:
        """
        创建开始标记（未配对）。

        Returns:
            str: 标记 ID。

        Raises:
            DatabaseNotInitializedError: 书籍数据库未初始化。
        """
        book_id = self._require_book_id(book_path)
        marks = self.load_marks(book_path)

        mark_id = generate_mark_id()
        marks.unpaired_marks.append(UnpairedMark(
            mark_id=mark_id,
            book_id=book_id,
            name=name or default_mark_name(mark_id),
            position=_as_position(position),
            status="pending",
            created_at=now_iso(),
        ))
        marks.book_id = marks.book_id or book_id
        self.save_marks(book_path, marks)
        logger.info(f"已创建开始标记: {mark_id}")
        return mark_id

    def create_end_mark(self, book_path: str, position, start_mark_id: str) -> PreciseMark:
        """
        为开始标记配对结束位置。

        Raises:
            DatabaseNotInitializedError: 书籍数据库未初始化。
            EntityNotFoundError: 未找到开始标记。
            ValidationError: 结束位置早于开始位置，此时标记保持未配对且侧车文件不变。
        """
        self._require_book_id(book_path)
        marks = self.load_marks(book_path)

        index = next((i for i, m in enumerate(marks.unpaired_marks) if m.mark_id == start_mark_id), None)
        if index is None:
            raise EntityNotFoundError("开始标记", start_mark_id)

        start_mark = marks.unpaired_marks[index]
        end = _as_position(position)
        if not is_position_after(end, start_mark.position):
            raise ValidationError("结束位置必须在开始位置之后")

        now = now_iso()
        paired = PreciseMark(
            mark_id=start_mark.mark_id,
            book_id=start_mark.book_id,
            name=start_mark.name,
            range=PreciseRange(start=start_mark.position, end=end),
            is_paired=True,
            created_at=start_mark.created_at,
            updated_at=now,
        )
        del marks.unpaired_marks[index]
        marks.marks.append(paired)
        self.save_marks(book_path, marks)
        logger.info(f"标记已配对: {start_mark_id}")
        return paired

    def create_paired_mark(self, book_path: str, start, end, name: Optional[str] = None) -> PreciseMark:
        """直接根据一段选区创建已配对的标记"""
        book_id = self._require_book_id(book_path)
        start, end = _as_position(start), _as_position(end)
        if not is_position_after(end, start):
            raise ValidationError("结束位置必须在开始位置之后")

        marks = self.load_marks(book_path)
        mark_id = generate_mark_id()
        now = now_iso()
        mark = PreciseMark(
            mark_id=mark_id,
            book_id=book_id,
            name=name or default_mark_name(mark_id),
            range=PreciseRange(start=start, end=end),
            is_paired=True,
            created_at=now,
            updated_at=now,
        )
        marks.marks.append(mark)
        marks.book_id = marks.book_id or book_id
        self.save_marks(book_path, marks)
        logger.info(f"已从选区创建标记: {mark_id}")
        return mark

    # --- 查询与管理 ---

    def get_unpaired_marks(self, book_path: str) -> List[UnpairedMark]:
        return self.load_marks(book_path).unpaired_marks

    def get_paired_marks(self, book_path: str) -> List[PreciseMark]:
        return self.load_marks(book_path).marks

    def get_mark(self, book_path: str, mark_id: str) -> Optional[Union[PreciseMark, UnpairedMark]]:
        marks = self.load_marks(book_path)
        for mark in marks.marks + marks.unpaired_marks:
            if mark.mark_id == mark_id:
                return mark
        return None

    def update_mark_name(self, book_path: str, mark_id: str, name: str):
        marks = self.load_marks(book_path)
        for mark in marks.marks:
            if mark.mark_id == mark_id:
                mark.name = name
                mark.updated_at = now_iso()
                break
        else:
            for mark in marks.unpaired_marks:
                if mark.mark_id == mark_id:
                    mark.name = name
                    break
            else:
                raise EntityNotFoundError("标记", mark_id)
        self.save_marks(book_path, marks)

    def delete_unpaired_mark(self, book_path: str, mark_id: str):
        marks = self.load_marks(book_path)
        remaining = [m for m in marks.unpaired_marks if m.mark_id != mark_id]
        if len(remaining) == len(marks.unpaired_marks):
            raise EntityNotFoundError("未配对标记", mark_id)
        marks.unpaired_marks = remaining
        self.save_marks(book_path, marks)

    def delete_paired_mark(self, book_path: str, mark_id: str):
        marks = self.load_marks(book_path)
        remaining = [m for m in marks.marks if m.mark_id != mark_id]
        if len(remaining) == len(marks.marks):
            raise EntityNotFoundError("标记", mark_id)
        marks.marks = remaining
        self.save_marks(book_path, marks)

    # --- 文本提取 ---

    def extract_text_from_range(self, book_path: str, position_range: PreciseRange) -> str:
        """
        提取精确范围内的文本。

        起始章节从 (开始行, 偏移) 截取到章末，结束章节从章首截取到 (结束行, 偏移)，
        中间章节整章保留。跨章节时每段前加 `## 章节标题`，各章之间以分隔线连接。
        超出章节列表的章节索引会被跳过。
        """
        start, end = position_range.start, position_range.end
        chapter_files = self.database.scan_chapter_files(book_path)
        if not chapter_files:
            return ""

        multi_chapter = start.chapter_index != end.chapter_index
        parts = []
        for chapter_index in range(start.chapter_index, end.chapter_index + 1):
            if chapter_index < 0 or chapter_index >= len(chapter_files):
                continue

            chapter_file = chapter_files[chapter_index]
            body = parse_frontmatter(self.storage.read(chapter_file.path)).content
            lines = body.split("\n")

            start_line, start_offset = 0, 0
            end_line, end_offset = len(lines) - 1, len(lines[-1])
            if chapter_index == start.chapter_index:
                start_line, start_offset = start.line_number - 1, start.character_offset
            if chapter_index == end.chapter_index:
                end_line, end_offset = end.line_number - 1, end.character_offset

            text = extract_lines_range(lines, start_line, start_offset, end_line, end_offset)
            parts.append(f"## {chapter_file.title}\n\n{text}" if multi_chapter else text)

        return SECTION_SEPARATOR.join(parts)

    def _get_paired_mark(self, book_path: str, mark_id: str) -> PreciseMark:
        mark = self.get_mark(book_path, mark_id)
        if not isinstance(mark, PreciseMark):
            raise EntityNotFoundError("已配对标记", mark_id)
        return mark

    def extract_marked_text(self, book_path: str, mark_id: str) -> str:
        mark = self._get_paired_mark(book_path, mark_id)
        return self.extract_text_from_range(book_path, mark.range)

    # --- 转换为故事单元 ---

    def convert_to_story_unit(
        self,
        book_path: str,
        mark_id: str,
        name: str,
        line_type: str = "main",
        categories: Optional[List[str]] = None,
        related_characters: Optional[List[str]] = None,
    ) -> str:
        """
        把已配对标记转换为故事单元，并在标记上记录新单元的 ID。

        Returns:
            str: 新故事单元的 ID。
        """
        book_id = self._require_book_id(book_path)
        mark = self._get_paired_mark(book_path, mark_id)
        text = self.extract_text_from_range(book_path, mark.range)

        unit = StoryUnit(
            book_id=book_id,
            name=name,
            chapter_range=ChapterRange(
                start=mark.range.start.chapter_index + 1,
                end=mark.range.end.chapter_index + 1,
            ),
            precise_range=mark.range,
            line_type=line_type,
            categories=categories,
            related_characters=list(related_characters or []),
            text_content=text,
            analysis_template="seven-step",
            source="manual",
        )
        unit_id = self.database.add_story_unit(book_path, unit)

        marks = self.load_marks(book_path)
        for stored in marks.marks:
            if stored.mark_id == mark_id:
                stored.story_unit_id = unit_id
                stored.updated_at = now_iso()
        self.save_marks(book_path, marks)
        logger.info(f"标记 {mark_id} 已转换为故事单元 {unit_id}")
        return unit_id
