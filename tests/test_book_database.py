"""
书籍数据库仓库测试：初始化、增删改查、正文溢出、修订号冲突与章节处理。
"""
import pytest

from core.exceptions import (
    DatabaseNotInitializedError,
    EntityNotFoundError,
    StaleWriteError,
    ValidationError,
)
from core.frontmatter import parse_chapter_frontmatter, parse_frontmatter
from core.schemas import ChapterFrontmatter, Character, StoryEvent, StoryUnit
from infra.storage.collection_document import parse_collection_document
from infra.storage.file_storage import LocalFileStorage
from services.book_database import (
    CHARACTERS,
    BookDatabaseService,
    count_words,
    generate_book_id,
)


class TestInitialize:

    def test_creates_meta_and_empty_collections(self, database, storage, book):
        book_path, book_id = book
        assert book_id.startswith("Test_")
        assert database.is_database_initialized(book_path)
        for name in ("_book_meta.md", "_characters.md", "_story_units.md", "_events.md"):
            assert storage.exists(f"{book_path}/{name}")
        assert storage.exists(f"{book_path}/_canvas")

        meta = database.get_book_meta(book_path)
        assert meta.title == "Test"
        assert meta.author == "作者"
        assert database.get_characters(book_path) == []

        header = parse_frontmatter(storage.read(f"{book_path}/_characters.md")).data
        assert header["type"] == "character-database"
        assert header["book_id"] == book_id
        assert header["revision"] == 0

    def test_book_id_sanitizes_title(self):
        book_id = generate_book_id('我的 小说:第一部?')
        assert book_id.startswith("我的_小说第一部_")

    def test_count_words_ignores_whitespace(self):
        assert count_words("一 二\n三\t四") == 4

    def test_uninitialized_book(self, database):
        assert not database.is_database_initialized("books/none")
        assert database.get_book_meta("books/none") is None
        assert database.get_characters("books/none") == []
        with pytest.raises(DatabaseNotInitializedError):
            database.add_character("books/none", {"name": "萧炎"})

    def test_update_book_meta_keeps_identity(self, database, book):
        book_path, book_id = book
        meta = database.get_book_meta(book_path)
        updated = database.update_book_meta(book_path, {
            "title": "新书名",
            "bookId": "hijacked",
            "created_at": "1999-01-01T00:00:00.000Z",
            "total_chapters": 3,
        })
        assert updated.title == "新书名"
        assert updated.total_chapters == 3
        assert updated.book_id == book_id
        assert updated.created_at == meta.created_at
        assert database.get_book_meta(book_path).title == "新书名"


class TestCharacterCrud:
    """人物的添加、查询、更新与删除"""

    def test_add_update_delete(self, database, book):
        book_path, book_id = book
        character_id = database.add_character(book_path, {"name": "萧炎", "role": "protagonist"})
        assert character_id.startswith("char_")

        characters = database.get_characters(book_path)
        assert len(characters) == 1
        stored = characters[0]
        assert stored.name == "萧炎"
        assert stored.book_id == book_id
        assert stored.created_at == stored.updated_at

        updated = database.update_character(book_path, character_id, {"aliases": ["炎帝"], "createdAt": "x"})
        assert updated.aliases == ["炎帝"]
        assert updated.created_at == stored.created_at
        assert database.get_character(book_path, character_id).aliases == ["炎帝"]

        database.delete_character(book_path, character_id)
        assert database.get_characters(book_path) == []
        assert database.get_character(book_path, character_id) is None

    def test_accepts_dataclass_input(self, database, book):
        book_path, _ = book
        character_id = database.add_character(book_path, Character(name="药老", role="supporting"))
        assert database.get_character(book_path, character_id).name == "药老"

    def test_missing_id_leaves_collection_unchanged(self, database, storage, book):
        book_path, _ = book
        database.add_character(book_path, {"name": "萧炎"})
        before = storage.read(f"{book_path}/_characters.md")

        with pytest.raises(EntityNotFoundError):
            database.update_character(book_path, "char_missing", {"name": "x"})
        with pytest.raises(EntityNotFoundError):
            database.delete_character(book_path, "char_missing")

        assert storage.read(f"{book_path}/_characters.md") == before
        assert len(database.get_characters(book_path)) == 1

    def test_rejects_invalid_input(self, database, book):
        book_path, _ = book
        with pytest.raises(ValidationError):
            database.add_character(book_path, {"name": "  "})
        with pytest.raises(ValidationError):
            database.add_character(book_path, {"name": "萧炎", "role": "hero"})
        assert database.get_characters(book_path) == []

    def test_revision_increments_on_each_write(self, database, storage, book):
        book_path, _ = book
        character_id = database.add_character(book_path, {"name": "萧炎"})
        database.update_character(book_path, character_id, {"tags": ["主角"]})
        header = parse_frontmatter(storage.read(f"{book_path}/_characters.md")).data
        assert header["revision"] == 2

    def test_character_story_units(self, database, book):
        book_path, _ = book
        character_id = database.add_character(book_path, {"name": "萧炎"})
        database.add_story_unit(book_path, {"name": "退婚", "related_characters": [character_id]})
        database.add_story_unit(book_path, {"name": "无关"})
        units = database.get_character_story_units(book_path, character_id)
        assert [u.name for u in units] == ["退婚"]


class TestStoryUnits:

    def test_short_text_stays_inline(self, database, book):
        book_path, _ = book
        unit_id = database.add_story_unit(book_path, {"name": "短篇", "text_content": "正文"})
        unit = database.get_story_unit(book_path, unit_id)
        assert unit.text_content == "正文"
        assert unit.text_file_path is None
        assert database.get_story_unit_full_text(book_path, unit_id) == "正文"

    def test_long_text_overflows_to_file(self, database, storage, book):
        book_path, _ = book
        text = "字" * 6000
        unit_id = database.add_story_unit(book_path, StoryUnit(name="长篇", text_content=text))

        unit = database.get_story_unit(book_path, unit_id)
        assert unit.text_file_path == f"{book_path}/_story_unit_texts/{unit_id}.md"
        assert unit.text_content == "字" * 200 + "..."
        assert storage.read(unit.text_file_path) == text
        assert database.get_story_unit_full_text(book_path, unit_id) == text

        database.delete_story_unit(book_path, unit_id)
        assert not storage.exists(unit.text_file_path)

    def test_replacing_long_text_with_short_removes_file(self, database, storage, book):
        book_path, _ = book
        unit_id = database.add_story_unit(book_path, {"name": "长篇", "text_content": "字" * 6000})
        overflow = database.get_story_unit(book_path, unit_id).text_file_path

        database.update_story_unit(book_path, unit_id, {"text_content": "短"})
        unit = database.get_story_unit(book_path, unit_id)
        assert unit.text_content == "短"
        assert unit.text_file_path is None
        assert not storage.exists(overflow)

    def test_passing_back_fetched_unit_keeps_full_text(self, database, storage, book):
        book_path, _ = book
        text = "字" * 6000
        unit_id = database.add_story_unit(book_path, {"name": "长篇", "text_content": text})

        unit = database.get_story_unit(book_path, unit_id)
        unit.name = "长篇（修订）"
        database.update_story_unit(book_path, unit_id, unit)

        stored = database.get_story_unit(book_path, unit_id)
        assert stored.name == "长篇（修订）"
        assert stored.text_file_path == unit.text_file_path
        assert storage.exists(unit.text_file_path)
        assert database.get_story_unit_full_text(book_path, unit_id) == text

    def test_replacing_long_text_with_long_text(self, database, book):
        book_path, _ = book
        unit_id = database.add_story_unit(book_path, {"name": "长篇", "text_content": "字" * 6000})
        database.update_story_unit(book_path, unit_id, {"text_content": "文" * 7000})
        assert database.get_story_unit_full_text(book_path, unit_id) == "文" * 7000

    def test_delete_unknown_unit(self, database, storage, book):
        book_path, _ = book
        database.add_story_unit(book_path, {"name": "退婚"})
        before = storage.read(f"{book_path}/_story_units.md")

        with pytest.raises(EntityNotFoundError):
            database.delete_story_unit(book_path, "unit_missing")

        assert storage.read(f"{book_path}/_story_units.md") == before
        assert len(database.get_story_units(book_path)) == 1

    def test_invalid_chapter_range(self, database, book):
        book_path, _ = book
        with pytest.raises(ValidationError):
            database.add_story_unit(book_path, {"name": "x", "chapter_range": {"start": 5, "end": 2}})

    def test_camel_case_input(self, database, book):
        book_path, _ = book
        unit_id = database.add_story_unit(book_path, {
            "name": "斗技",
            "chapterRange": {"start": 2, "end": 4},
            "lineType": "sub",
        })
        unit = database.get_story_unit(book_path, unit_id)
        assert unit.chapter_range.start == 2
        assert unit.chapter_range.end == 4
        assert unit.line_type == "sub"


class TestEvents:

    def test_update_position_only_touches_coordinates(self, database, book):
        book_path, _ = book
        event_id = database.add_event(book_path, StoryEvent(name="比武", pseudo_time_order=2, duration_span=3))
        event = database.update_event_position(book_path, event_id, layer=2)
        assert (event.pseudo_time_order, event.duration_span, event.layer) == (2, 3, 2)
        assert database.get_event(book_path, event_id).name == "比武"

    def test_defaults(self, database, book):
        book_path, _ = book
        event = database.get_event(book_path, database.add_event(book_path, {"name": "开端"}))
        assert event.color == "#4ECDC4"
        assert event.duration_span == 1
        assert event.layer == 0

    def test_delete_unknown_event(self, database, storage, book):
        book_path, _ = book
        database.add_event(book_path, {"name": "比武"})
        before = storage.read(f"{book_path}/_events.md")

        with pytest.raises(EntityNotFoundError):
            database.delete_event(book_path, "event_missing")

        assert storage.read(f"{book_path}/_events.md") == before
        assert len(database.get_events(book_path)) == 1


BOOK_PATH = "books/test_book"


class _InterleavingStorage(LocalFileStorage):
    """第一次读取指定集合文档后，模拟另一个写入者抢先提交"""

    def __init__(self, base_dir, file_name, concurrent_write):
        super().__init__(base_dir)
        self.file_name = file_name
        self.concurrent_write = concurrent_write
        self.armed = True

    def read(self, path):
        content = super().read(path)
        if self.armed and path.endswith(self.file_name):
            self.armed = False
            self.concurrent_write(BookDatabaseService(LocalFileStorage(self.base_dir), settings={}))
        return content


class TestConcurrency:

    def test_stale_write_is_rejected(self, tmp_path, book):
        storage = _InterleavingStorage(
            str(tmp_path), "_characters.md",
            lambda other: other.add_character(BOOK_PATH, {"name": "并发写入"}),
        )
        database = BookDatabaseService(storage, settings={})
        with pytest.raises(StaleWriteError):
            database.add_character(BOOK_PATH, {"name": "萧炎"})

        names = [c.name for c in database.get_characters(BOOK_PATH)]
        assert names == ["并发写入"]

    def test_rejected_write_leaves_no_overflow_file(self, tmp_path, book):
        storage = _InterleavingStorage(
            str(tmp_path), "_story_units.md",
            lambda other: other.add_story_unit(BOOK_PATH, {"name": "并发写入"}),
        )
        database = BookDatabaseService(storage, settings={})
        with pytest.raises(StaleWriteError):
            database.add_story_unit(BOOK_PATH, {"name": "长篇", "text_content": "字" * 6000})

        assert storage.list_files(f"{BOOK_PATH}/_story_unit_texts") == []
        assert [u.name for u in database.get_story_units(BOOK_PATH)] == ["并发写入"]

    def test_corrupt_document_reads_as_empty(self, database, storage, book):
        book_path, _ = book
        storage.write(f"{book_path}/_characters.md", "---\ntype: character-database\n---\n\n没有数据块")
        assert database.get_characters(book_path) == []
        assert database.find_entity(book_path, CHARACTERS, "char_x") is None


class TestChapters:

    def test_scan_skips_management_files(self, database, storage, book_with_chapters):
        book_path, _ = book_with_chapters
        storage.write(f"{book_path}/00-人物-管理.md", "x")
        storage.write(f"{book_path}/笔记.md", "x")
        chapters = database.scan_chapter_files(book_path)
        assert [c.chapter_num for c in chapters] == [1, 2, 3]
        assert chapters[0].title == "初入江湖"

    def test_inject_is_idempotent(self, database, storage, book_with_chapters):
        book_path, book_id = book_with_chapters
        assert database.inject_chapter_frontmatters(book_path, book_id) == 3
        assert database.inject_chapter_frontmatters(book_path, book_id) == 0

        frontmatter = parse_chapter_frontmatter(storage.read(f"{book_path}/02-风起云涌.md"))
        assert frontmatter.chapter_id == f"{book_id}_chapter_2"
        assert frontmatter.word_count == 15

        chapters = database.get_chapters(book_path)
        assert [c.title for c in chapters] == ["初入江湖", "风起云涌", "尘埃落定"]

    def test_chapter_content_strips_frontmatter(self, database, book_with_chapters):
        book_path, book_id = book_with_chapters
        database.inject_chapter_frontmatters(book_path, book_id)
        content = database.get_chapter_content(book_path, 2, 3)
        assert content == (
            "## 第2章 风起云涌\n\n第二章开头\n第二章中段\n第二章结尾"
            "\n\n---\n\n"
            "## 第3章 尘埃落定\n\n第三章第一行\n第三章第二行"
        )

    def test_update_missing_chapter(self, database, book):
        book_path, book_id = book
        with pytest.raises(EntityNotFoundError):
            database.update_chapter_frontmatter(f"{book_path}/99-不存在.md",
                                                ChapterFrontmatter(book_id=book_id, chapter_id="c"))


class TestCollectionDocument:

    def test_document_keeps_readable_section(self, database, storage, book):
        book_path, _ = book
        database.add_character(book_path, {"name": "萧炎", "role": "protagonist", "aliases": ["炎帝"]})
        text = storage.read(f"{book_path}/_characters.md")
        assert "### 萧炎" in text
        assert "主角" in text
        document = parse_collection_document(text, "characters")
        assert document.records[0]["name"] == "萧炎"
