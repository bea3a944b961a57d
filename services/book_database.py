"""
书籍数据库业务服务 (Book Database Service)
以 Markdown 文档作为"表"：_book_meta.md、_characters.md、_story_units.md、_events.md。
每次写入都是 读取整篇 -> 内存修改 -> 重新生成整篇 -> 整篇写回，
写回前比对修订号，发现其他写入者已更新文档时拒绝覆盖。
"""
import re
import logging
from dataclasses import dataclass, is_dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from config.loader import get_storage_settings
from core.exceptions import (
    DatabaseNotInitializedError,
    EntityNotFoundError,
    FrontmatterParseError,
    StaleWriteError,
    StorageOperationError,
    ValidationError,
)
from core.frontmatter import (
    generate_frontmatter,
    parse_chapter_frontmatter,
    parse_frontmatter,
    set_chapter_frontmatter,
)
from core.schemas import (
    ANALYSIS_TEMPLATES,
    CHARACTER_ROLES,
    DATABASE_VERSION,
    DATA_SOURCES,
    LINE_TYPES,
    BookMeta,
    ChapterFile,
    ChapterFrontmatter,
    Character,
    StoryEvent,
    StoryUnit,
    compact,
    generate_entity_id,
    normalize_keys,
    now_iso,
    now_millis,
)
from infra.storage.collection_document import (
    SECTION_SEPARATOR,
    CollectionDocument,
    CollectionLayout,
    generate_collection_document,
    parse_collection_document,
    read_revision,
)
from infra.storage.file_storage import StorageAdapter, base_name, join_path

logger = logging.getLogger(__name__)

CHAPTER_FILE_RE = re.compile(r"^(\d+)-(.+)\.md$")
_BOOK_ID_INVALID_CHARS = re.compile(r'[\\/:*?"<>|]')
_WHITESPACE_RE = re.compile(r"\s+")

ROLE_LABELS = {
    "protagonist": "主角",
    "antagonist": "反派",
    "supporting": "配角",
    "minor": "龙套",
}

RELATIONSHIP_LABELS = {
    "friend": "朋友",
    "enemy": "敌人",
    "family": "家人",
    "lover": "恋人",
    "rival": "对手",
    "custom": "其他",
}

LINE_TYPE_LABELS = {
    "main": "主线",
    "sub": "支线",
    "independent": "独立",
    "custom": "自定义",
}

# 实体中不允许被更新覆盖的字段
_IMMUTABLE_FIELDS = ("book_id", "created_at")


def generate_book_id(title: str) -> str:
    """去除非法字符、空白替换为下划线、截断到 50 字符，再追加毫秒时间戳"""
    sanitized = _BOOK_ID_INVALID_CHARS.sub("", title or "")
    sanitized = _WHITESPACE_RE.sub("_", sanitized.strip())[:50]
    return f"{sanitized}_{now_millis()}"


def count_words(text: str) -> int:
    """字数：去除所有空白后的字符数"""
    return len(_WHITESPACE_RE.sub("", text or ""))


# --- 可读渲染 ---

def render_characters(records: List[Dict[str, Any]]) -> str:
    blocks = []
    for record in records:
        char = Character.from_dict(record)
        lines = [f"### {char.name}", "", f"- **角色**: {ROLE_LABELS.get(char.role, char.role)}"]
        if char.aliases:
            lines.append(f"- **别名**: {', '.join(char.aliases)}")
        if char.tags:
            lines.append(f"- **标签**: {', '.join(char.tags)}")
        if char.ai_description:
            lines.append(f"- **设定**: {char.ai_description}")
        if char.relationships:
            lines.append("- **关系**:")
            for rel in char.relationships:
                label = rel.description or RELATIONSHIP_LABELS.get(rel.relationship_type, rel.relationship_type)
                lines.append(f"  - {rel.target_name or rel.target_character_id}: {label}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def render_story_units(records: List[Dict[str, Any]]) -> str:
    blocks = []
    for record in records:
        unit = StoryUnit.from_dict(record)
        line_label = LINE_TYPE_LABELS.get(unit.line_type, unit.line_type)
        if unit.line_type == "custom" and unit.custom_line_type:
            line_label = unit.custom_line_type
        lines = [
            f"### {unit.name}",
            "",
            f"- **章节范围**: 第{unit.chapter_range.start}章 - 第{unit.chapter_range.end}章",
            f"- **故事线**: {line_label}",
        ]
        if unit.categories:
            lines.append(f"- **分类**: {', '.join(unit.categories)}")
        if unit.ai_analysis and unit.ai_analysis.summary:
            lines.append(f"- **摘要**: {unit.ai_analysis.summary}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def render_events(records: List[Dict[str, Any]]) -> str:
    events = sorted((StoryEvent.from_dict(r) for r in records), key=lambda e: e.pseudo_time_order)
    blocks = []
    for event in events:
        lines = [
            f"### {event.name}",
            "",
            f"- **时间顺序**: {event.pseudo_time_order}",
            f"- **持续跨度**: {event.duration_span}",
            f"- **章节范围**: 第{event.chapter_range.start}章 - 第{event.chapter_range.end}章",
        ]
        if event.description:
            lines.append(f"- **描述**: {event.description}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def render_book_meta(meta: BookMeta) -> str:
    """生成 _book_meta.md 全文"""
    body = (
        f"# {meta.title}\n\n"
        f"> 书籍数据库元数据文件，请勿手动编辑 Frontmatter 部分。\n\n"
        f"## 简介\n\n"
        f"{meta.description or '_暂无简介_'}\n\n"
        f"## AI 分析概要\n\n"
        f"{meta.ai_synopsis or '_暂无 AI 分析_'}\n"
    )
    return f"{generate_frontmatter(meta.to_frontmatter())}\n\n{body}"


@dataclass
class EntityCollection:
    """一张实体表的描述：版式、文件名配置键、ID 字段与前缀、实体类型"""
    layout: CollectionLayout
    file_key: str
    id_field: str
    id_prefix: str
    entity_cls: Type
    kind: str
    render: Callable[[List[Dict[str, Any]]], str]


CHARACTERS = EntityCollection(
    layout=CollectionLayout(
        name="characters",
        doc_type="character-database",
        title="人物表",
        description="此文件存储书籍的人物数据，支持 Dataview 查询。",
        list_heading="人物列表",
        empty_text="_暂无人物数据_",
    ),
    file_key="characters_file",
    id_field="character_id",
    id_prefix="char",
    entity_cls=Character,
    kind="人物",
    render=render_characters,
)

STORY_UNITS = EntityCollection(
    layout=CollectionLayout(
        name="story_units",
        doc_type="story-unit-database",
        title="故事单元表",
        description="此文件存储书籍的故事单元数据，支持 Dataview 查询。",
        list_heading="故事单元列表",
        empty_text="_暂无故事单元数据_",
    ),
    file_key="story_units_file",
    id_field="unit_id",
    id_prefix="unit",
    entity_cls=StoryUnit,
    kind="故事单元",
    render=render_story_units,
)

EVENTS = EntityCollection(
    layout=CollectionLayout(
        name="events",
        doc_type="event-database",
        title="事件表",
        description="此文件存储书籍的事件数据，用于时间轴甘特图展示。",
        list_heading="事件列表",
        empty_text="_暂无事件数据_",
    ),
    file_key="events_file",
    id_field="event_id",
    id_prefix="event",
    entity_cls=StoryEvent,
    kind="事件",
    render=render_events,
)

ENTITY_COLLECTIONS = (CHARACTERS, STORY_UNITS, EVENTS)


class BookDatabaseService:
    """
    书籍数据库仓库，四张表的唯一写入者。

    Args:
        storage (StorageAdapter): 存储适配器。
        settings (dict, optional): 存储设置，缺省项取 config.yaml 中的 storage 节。
    """

    def __init__(self, storage: StorageAdapter, settings: Optional[dict] = None):
        self.storage = storage
        self.settings = get_storage_settings({"storage": settings} if settings is not None else None)

    # --- 路径 ---

    def meta_path(self, book_path: str) -> str:
        return join_path(book_path, self.settings["meta_file"])

    def collection_path(self, book_path: str, collection: EntityCollection) -> str:
        return join_path(book_path, self.settings[collection.file_key])

    def canvas_folder(self, book_path: str) -> str:
        return join_path(book_path, self.settings["canvas_folder"])

    def story_unit_text_path(self, book_path: str, unit_id: str) -> str:
        return join_path(book_path, self.settings["story_unit_texts_folder"], f"{unit_id}.md")

    # --- 初始化与书籍元数据 ---

    def initialize_database(self, book_path: str, title: str, author: str = "", description: str = "") -> str:
        """
        初始化书籍数据库：创建元数据文件、三张空表和画布目录。
        重复调用会生成新的 book_id 并覆盖已有文档。

        Returns:
            str: 生成的 book_id。
        """
        self.storage.create_folder(book_path)
        book_id = generate_book_id(title)
        now = now_iso()

        meta = BookMeta(
            book_id=book_id,
            title=title,
            author=author or "",
            description=description or "",
            converted_at=now,
            created_at=now,
            updated_at=now,
        )
        self.storage.write(self.meta_path(book_path), render_book_meta(meta))

        for collection in ENTITY_COLLECTIONS:
            header = {
                "type": collection.layout.doc_type,
                "book_id": book_id,
                "version": DATABASE_VERSION,
                "revision": 0,
                "created_at": now,
                "updated_at": now,
            }
            self.storage.write(
                self.collection_path(book_path, collection),
                generate_collection_document(collection.layout, header, [], collection.render),
            )

        self.storage.create_folder(self.canvas_folder(book_path))
        logger.info(f"书籍数据库已在 '{book_path}' 初始化，book_id: {book_id}")
        return book_id

    def is_database_initialized(self, book_path: str) -> bool:
        return self.storage.exists(self.meta_path(book_path))

    def get_book_meta(self, book_path: str) -> Optional[BookMeta]:
        """读取书籍元数据，文件缺失或损坏时返回 None"""
        path = self.meta_path(book_path)
        if not self.storage.exists(path):
            return None
        try:
            parsed = parse_frontmatter(self.storage.read(path), strict=True)
        except (FrontmatterParseError, StorageOperationError) as e:
            logger.warning(f"书籍元数据读取失败 {path}: {e}")
            return None
        if not parsed.data.get("book_id"):
            logger.warning(f"书籍元数据缺少 book_id: {path}")
            return None
        return BookMeta.from_dict(parsed.data)

    def get_book_id(self, book_path: str) -> Optional[str]:
        meta = self.get_book_meta(book_path)
        return meta.book_id if meta else None

    def update_book_meta(self, book_path: str, patch: Dict[str, Any]) -> BookMeta:
        """
        更新书籍元数据（部分字段），book_id 与 created_at 不可修改。

        Raises:
            DatabaseNotInitializedError: 元数据文件不存在或无法解析。
        """
        meta = self.get_book_meta(book_path)
        if meta is None:
            raise DatabaseNotInitializedError(book_path)

        merged = meta.to_dict()
        for key, value in self._normalize_patch(patch).items():
            if key not in _IMMUTABLE_FIELDS:
                merged[key] = value
        merged["updated_at"] = now_iso()

        updated = BookMeta.from_dict(merged)
        self.storage.write(self.meta_path(book_path), render_book_meta(updated))
        logger.debug(f"书籍元数据已更新: {book_path}")
        return updated

    # --- 章节 ---

    def scan_chapter_files(self, book_path: str) -> List[ChapterFile]:
        """扫描书籍目录下的章节文件（跳过 _ 开头和 -管理 文件），按序号升序"""
        chapters = []
        for name in self.storage.list_files(book_path):
            if name.startswith("_") or "-管理" in name:
                continue
            match = CHAPTER_FILE_RE.match(name)
            if not match:
                continue
            chapters.append(ChapterFile(
                path=join_path(book_path, name),
                chapter_num=int(match.group(1)),
                title=match.group(2),
            ))
        chapters.sort(key=lambda c: c.chapter_num)
        return chapters

    def get_chapters(self, book_path: str) -> List[ChapterFrontmatter]:
        """读取所有章节的 Frontmatter，没有头部的章节返回默认值"""
        chapters = []
        for chapter_file in self.scan_chapter_files(book_path):
            try:
                content = self.storage.read(chapter_file.path)
            except StorageOperationError as e:
                logger.warning(f"读取章节文件失败: {e}")
                continue

            frontmatter = parse_chapter_frontmatter(content)
            if frontmatter is None:
                frontmatter = ChapterFrontmatter(
                    book_id="",
                    chapter_id=f"chapter_{chapter_file.chapter_num}",
                    chapter_num=chapter_file.chapter_num,
                    title=chapter_file.title,
                    word_count=count_words(parse_frontmatter(content).content),
                )
            chapters.append(frontmatter)

        chapters.sort(key=lambda c: c.chapter_num)
        return chapters

    def update_chapter_frontmatter(self, chapter_path: str, frontmatter: ChapterFrontmatter):
        if not self.storage.exists(chapter_path):
            raise EntityNotFoundError("章节文件", chapter_path)
        content = self.storage.read(chapter_path)
        self.storage.write(chapter_path, set_chapter_frontmatter(content, frontmatter))

    def inject_chapter_frontmatters(self, book_path: str, book_id: str) -> int:
        """
        为书籍的所有章节写入 Frontmatter，已属于该书的章节跳过。

        Returns:
            int: 实际写入的章节数量。
        """
        processed = 0
        for chapter_file in self.scan_chapter_files(book_path):
            try:
                content = self.storage.read(chapter_file.path)
                existing = parse_chapter_frontmatter(content)
                if existing and existing.book_id == book_id:
                    continue

                frontmatter = ChapterFrontmatter(
                    book_id=book_id,
                    chapter_id=f"{book_id}_chapter_{chapter_file.chapter_num}",
                    chapter_num=chapter_file.chapter_num,
                    title=chapter_file.title,
                    word_count=count_words(parse_frontmatter(content).content),
                )
                self.storage.write(chapter_file.path, set_chapter_frontmatter(content, frontmatter))
                processed += 1
            except StorageOperationError as e:
                logger.warning(f"章节 Frontmatter 写入失败，继续处理其他章节: {e}")

        logger.info(f"已为 {processed} 个章节写入 Frontmatter: {book_path}")
        return processed

    def get_chapter_content(self, book_path: str, start_chapter: int, end_chapter: int) -> str:
        """合并 [start_chapter, end_chapter] 范围内章节的正文"""
        contents = []
        for chapter_file in self.scan_chapter_files(book_path):
            if not start_chapter <= chapter_file.chapter_num <= end_chapter:
                continue
            try:
                body = parse_frontmatter(self.storage.read(chapter_file.path)).content
            except StorageOperationError as e:
                logger.warning(f"读取章节文件失败: {e}")
                continue
            contents.append(f"## 第{chapter_file.chapter_num}章 {chapter_file.title}\n\n{body}")
        return SECTION_SEPARATOR.join(contents)

    # --- 人物表 ---

    def get_characters(self, book_path: str) -> List[Character]:
        return self.list_entities(book_path, CHARACTERS)

    def get_character(self, book_path: str, character_id: str) -> Optional[Character]:
        return self.find_entity(book_path, CHARACTERS, character_id)

    def add_character(self, book_path: str, character) -> str:
        return self.add_entity(book_path, CHARACTERS, character)

    def update_character(self, book_path: str, character_id: str, patch) -> Character:
        return self.update_entity(book_path, CHARACTERS, character_id, patch)

    def delete_character(self, book_path: str, character_id: str):
        self.delete_entity(book_path, CHARACTERS, character_id)

    def get_character_story_units(self, book_path: str, character_id: str) -> List[StoryUnit]:
        return [u for u in self.get_story_units(book_path) if character_id in u.related_characters]

    # --- 故事单元表 ---

    def get_story_units(self, book_path: str) -> List[StoryUnit]:
        return self.list_entities(book_path, STORY_UNITS)

    def get_story_unit(self, book_path: str, unit_id: str) -> Optional[StoryUnit]:
        return self.find_entity(book_path, STORY_UNITS, unit_id)

    def add_story_unit(self, book_path: str, story_unit) -> str:
        return self.add_entity(book_path, STORY_UNITS, story_unit)

    def update_story_unit(self, book_path: str, unit_id: str, patch) -> StoryUnit:
        return self.update_entity(book_path, STORY_UNITS, unit_id, patch)

    def delete_story_unit(self, book_path: str, unit_id: str):
        removed = self.delete_entity(book_path, STORY_UNITS, unit_id)
        if removed.text_file_path:
            self.storage.delete(removed.text_file_path)

    def get_story_unit_full_text(self, book_path: str, unit_id: str) -> Optional[str]:
        """返回故事单元的完整正文：优先读取溢出文件，否则返回内联文本"""
        unit = self.get_story_unit(book_path, unit_id)
        if unit is None:
            return None
        if unit.text_file_path and self.storage.exists(unit.text_file_path):
            return self.storage.read(unit.text_file_path)
        return unit.text_content

    # --- 事件表 ---

    def get_events(self, book_path: str) -> List[StoryEvent]:
        return self.list_entities(book_path, EVENTS)

    def get_event(self, book_path: str, event_id: str) -> Optional[StoryEvent]:
        return self.find_entity(book_path, EVENTS, event_id)

    def add_event(self, book_path: str, event) -> str:
        return self.add_entity(book_path, EVENTS, event)

    def update_event(self, book_path: str, event_id: str, patch) -> StoryEvent:
        return self.update_entity(book_path, EVENTS, event_id, patch)

    def delete_event(self, book_path: str, event_id: str):
        self.delete_entity(book_path, EVENTS, event_id)

    def update_event_position(
        self,
        book_path: str,
        event_id: str,
        pseudo_time_order: Optional[int] = None,
        duration_span: Optional[int] = None,
        layer: Optional[int] = None,
    ) -> StoryEvent:
        """只更新事件的时间轴坐标，未给出的坐标保持不变"""
        patch = {
            "pseudo_time_order": pseudo_time_order,
            "duration_span": duration_span,
            "layer": layer,
        }
        return self.update_event(book_path, event_id, {k: v for k, v in patch.items() if v is not None})

    # --- 导出 ---

    def export_to_json(self, book_path: str) -> str:
        from services.data_exchange import DataExchangeService
        return DataExchangeService(self).export_to_json(book_path)

    def export_to_csv(self, book_path: str, table: str) -> str:
        from services.data_exchange import DataExchangeService
        return DataExchangeService(self).export_to_csv(book_path, table)

    # --- 通用集合操作 ---

    def _read_records(self, book_path: str, collection: EntityCollection) -> List[Dict[str, Any]]:
        path = self.collection_path(book_path, collection)
        if not self.storage.exists(path):
            return []
        try:
            return parse_collection_document(self.storage.read(path), collection.layout.name).records
        except (FrontmatterParseError, StorageOperationError) as e:
            logger.warning(f"{collection.kind}表读取失败，按空集合处理 {path}: {e}")
            return []

    def list_entities(self, book_path: str, collection: EntityCollection) -> List[Any]:
        return [collection.entity_cls.from_dict(r) for r in self._read_records(book_path, collection)]

    def find_entity(self, book_path: str, collection: EntityCollection, entity_id: str):
        for record in self._read_records(book_path, collection):
            if record.get(collection.id_field) == entity_id:
                return collection.entity_cls.from_dict(record)
        return None

    def _load_for_write(self, book_path: str, collection: EntityCollection) -> CollectionDocument:
        path = self.collection_path(book_path, collection)
        if not self.storage.exists(path):
            raise DatabaseNotInitializedError(book_path)
        return parse_collection_document(self.storage.read(path), collection.layout.name)

    def _commit(self, book_path: str, collection: EntityCollection,
                document: CollectionDocument, records: List[Dict[str, Any]]):
        """校验修订号后整篇写回，修订号加一"""
        path = self.collection_path(book_path, collection)
        current = read_revision(self.storage.read(path)) if self.storage.exists(path) else 0
        if current != document.revision:
            raise StaleWriteError(path, document.revision, current)

        header = dict(document.header)
        header["revision"] = document.revision + 1
        header["updated_at"] = now_iso()
        self.storage.write(path, generate_collection_document(collection.layout, header, records, collection.render))

    def add_entity(self, book_path: str, collection: EntityCollection, data) -> str:
        document = self._load_for_write(book_path, collection)
        entity = collection.entity_cls.from_dict(self._normalize_patch(data))

        existing_ids = {r.get(collection.id_field) for r in document.records}
        entity_id = generate_entity_id(collection.id_prefix)
        while entity_id in existing_ids:
            entity_id = generate_entity_id(collection.id_prefix)

        now = now_iso()
        setattr(entity, collection.id_field, entity_id)
        entity.book_id = entity.book_id or str(document.header.get("book_id", ""))
        entity.created_at = now
        entity.updated_at = now
        self._validate(collection, entity)

        overflow = self._split_overflow(book_path, entity) if collection is STORY_UNITS else None

        self._commit(book_path, collection, document, document.records + [entity.to_dict()])
        if overflow:
            self.storage.write(*overflow)
        logger.info(f"已添加{collection.kind}: {entity.name} ({entity_id})")
        return entity_id

    def update_entity(self, book_path: str, collection: EntityCollection, entity_id: str, patch):
        document = self._load_for_write(book_path, collection)
        index = self._index_of(document, collection, entity_id)

        existing = collection.entity_cls.from_dict(document.records[index])
        changes = self._normalize_patch(patch)
        merged = existing.to_dict()
        for key, value in changes.items():
            if key == collection.id_field or key in _IMMUTABLE_FIELDS:
                continue
            merged[key] = value
        merged["updated_at"] = now_iso()

        entity = collection.entity_cls.from_dict(merged)
        self._validate(collection, entity)

        overflow = None
        stale_text_file = None
        # 回传的预览文本不算替换正文
        if collection is STORY_UNITS and "text_content" in changes \
                and not (existing.text_file_path and entity.text_content == existing.text_content):
            stale_text_file = existing.text_file_path
            entity.text_file_path = None
            overflow = self._split_overflow(book_path, entity)
            if entity.text_file_path == stale_text_file:
                stale_text_file = None

        records = list(document.records)
        records[index] = entity.to_dict()
        self._commit(book_path, collection, document, records)

        if overflow:
            self.storage.write(*overflow)
        if stale_text_file:
            self.storage.delete(stale_text_file)
        logger.debug(f"已更新{collection.kind}: {entity_id}")
        return entity

    def delete_entity(self, book_path: str, collection: EntityCollection, entity_id: str):
        document = self._load_for_write(book_path, collection)
        index = self._index_of(document, collection, entity_id)

        removed = collection.entity_cls.from_dict(document.records[index])
        records = document.records[:index] + document.records[index + 1:]
        self._commit(book_path, collection, document, records)
        logger.info(f"已删除{collection.kind}: {entity_id}")
        return removed

    @staticmethod
    def _index_of(document: CollectionDocument, collection: EntityCollection, entity_id: str) -> int:
        for i, record in enumerate(document.records):
            if record.get(collection.id_field) == entity_id:
                return i
        raise EntityNotFoundError(collection.kind, entity_id)

    @staticmethod
    def _normalize_patch(data) -> Dict[str, Any]:
        """接受 dataclass 或 dict，键统一为 snake_case，嵌套 dataclass 转为字典"""
        if is_dataclass(data) and not isinstance(data, type):
            return compact(data)
        if not isinstance(data, dict):
            raise ValidationError(f"不支持的数据类型: {type(data).__name__}")
        return {key: compact(value) for key, value in normalize_keys(data).items()}

    @staticmethod
    def _validate(collection: EntityCollection, entity):
        if not entity.name or not str(entity.name).strip():
            raise ValidationError(f"{collection.kind}名称不能为空")

        if isinstance(entity, Character):
            if entity.role not in CHARACTER_ROLES:
                raise ValidationError(f"未知的人物角色: {entity.role}")
            if entity.source not in DATA_SOURCES:
                raise ValidationError(f"未知的数据来源: {entity.source}")
        elif isinstance(entity, StoryUnit):
            entity.chapter_range.validate()
            if entity.line_type not in LINE_TYPES:
                raise ValidationError(f"未知的故事线类型: {entity.line_type}")
            if entity.analysis_template not in ANALYSIS_TEMPLATES:
                raise ValidationError(f"未知的分析模板: {entity.analysis_template}")
            if entity.precise_range is not None and not entity.precise_range.is_valid():
                raise ValidationError("精确范围的结束位置早于开始位置")
        elif isinstance(entity, StoryEvent):
            entity.chapter_range.validate()

    def _split_overflow(self, book_path: str, unit: StoryUnit) -> Optional[Tuple[str, str]]:
        """
        正文超过阈值时内联字段只保留预览，返回待写入的 (溢出文件路径, 完整正文)。
        溢出文件在集合文档提交成功后才写入。
        """
        threshold = int(self.settings["overflow_threshold"])
        text = unit.text_content
        if not text or len(text) <= threshold:
            return None

        path = self.story_unit_text_path(book_path, unit.unit_id)
        unit.text_file_path = path
        unit.text_content = text[:int(self.settings["preview_length"])] + "..."
        logger.debug(f"故事单元正文过长，将写入溢出文件: {base_name(path)}")
        return path, text
