"""
业务对象定义 (Schemas)
定义书籍数据库五张表（书籍、章节、人物、故事单元、事件）以及精确标记、导入结果的强类型数据结构。

所有对象以 snake_case 键序列化（to_dict），反序列化时同时接受 snake_case 与 camelCase 键（from_dict），
以兼容外部工具导出的数据。
"""
import re
import secrets
import string
import time
from dataclasses import dataclass, field, asdict, is_dataclass
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from core.exceptions import ValidationError
from core.positions import PrecisePosition, PreciseRange

DATABASE_VERSION = "1.0.0"
MARK_STORAGE_VERSION = "1.0.0"
DEFAULT_EVENT_COLOR = "#4ECDC4"

CHARACTER_ROLES = ("protagonist", "antagonist", "supporting", "minor")
RELATIONSHIP_TYPES = ("friend", "enemy", "family", "lover", "rival", "custom")
LINE_TYPES = ("main", "sub", "independent", "custom")
ANALYSIS_TEMPLATES = ("seven-step", "three-act", "conflict-resolution", "custom")
READING_STATUSES = ("unread", "reading", "finished")
CHAPTER_READ_STATUSES = ("unread", "reading", "read")
DATA_SOURCES = ("ai", "manual")
# orphaned 状态目前没有任何代码路径会产生
MARK_STATUSES = ("pending", "orphaned")
CONFLICT_STRATEGIES = ("skip", "overwrite", "merge")

_ID_ALPHABET = string.digits + string.ascii_lowercase
_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


# --- 通用辅助 ---

def now_iso() -> str:
    """当前 UTC 时间，毫秒精度 ISO 格式"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def now_millis() -> int:
    return int(time.time() * 1000)


def generate_entity_id(prefix: str) -> str:
    """生成 prefix_毫秒时间戳_随机串 形式的 ID"""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{prefix}_{now_millis()}_{suffix}"


def to_snake_case(key: str) -> str:
    return _CAMEL_RE.sub("_", key).lower()


def to_camel_case(key: str) -> str:
    parts = key.split("_")
    return parts[0] + "".join(p[:1].upper() + p[1:] for p in parts[1:])


def normalize_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    """把顶层 camelCase 键统一成 snake_case"""
    return {to_snake_case(k): v for k, v in data.items()}


def _get(data: Dict[str, Any], key: str, default: Any = None) -> Any:
    value = data.get(key)
    if value is None:
        value = data.get(to_camel_case(key))
    return default if value is None else value


def _str_list(value: Any) -> Optional[List[str]]:
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return None


def _int_list(value: Any) -> List[int]:
    if not isinstance(value, (list, tuple)):
        return []
    result = []
    for v in value:
        try:
            result.append(int(v))
        except (TypeError, ValueError):
            continue
    return result


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _opt_str(value: Any) -> Optional[str]:
    return str(value) if value not in (None, "") else None


def compact(value: Any) -> Any:
    """递归移除值为 None 的字段"""
    if is_dataclass(value) and not isinstance(value, type):
        value = asdict(value)
    if isinstance(value, dict):
        return {k: compact(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [compact(v) for v in value]
    return value


class _Record:
    """数据类公共序列化行为"""

    def to_dict(self) -> Dict[str, Any]:
        return compact(self)


# --- 范围 ---

@dataclass
class ChapterRange(_Record):
    """章节范围（1-based，start <= end）"""
    start: int = 1
    end: int = 1

    def validate(self):
        if self.start > self.end:
            raise ValidationError(f"章节范围不合法: {self.start} > {self.end}")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], default: int = 1) -> "ChapterRange":
        data = data or {}
        return cls(start=_to_int(data.get("start"), default), end=_to_int(data.get("end"), default))


def _precise_range(value: Any) -> Optional[PreciseRange]:
    if isinstance(value, PreciseRange):
        return value
    if isinstance(value, dict) and value.get("start") is not None:
        return PreciseRange.from_dict(value)
    return None


# --- 书籍表 ---

@dataclass
class BookMeta(_Record):
    """书籍元数据，存储在 _book_meta.md 的 Frontmatter 中"""
    book_id: str = ""
    title: str = ""
    author: str = ""
    description: str = ""
    cover_image: Optional[str] = None
    total_chapters: int = 0
    total_words: int = 0
    ai_synopsis: Optional[str] = None
    ai_writing_techniques: Optional[List[str]] = None
    ai_takeaways: Optional[List[str]] = None
    reading_status: str = "unread"
    current_chapter: int = 0
    last_read_at: Optional[str] = None
    converted_at: str = ""
    created_at: str = ""
    updated_at: str = ""
    custom_fields: Optional[Dict[str, Any]] = None

    def to_frontmatter(self) -> Dict[str, Any]:
        return {"type": "book-database", "version": DATABASE_VERSION, **self.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BookMeta":
        now = now_iso()
        custom_fields = _get(data, "custom_fields")
        return cls(
            book_id=str(_get(data, "book_id", "")),
            title=str(_get(data, "title", "")),
            author=str(_get(data, "author", "")),
            description=str(_get(data, "description", "")),
            cover_image=_opt_str(_get(data, "cover_image")),
            total_chapters=_to_int(_get(data, "total_chapters")),
            total_words=_to_int(_get(data, "total_words")),
            ai_synopsis=_opt_str(_get(data, "ai_synopsis")),
            ai_writing_techniques=_str_list(_get(data, "ai_writing_techniques")),
            ai_takeaways=_str_list(_get(data, "ai_takeaways")),
            reading_status=str(_get(data, "reading_status", "unread")),
            current_chapter=_to_int(_get(data, "current_chapter")),
            last_read_at=_opt_str(_get(data, "last_read_at")),
            converted_at=str(_get(data, "converted_at", now)),
            created_at=str(_get(data, "created_at", now)),
            updated_at=str(_get(data, "updated_at", now)),
            custom_fields=dict(custom_fields) if isinstance(custom_fields, dict) else None,
        )


# --- 章节 ---

@dataclass
class ChapterFrontmatter(_Record):
    """章节 Frontmatter，写入每个章节文档的头部"""
    book_id: str = ""
    chapter_id: str = ""
    chapter_num: int = 0
    title: str = ""
    word_count: int = 0
    ai_summary: Optional[str] = None
    ai_key_events: Optional[List[str]] = None
    read_status: str = "unread"
    read_at: Optional[str] = None

    def to_frontmatter(self) -> Dict[str, Any]:
        data = self.to_dict()
        if not self.ai_key_events:
            data.pop("ai_key_events", None)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChapterFrontmatter":
        return cls(
            book_id=str(_get(data, "book_id", "")),
            chapter_id=str(_get(data, "chapter_id", "")),
            chapter_num=_to_int(_get(data, "chapter_num")),
            title=str(_get(data, "title", "")),
            word_count=_to_int(_get(data, "word_count")),
            ai_summary=_opt_str(_get(data, "ai_summary")),
            ai_key_events=_str_list(_get(data, "ai_key_events")),
            read_status=str(_get(data, "read_status", "unread")),
            read_at=_opt_str(_get(data, "read_at")),
        )


@dataclass
class ChapterFile:
    """按 <序号>-<标题>.md 命名的章节文件"""
    path: str
    chapter_num: int
    title: str


# --- 人物表 ---

@dataclass
class RelationshipChange(_Record):
    """关系变化记录"""
    story_unit_id: str = ""
    chapter: int = 0
    description: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RelationshipChange":
        return cls(
            story_unit_id=str(_get(data, "story_unit_id", "")),
            chapter=_to_int(_get(data, "chapter")),
            description=str(_get(data, "description", "")),
        )


@dataclass
class CharacterRelationship(_Record):
    """人物关系，目标人物可以通过 ID 或名称定位"""
    target_character_id: str = ""
    target_name: str = ""
    relationship_type: str = "custom"
    custom_type: Optional[str] = None
    description: Optional[str] = None
    changes: Optional[List[RelationshipChange]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CharacterRelationship":
        changes = _get(data, "changes")
        return cls(
            target_character_id=str(_get(data, "target_character_id", "")),
            target_name=str(_get(data, "target_name", "")),
            relationship_type=str(_get(data, "relationship_type", "custom")),
            custom_type=_opt_str(_get(data, "custom_type")),
            description=_opt_str(_get(data, "description")),
            changes=[RelationshipChange.from_dict(c) for c in changes if isinstance(c, dict)]
            if isinstance(changes, list) else None,
        )


def parse_relationships(value: Any) -> List[CharacterRelationship]:
    if not isinstance(value, list):
        return []
    result = []
    for item in value:
        if isinstance(item, CharacterRelationship):
            result.append(item)
        elif isinstance(item, dict):
            result.append(CharacterRelationship.from_dict(item))
    return result


@dataclass
class Character(_Record):
    """人物，存储在 _characters.md 中"""
    character_id: str = ""
    book_id: str = ""
    name: str = ""
    aliases: Optional[List[str]] = None
    role: str = "supporting"
    tags: Optional[List[str]] = None
    ai_description: Optional[str] = None
    ai_motivation: Optional[str] = None
    ai_growth_arc: Optional[str] = None
    relationships: List[CharacterRelationship] = field(default_factory=list)
    first_appearance_chapter: int = 0
    appearance_chapters: List[int] = field(default_factory=list)
    source: str = "manual"
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Character":
        now = now_iso()
        return cls(
            character_id=str(_get(data, "character_id", "")),
            book_id=str(_get(data, "book_id", "")),
            name=str(_get(data, "name", "")),
            aliases=_str_list(_get(data, "aliases")),
            role=str(_get(data, "role", "supporting")),
            tags=_str_list(_get(data, "tags")),
            ai_description=_opt_str(_get(data, "ai_description")),
            ai_motivation=_opt_str(_get(data, "ai_motivation")),
            ai_growth_arc=_opt_str(_get(data, "ai_growth_arc")),
            relationships=parse_relationships(_get(data, "relationships")),
            first_appearance_chapter=_to_int(_get(data, "first_appearance_chapter")),
            appearance_chapters=_int_list(_get(data, "appearance_chapters")),
            source=str(_get(data, "source", "manual")),
            created_at=str(_get(data, "created_at", now)),
            updated_at=str(_get(data, "updated_at", now)),
        )


# --- 故事单元表 ---

@dataclass
class StoryUnitAnalysis(_Record):
    """故事单元的 AI 分析结果，模板相关的分节以字典保存"""
    summary: str = ""
    seven_step: Optional[Dict[str, str]] = None
    three_act: Optional[Dict[str, Any]] = None
    conflict_resolution: Optional[Dict[str, str]] = None
    custom_analysis: Optional[Dict[str, str]] = None
    techniques: Optional[List[str]] = None
    takeaways: Optional[List[str]] = None
    analyzed_at: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoryUnitAnalysis":
        def section(key):
            value = _get(data, key)
            return {to_snake_case(k): v for k, v in value.items()} if isinstance(value, dict) else None

        return cls(
            summary=str(_get(data, "summary", "")),
            seven_step=section("seven_step"),
            three_act=section("three_act"),
            conflict_resolution=section("conflict_resolution"),
            custom_analysis=section("custom_analysis"),
            techniques=_str_list(_get(data, "techniques")),
            takeaways=_str_list(_get(data, "takeaways")),
            analyzed_at=str(_get(data, "analyzed_at", now_iso())),
        )


@dataclass
class StoryUnit(_Record):
    """
    故事单元，存储在 _story_units.md 中。
    正文过长时 text_content 只保留预览，完整内容存放在 text_file_path 指向的溢出文件。
    """
    unit_id: str = ""
    book_id: str = ""
    name: str = ""
    chapter_range: ChapterRange = field(default_factory=ChapterRange)
    precise_range: Optional[PreciseRange] = None
    line_type: str = "main"
    custom_line_type: Optional[str] = None
    categories: Optional[List[str]] = None
    related_characters: List[str] = field(default_factory=list)
    text_content: Optional[str] = None
    text_file_path: Optional[str] = None
    analysis_template: str = "seven-step"
    ai_analysis: Optional[StoryUnitAnalysis] = None
    source: str = "manual"
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoryUnit":
        now = now_iso()
        chapter_range = _get(data, "chapter_range")
        analysis = _get(data, "ai_analysis")
        return cls(
            unit_id=str(_get(data, "unit_id", "")),
            book_id=str(_get(data, "book_id", "")),
            name=str(_get(data, "name", "")),
            chapter_range=chapter_range if isinstance(chapter_range, ChapterRange)
            else ChapterRange.from_dict(chapter_range, default=0),
            precise_range=_precise_range(_get(data, "precise_range")),
            line_type=str(_get(data, "line_type", "main")),
            custom_line_type=_opt_str(_get(data, "custom_line_type")),
            categories=_str_list(_get(data, "categories")),
            related_characters=_str_list(_get(data, "related_characters")) or [],
            text_content=_opt_str(_get(data, "text_content")),
            text_file_path=_opt_str(_get(data, "text_file_path")),
            analysis_template=str(_get(data, "analysis_template", "seven-step")),
            ai_analysis=analysis if isinstance(analysis, StoryUnitAnalysis)
            else StoryUnitAnalysis.from_dict(analysis) if isinstance(analysis, dict) else None,
            source=str(_get(data, "source", "manual")),
            created_at=str(_get(data, "created_at", now)),
            updated_at=str(_get(data, "updated_at", now)),
        )


# --- 事件表 ---

@dataclass
class StoryEvent(_Record):
    """事件，存储在 _events.md 中；伪时间坐标只用于时间轴布局"""
    event_id: str = ""
    book_id: str = ""
    story_unit_id: Optional[str] = None
    name: str = ""
    description: Optional[str] = None
    pseudo_time_order: int = 0
    duration_span: int = 1
    layer: int = 0
    color: str = DEFAULT_EVENT_COLOR
    chapter_range: ChapterRange = field(default_factory=ChapterRange)
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoryEvent":
        now = now_iso()
        chapter_range = _get(data, "chapter_range")
        return cls(
            event_id=str(_get(data, "event_id", "")),
            book_id=str(_get(data, "book_id", "")),
            story_unit_id=_opt_str(_get(data, "story_unit_id")),
            name=str(_get(data, "name", "")),
            description=_opt_str(_get(data, "description")),
            pseudo_time_order=_to_int(_get(data, "pseudo_time_order")),
            duration_span=max(1, _to_int(_get(data, "duration_span"), 1)),
            layer=max(0, _to_int(_get(data, "layer"))),
            color=str(_get(data, "color", DEFAULT_EVENT_COLOR)),
            chapter_range=chapter_range if isinstance(chapter_range, ChapterRange)
            else ChapterRange.from_dict(chapter_range, default=0),
            created_at=str(_get(data, "created_at", now)),
            updated_at=str(_get(data, "updated_at", now)),
        )


# --- 精确标记 ---

@dataclass
class UnpairedMark(_Record):
    """未配对的开始标记"""
    mark_id: str = ""
    book_id: str = ""
    name: str = ""
    position: PrecisePosition = field(default_factory=lambda: PrecisePosition(0, 1, 0))
    status: str = "pending"
    created_at: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UnpairedMark":
        return cls(
            mark_id=str(_get(data, "mark_id", "")),
            book_id=str(_get(data, "book_id", "")),
            name=str(_get(data, "name", "")),
            position=PrecisePosition.from_dict(_get(data, "position", {})),
            status=str(_get(data, "status", "pending")),
            created_at=str(_get(data, "created_at", now_iso())),
        )


@dataclass
class PreciseMark(_Record):
    """已配对的精确标记"""
    mark_id: str = ""
    book_id: str = ""
    name: str = ""
    range: PreciseRange = field(
        default_factory=lambda: PreciseRange(PrecisePosition(0, 1, 0), PrecisePosition(0, 1, 0))
    )
    is_paired: bool = True
    story_unit_id: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PreciseMark":
        now = now_iso()
        return cls(
            mark_id=str(_get(data, "mark_id", "")),
            book_id=str(_get(data, "book_id", "")),
            name=str(_get(data, "name", "")),
            range=PreciseRange.from_dict(_get(data, "range", {})),
            is_paired=bool(_get(data, "is_paired", True)),
            story_unit_id=_opt_str(_get(data, "story_unit_id")),
            created_at=str(_get(data, "created_at", now)),
            updated_at=str(_get(data, "updated_at", now)),
        )


@dataclass
class MarkStorage(_Record):
    """精确标记侧车文件 _precise_marks.json 的内容"""
    version: str = MARK_STORAGE_VERSION
    book_id: str = ""
    marks: List[PreciseMark] = field(default_factory=list)
    unpaired_marks: List[UnpairedMark] = field(default_factory=list)
    last_updated: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MarkStorage":
        return cls(
            version=str(_get(data, "version", MARK_STORAGE_VERSION)),
            book_id=str(_get(data, "book_id", "")),
            marks=[PreciseMark.from_dict(m) for m in _get(data, "marks", []) if isinstance(m, dict)],
            unpaired_marks=[UnpairedMark.from_dict(m) for m in _get(data, "unpaired_marks", [])
                            if isinstance(m, dict)],
            last_updated=str(_get(data, "last_updated", now_iso())),
        )


# --- 导入 ---

@dataclass
class ImportOptions:
    """
    导入选项。
    conflict_strategy 为 merge 时目前与 overwrite 行为一致。
    """
    conflict_strategy: str = "skip"
    auto_create_fields: bool = True

    def __post_init__(self):
        if self.conflict_strategy not in CONFLICT_STRATEGIES:
            raise ValidationError(f"不支持的冲突策略: {self.conflict_strategy}")


@dataclass
class ImportResult:
    """导入结果，单条记录的错误被收集到 errors 中，不会中断整批导入"""
    success: bool = True
    imported_count: int = 0
    skipped_count: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self):
        return asdict(self)
