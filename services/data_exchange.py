"""
数据导入导出服务 (Data Exchange Service)
- 导出：整书 JSON 快照（snake_case 键）、按表导出 CSV（多值字段以 "; " 连接）。
- 导入：JSON 快照或单表 CSV，按名称匹配已有记录，
  依据冲突策略 skip / overwrite / merge 处理；单条记录失败不会中断整批导入。
"""
import io
import json
import logging
from typing import Any, Callable, Dict, List, Optional

import pandas as pd

from core.exceptions import ValidationError
from core.schemas import (
    DATABASE_VERSION,
    DEFAULT_EVENT_COLOR,
    BookMeta,
    ImportOptions,
    ImportResult,
    normalize_keys,
    now_iso,
)
from services.book_database import (
    CHARACTERS,
    EVENTS,
    STORY_UNITS,
    BookDatabaseService,
    EntityCollection,
)

logger = logging.getLogger(__name__)

LIST_SEPARATOR = "; "

CSV_HEADERS = {
    "characters": [
        "character_id", "book_id", "name", "aliases", "role", "tags",
        "ai_description", "ai_motivation", "ai_growth_arc",
        "first_appearance_chapter", "appearance_chapters", "source",
        "created_at", "updated_at",
    ],
    "story_units": [
        "unit_id", "book_id", "name", "chapter_start", "chapter_end",
        "line_type", "custom_line_type", "categories", "related_characters",
        "analysis_template", "source", "created_at", "updated_at",
    ],
    "events": [
        "event_id", "book_id", "story_unit_id", "name", "description",
        "pseudo_time_order", "duration_span", "layer", "color",
        "chapter_start", "chapter_end", "created_at", "updated_at",
    ],
    "chapters": [
        "chapter_id", "book_id", "chapter_num", "title", "word_count",
        "ai_summary", "ai_key_events", "read_status", "read_at",
    ],
}

IMPORTABLE_TABLES = ("characters", "story_units", "events")

# 导入时不会从外部数据覆盖的字段
_PROTECTED_FIELDS = ("book_id", "created_at", "updated_at", "text_file_path")
_BOOK_META_PROTECTED = ("book_id", "created_at", "updated_at", "converted_at", "type", "version")
_BOOK_META_FIELDS = set(BookMeta.__dataclass_fields__) - {"custom_fields"}


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return LIST_SEPARATOR.join(str(v) for v in value)
    return str(value)


def _split_list(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    items = [item.strip() for item in value.split(";")]
    return [item for item in items if item]


def _to_int(value: Optional[str], default: Optional[int] = None) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def _chapter_range(row: Dict[str, str]) -> Dict[str, int]:
    return {
        "start": _to_int(row.get("chapter_start"), 1),
        "end": _to_int(row.get("chapter_end"), 1),
    }


def _character_from_row(row: Dict[str, str]) -> Dict[str, Any]:
    chapters = _split_list(row.get("appearance_chapters")) or []
    return {
        "character_id": row.get("character_id"),
        "name": row.get("name"),
        "role": row.get("role"),
        "aliases": _split_list(row.get("aliases")),
        "tags": _split_list(row.get("tags")),
        "ai_description": row.get("ai_description"),
        "ai_motivation": row.get("ai_motivation"),
        "ai_growth_arc": row.get("ai_growth_arc"),
        "first_appearance_chapter": _to_int(row.get("first_appearance_chapter")),
        "appearance_chapters": [c for c in (_to_int(v) for v in chapters) if c is not None],
        "source": row.get("source"),
    }


def _story_unit_from_row(row: Dict[str, str]) -> Dict[str, Any]:
    return {
        "unit_id": row.get("unit_id"),
        "name": row.get("name"),
        "chapter_range": _chapter_range(row),
        "line_type": row.get("line_type"),
        "custom_line_type": row.get("custom_line_type"),
        "categories": _split_list(row.get("categories")),
        "related_characters": _split_list(row.get("related_characters")),
        "analysis_template": row.get("analysis_template"),
        "source": row.get("source"),
    }


def _event_from_row(row: Dict[str, str]) -> Dict[str, Any]:
    return {
        "event_id": row.get("event_id"),
        "story_unit_id": row.get("story_unit_id"),
        "name": row.get("name"),
        "description": row.get("description"),
        "pseudo_time_order": _to_int(row.get("pseudo_time_order")),
        "duration_span": _to_int(row.get("duration_span")),
        "layer": _to_int(row.get("layer")),
        "color": row.get("color") or DEFAULT_EVENT_COLOR,
        "chapter_range": _chapter_range(row),
    }


_ROW_CONVERTERS: Dict[str, Callable[[Dict[str, str]], Dict[str, Any]]] = {
    "characters": _character_from_row,
    "story_units": _story_unit_from_row,
    "events": _event_from_row,
}


class DataExchangeService:
    """
    导入导出服务，所有写入都经由 BookDatabaseService 完成。
    """

    def __init__(self, database: BookDatabaseService):
        self.database = database

    # --- 导出 ---

    def export_to_json(self, book_path: str) -> str:
        """导出整书快照"""
        meta = self.database.get_book_meta(book_path)
        snapshot = {
            "version": DATABASE_VERSION,
            "exported_at": now_iso(),
            "book_meta": meta.to_dict() if meta else None,
            "chapters": [c.to_dict() for c in self.database.get_chapters(book_path)],
            "characters": [c.to_dict() for c in self.database.get_characters(book_path)],
            "story_units": [u.to_dict() for u in self.database.get_story_units(book_path)],
            "events": [e.to_dict() for e in self.database.get_events(book_path)],
        }
        return json.dumps(snapshot, ensure_ascii=False, indent=2)

    def export_to_csv(self, book_path: str, table: str) -> str:
        """
        导出单表 CSV，字段含逗号、引号或换行时加引号并双写内部引号。

        Raises:
            ValidationError: 不支持的表名。
        """
        if table not in CSV_HEADERS:
            raise ValidationError(f"不支持导出的表: {table}")

        headers = CSV_HEADERS[table]
        rows = [[_cell(record.get(h)) for h in headers] for record in self._export_rows(book_path, table)]
        frame = pd.DataFrame(rows, columns=headers, dtype=str)
        text = frame.to_csv(index=False, lineterminator="\n")
        return text[:-1] if text.endswith("\n") else text

    def _export_rows(self, book_path: str, table: str) -> List[Dict[str, Any]]:
        if table == "characters":
            return [c.to_dict() for c in self.database.get_characters(book_path)]
        if table == "chapters":
            return [c.to_dict() for c in self.database.get_chapters(book_path)]

        entities = (self.database.get_story_units(book_path) if table == "story_units"
                    else self.database.get_events(book_path))
        rows = []
        for entity in entities:
            row = entity.to_dict()
            row["chapter_start"] = entity.chapter_range.start
            row["chapter_end"] = entity.chapter_range.end
            rows.append(row)
        return rows

    # --- 导入 ---

    def import_from_json(self, book_path: str, text: str, options: Optional[ImportOptions] = None) -> ImportResult:
        """
        从 JSON 快照导入。书籍未初始化且数据中带有 book_meta 时先初始化。
        整体失败（JSON 无效、无法获取书籍 ID）时 success 为 False，不会抛出异常。
        """
        options = options or ImportOptions()
        result = ImportResult()

        try:
            payload = json.loads(text)
        except ValueError as e:
            result.success = False
            result.errors.append(f"JSON 解析失败: {e}")
            return result

        if not isinstance(payload, dict):
            result.success = False
            result.errors.append("JSON 顶层必须是对象")
            return result

        payload = normalize_keys(payload)
        book_meta = payload.get("book_meta")
        try:
            initialized_now = False
            if not self.database.is_database_initialized(book_path) and isinstance(book_meta, dict):
                meta = normalize_keys(book_meta)
                self.database.initialize_database(
                    book_path,
                    title=meta.get("title") or "Imported Book",
                    author=meta.get("author") or "",
                    description=meta.get("description") or "",
                )
                initialized_now = True

            book_id = self.database.get_book_id(book_path)
            if not book_id:
                result.success = False
                result.errors.append("无法获取书籍 ID")
                return result

            if isinstance(book_meta, dict):
                self._import_book_meta(book_path, book_meta, options, result, force=initialized_now)

            for collection, key in ((CHARACTERS, "characters"), (STORY_UNITS, "story_units"), (EVENTS, "events")):
                records = payload.get(key)
                if isinstance(records, list):
                    self._import_records(book_path, book_id, collection, records, options, result)
        except Exception as e:
            logger.error(f"导入 JSON 失败 {book_path}: {e}", exc_info=True)
            result.success = False
            result.errors.append(str(e) or "导入过程中发生未知错误")

        logger.info(
            f"JSON 导入完成: 导入 {result.imported_count}, 跳过 {result.skipped_count}, 错误 {len(result.errors)}"
        )
        return result

    def import_from_csv(self, book_path: str, text: str, table: str,
                        options: Optional[ImportOptions] = None) -> ImportResult:
        """从单表 CSV 导入，列表字段以 ; 分隔"""
        options = options or ImportOptions()
        result = ImportResult()

        if table not in IMPORTABLE_TABLES:
            result.success = False
            result.errors.append(f"不支持导入的表: {table}")
            return result

        try:
            frame = pd.read_csv(io.StringIO(text or ""), dtype=str, keep_default_na=False)
        except (pd.errors.EmptyDataError, pd.errors.ParserError) as e:
            logger.warning(f"CSV 解析失败: {e}")
            frame = None

        if frame is None or frame.empty:
            result.success = False
            result.errors.append("CSV 文件为空或格式不正确")
            return result

        book_id = self.database.get_book_id(book_path)
        if not book_id:
            result.success = False
            result.errors.append("无法获取书籍 ID")
            return result

        converter = _ROW_CONVERTERS[table]
        records = []
        for row in frame.to_dict(orient="records"):
            cleaned = {str(k).strip(): (v if v != "" else None) for k, v in row.items()}
            records.append(converter(cleaned))

        collection = {"characters": CHARACTERS, "story_units": STORY_UNITS, "events": EVENTS}[table]
        try:
            self._import_records(book_path, book_id, collection, records, options, result)
        except Exception as e:
            logger.error(f"导入 CSV 失败 {book_path}: {e}", exc_info=True)
            result.success = False
            result.errors.append(str(e) or "导入过程中发生未知错误")
        return result

    def _import_book_meta(self, book_path: str, data: Dict[str, Any], options: ImportOptions,
                          result: ImportResult, force: bool = False):
        existing = self.database.get_book_meta(book_path)
        if existing and options.conflict_strategy == "skip" and not force:
            result.skipped_count += 1
            return

        patch: Dict[str, Any] = {}
        custom_fields = dict(existing.custom_fields or {}) if existing else {}
        for key, value in normalize_keys(data).items():
            if key in _BOOK_META_PROTECTED or value is None:
                continue
            if key in _BOOK_META_FIELDS:
                patch[key] = value
            elif key == "custom_fields" and isinstance(value, dict):
                custom_fields.update(value)
            elif options.auto_create_fields:
                custom_fields[key] = value
            else:
                logger.debug(f"忽略未知的书籍元数据字段: {key}")

        if custom_fields:
            patch["custom_fields"] = custom_fields
        self.database.update_book_meta(book_path, patch)
        result.imported_count += 1

    def _import_records(self, book_path: str, book_id: str, collection: EntityCollection,
                        records: List[Any], options: ImportOptions, result: ImportResult):
        existing = self.database.list_entities(book_path, collection)
        by_name = {e.name: e for e in existing}

        for raw in records:
            try:
                if not isinstance(raw, dict):
                    raise ValidationError("记录格式不正确")
                data = normalize_keys(raw)
                name = str(data.get("name") or "").strip()
                if not name:
                    result.errors.append(f"{collection.kind}名称为空，跳过")
                    result.skipped_count += 1
                    continue

                match = by_name.get(name)

                fields = {
                    k: v for k, v in data.items()
                    if k != collection.id_field and k not in _PROTECTED_FIELDS and v is not None
                }
                fields["name"] = name

                if match is not None:
                    if options.conflict_strategy == "skip":
                        result.skipped_count += 1
                        continue
                    # 带溢出文件的记录只导出了预览，不能用它覆盖已有正文
                    if data.get("text_file_path"):
                        fields.pop("text_content", None)
                    # merge 目前与 overwrite 相同：整体覆盖传入的字段
                    entity_id = getattr(match, collection.id_field)
                    updated = self.database.update_entity(book_path, collection, entity_id, fields)
                    by_name[name] = updated
                else:
                    fields["book_id"] = book_id
                    entity_id = self.database.add_entity(book_path, collection, fields)
                    created = self.database.find_entity(book_path, collection, entity_id)
                    by_name[name] = created
                result.imported_count += 1
            except Exception as e:
                logger.warning(f"导入{collection.kind}失败: {e}")
                result.errors.append(f"导入{collection.kind}失败: {e}")
