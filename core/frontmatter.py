"""
Frontmatter 解析和生成工具
提供 Markdown 文档头部元数据（受限的 YAML 风格 key: value 语法）的解析、生成和更新。

支持的值类型:
- 字符串 / 数字 / 布尔 / null
- 标量数组，行内格式 [a, b, c]，或块格式（裸 key: 后接 - item 行）
- 嵌套对象，以单行 JSON 表示
"""
import json
import re
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from core.exceptions import FrontmatterParseError

logger = logging.getLogger(__name__)

FRONTMATTER_DELIMITER = "---"

_INT_RE = re.compile(r"^-?\d+$")
_FLOAT_RE = re.compile(r"^-?(\d+\.\d*|\.\d+|\d+)([eE][-+]?\d+)?$")
_RESERVED_WORDS = {"true", "false", "null", "~"}
_SPECIAL_CHARS = (":", "#", '"', "'", "\n", "\r", "\t")
_LIST_SPECIAL_CHARS = (",", "[", "]", "{", "}")


@dataclass
class ParsedFrontmatter:
    """解析结果"""
    data: Dict[str, Any] = field(default_factory=dict)
    content: str = ""
    has_frontmatter: bool = False


# --- 解析 ---

def parse_frontmatter(text: str, strict: bool = False) -> ParsedFrontmatter:
    """
    解析文档的 Frontmatter。

    Args:
        text (str): 文档完整内容。
        strict (bool): 头部未闭合时是否抛出 FrontmatterParseError。

    Returns:
        ParsedFrontmatter: 头部数据、正文（不含头部）及是否存在头部。
    """
    if text is None:
        return ParsedFrontmatter(content="")

    lines = text.lstrip("\ufeff").lstrip("\r\n").split("\n")
    if not lines or lines[0].rstrip() != FRONTMATTER_DELIMITER:
        return ParsedFrontmatter(data={}, content=text, has_frontmatter=False)

    closing_index = None
    for i in range(1, len(lines)):
        if lines[i].rstrip() == FRONTMATTER_DELIMITER:
            closing_index = i
            break

    if closing_index is None:
        if strict:
            raise FrontmatterParseError("Frontmatter 缺少结束分隔符")
        return ParsedFrontmatter(data={}, content=text, has_frontmatter=False)

    header_lines = [line.rstrip("\r") for line in lines[1:closing_index]]
    body = "\n".join(lines[closing_index + 1:]).strip("\r\n")

    data = _parse_yaml_like(header_lines, strict=strict)
    return ParsedFrontmatter(data=data, content=body, has_frontmatter=True)


def _parse_yaml_like(lines: List[str], strict: bool = False) -> Dict[str, Any]:
    """简单的 YAML 风格解析器，只处理 key: value、块数组和单行 JSON"""
    result: Dict[str, Any] = {}
    current_key = ""
    current_list: Optional[List[Any]] = None

    for line in lines:
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("#"):
            continue

        # 块数组项
        if trimmed == "-" or trimmed.startswith("- "):
            if current_list is not None:
                current_list.append(parse_value(trimmed[1:].strip()))
            elif strict:
                raise FrontmatterParseError(f"孤立的数组项: {trimmed}")
            continue

        if current_list is not None:
            result[current_key] = current_list
            current_list = None

        colon_index = trimmed.find(":")
        if colon_index <= 0:
            if strict:
                raise FrontmatterParseError(f"无法解析的 Frontmatter 行: {trimmed}")
            logger.debug(f"跳过无法解析的 Frontmatter 行: {trimmed}")
            continue

        key = trimmed[:colon_index].strip()
        value_str = trimmed[colon_index + 1:].strip()

        if not value_str:
            # 可能是块数组的开始
            current_key = key
            current_list = []
        else:
            result[key] = parse_value(value_str)

    if current_list is not None:
        result[current_key] = current_list

    return result


def parse_value(value_str: str) -> Any:
    """解析单个值"""
    if len(value_str) >= 2 and value_str.startswith('"') and value_str.endswith('"'):
        try:
            return json.loads(value_str)
        except ValueError:
            return value_str[1:-1]

    if len(value_str) >= 2 and value_str.startswith("'") and value_str.endswith("'"):
        return value_str[1:-1].replace("''", "'")

    if value_str == "true":
        return True
    if value_str == "false":
        return False
    if value_str in ("null", "~"):
        return None

    if _INT_RE.match(value_str):
        return int(value_str)
    if _FLOAT_RE.match(value_str):
        return float(value_str)

    if value_str.startswith("{") and value_str.endswith("}"):
        try:
            return json.loads(value_str)
        except ValueError:
            return value_str

    if value_str.startswith("[") and value_str.endswith("]"):
        try:
            return json.loads(value_str)
        except ValueError:
            inner = value_str[1:-1]
            if not inner.strip():
                return []
            return [parse_value(item.strip()) for item in _split_inline_items(inner)]

    return value_str


def _split_inline_items(inner: str) -> List[str]:
    """按逗号切分行内数组，忽略双引号内的逗号"""
    items: List[str] = []
    current = []
    in_quotes = False
    escaped = False

    for char in inner:
        if escaped:
            current.append(char)
            escaped = False
            continue
        if char == "\\" and in_quotes:
            current.append(char)
            escaped = True
            continue
        if char == '"':
            in_quotes = not in_quotes
            current.append(char)
            continue
        if char == "," and not in_quotes:
            items.append("".join(current))
            current = []
            continue
        current.append(char)

    items.append("".join(current))
    return items


# --- 生成 ---

def generate_frontmatter(data: Dict[str, Any]) -> str:
    """
    生成 Frontmatter 字符串（包含首尾分隔符）。
    值为 None 的字段不会输出。
    """
    lines = [FRONTMATTER_DELIMITER]
    for key, value in data.items():
        if value is None:
            continue
        lines.append(f"{key}: {format_value(value)}")
    lines.append(FRONTMATTER_DELIMITER)
    return "\n".join(lines)


def format_value(value: Any, in_list: bool = False) -> str:
    """格式化值为 YAML 风格文本"""
    if value is None:
        return "null"

    if isinstance(value, bool):
        return "true" if value else "false"

    if isinstance(value, (int, float)):
        if isinstance(value, float) and (value != value or value in (float("inf"), float("-inf"))):
            return json.dumps(str(value))
        return repr(value)

    if isinstance(value, str):
        if _needs_quotes(value, in_list):
            return json.dumps(value, ensure_ascii=False)
        return value

    if isinstance(value, (list, tuple)):
        if not value:
            return "[]"
        if all(_is_scalar(item) for item in value):
            return "[" + ", ".join(format_value(item, in_list=True) for item in value) + "]"
        # 含对象的数组整体走 JSON
        return json.dumps(list(value), ensure_ascii=False)

    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False)

    return format_value(str(value), in_list)


def _is_scalar(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


def _needs_quotes(value: str, in_list: bool = False) -> bool:
    if value == "":
        return True
    if value != value.strip():
        return True
    if any(ch in value for ch in _SPECIAL_CHARS):
        return True
    if in_list and any(ch in value for ch in _LIST_SPECIAL_CHARS):
        return True
    if value in _RESERVED_WORDS:
        return True
    if _INT_RE.match(value) or _FLOAT_RE.match(value):
        return True
    if value[0] in "[{-":
        return True
    return False


# --- 更新与辅助 ---

def update_frontmatter(text: str, updates: Dict[str, Any]) -> str:
    """
    更新现有文档的 Frontmatter，浅合并后重新生成头部，正文保持不变。
    """
    parsed = parse_frontmatter(text)
    merged = {**parsed.data, **updates}
    header = generate_frontmatter(merged)
    if parsed.content:
        return f"{header}\n\n{parsed.content}"
    return header


def remove_frontmatter(text: str) -> str:
    """从文档中移除 Frontmatter，返回正文"""
    return parse_frontmatter(text).content


def has_frontmatter(text: str) -> bool:
    return parse_frontmatter(text).has_frontmatter


def validate_frontmatter(data: Dict[str, Any], required_fields: List[str]) -> Tuple[bool, List[str]]:
    """检查必需字段，返回 (是否有效, 缺失字段列表)"""
    missing = [f for f in required_fields if data.get(f) in (None, "")]
    return len(missing) == 0, missing


def set_chapter_frontmatter(text: str, chapter) -> str:
    """为章节文档添加或更新 Frontmatter（ChapterFrontmatter）"""
    return update_frontmatter(text, chapter.to_frontmatter())


def parse_chapter_frontmatter(text: str):
    """
    从章节文档解析 ChapterFrontmatter。
    没有头部或缺少 book_id / chapter_id 时返回 None。
    """
    from core.schemas import ChapterFrontmatter

    parsed = parse_frontmatter(text)
    if not parsed.has_frontmatter:
        return None

    valid, _ = validate_frontmatter(parsed.data, ["book_id", "chapter_id"])
    if not valid:
        return None

    return ChapterFrontmatter.from_dict(parsed.data)
