"""
集合文档编解码 (Collection Document)
每张"表"是一个 Markdown 文档：Frontmatter 头部 + 标题 + ```json:<集合名> 数据块 + 可读渲染。
只有 JSON 数据块会被解析，可读部分每次写入时重新生成。
"""
import json
import re
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from core.exceptions import FrontmatterParseError
from core.frontmatter import parse_frontmatter, generate_frontmatter

logger = logging.getLogger(__name__)

SECTION_SEPARATOR = "\n\n---\n\n"


@dataclass
class CollectionLayout:
    """集合文档的版式：数据块名称、文档类型与标题文字"""
    name: str
    doc_type: str
    title: str
    description: str
    list_heading: str
    empty_text: str


@dataclass
class CollectionDocument:
    header: Dict[str, Any] = field(default_factory=dict)
    records: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def revision(self) -> int:
        try:
            return int(self.header.get("revision", 0))
        except (TypeError, ValueError):
            return 0


def _block_pattern(name: str):
    return re.compile(r"```json:" + re.escape(name) + r"\n(.*?)\n```", re.DOTALL)


def parse_collection_document(text: str, name: str) -> CollectionDocument:
    """
    解析集合文档。

    Raises:
        FrontmatterParseError: 缺少 JSON 数据块，或数据块不是 JSON 数组。
    """
    parsed = parse_frontmatter(text, strict=True)
    match = _block_pattern(name).search(parsed.content)
    if not match:
        raise FrontmatterParseError(f"未找到 json:{name} 数据块")

    try:
        records = json.loads(match.group(1))
    except ValueError as e:
        raise FrontmatterParseError(f"json:{name} 数据块解析失败: {e}") from e

    if not isinstance(records, list):
        raise FrontmatterParseError(f"json:{name} 数据块必须是数组")

    return CollectionDocument(
        header=parsed.data,
        records=[r for r in records if isinstance(r, dict)],
    )


def read_revision(text: str) -> int:
    """只读取头部的修订号，文档损坏时视为 0"""
    try:
        value = parse_frontmatter(text).data.get("revision", 0)
        return int(value)
    except (TypeError, ValueError):
        return 0


def generate_collection_document(
    layout: CollectionLayout,
    header: Dict[str, Any],
    records: List[Dict[str, Any]],
    render: Optional[Callable[[List[Dict[str, Any]]], str]] = None,
) -> str:
    """生成完整的集合文档文本"""
    json_block = (
        f"```json:{layout.name}\n"
        f"{json.dumps(records, ensure_ascii=False, indent=2)}\n"
        f"```"
    )
    if records and render:
        readable = render(records)
    else:
        readable = layout.empty_text

    body = (
        f"# {layout.title}\n\n"
        f"> {layout.description}\n\n"
        f"## {layout.list_heading}\n\n"
        f"{json_block}{SECTION_SEPARATOR}{readable}\n"
    )
    return f"{generate_frontmatter(header)}\n\n{body}"
