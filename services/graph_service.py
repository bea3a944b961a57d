"""
图谱业务服务 (Graph Service)
根据书籍数据库生成人物关系图、故事流图和时间轴图（NetworkX 有向图），
写入 _canvas/ 目录下的 {nodes, edges} JSON 文档，供外部可视化组件读取。

时间轴图中的节点几何与事件坐标可以互相换算，
外部拖拽节点后可通过 sync_timeline_graph_to_database 把新坐标写回事件表。
"""
import math
import logging
from typing import Any, Dict, List, Tuple, Union

import networkx as nx

from core.schemas import Character, StoryEvent, StoryUnit
from infra.storage import graph_store
from infra.storage.file_storage import join_path
from services.book_database import RELATIONSHIP_LABELS, BookDatabaseService

logger = logging.getLogger(__name__)

CHARACTER_GRAPH_FILE = "character_graph.json"
STORY_GRAPH_FILE = "story_graph.json"
TIMELINE_GRAPH_FILE = "timeline_graph.json"

# 人物关系图 / 故事流图布局
NODE_SIZE = {
    "character": (200, 100),
    "story_unit": (250, 120),
}
HORIZONTAL_SPACING = 300
VERTICAL_SPACING = 200

ROLE_ROWS = {"protagonist": 0, "antagonist": 1, "supporting": 2, "minor": 3}
LINE_ROWS = {"main": 0, "sub": 1, "independent": 2, "custom": 3}

ROLE_COLORS = {"protagonist": "1", "antagonist": "5", "supporting": "4", "minor": "6"}
RELATIONSHIP_COLORS = {"friend": "4", "enemy": "1", "family": "3", "lover": "2", "rival": "5", "custom": "6"}
LINE_COLORS = {"main": "1", "sub": "4", "independent": "3", "custom": "6"}

# 时间轴布局（像素）
TIME_UNIT_WIDTH = 100
LAYER_HEIGHT = 80
LAYER_GAP = 20
EVENT_HEIGHT = 60
MIN_EVENT_WIDTH = 80
LEFT_MARGIN = 150
TOP_MARGIN = 60

# 时间轴中非事件节点（刻度、层级标签、标题）的 ID
NON_EVENT_NODE_PREFIXES = ("scale_", "layer_label_", "timeline_title")

TimeRange = Tuple[int, int]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_time_range(events: List[StoryEvent]) -> TimeRange:
    """时间轴范围，两侧各留一个单位；没有事件时为 (0, 10)"""
    if not events:
        return 0, 10
    low = min(e.pseudo_time_order for e in events)
    high = max(e.pseudo_time_order + e.duration_span for e in events)
    return max(0, low - 1), high + 1


def event_to_node_geometry(event: StoryEvent, time_range: TimeRange) -> Dict[str, int]:
    """事件坐标 -> 时间轴节点几何 {x, y, width, height}"""
    low, _ = time_range
    return {
        "x": LEFT_MARGIN + (event.pseudo_time_order - low) * TIME_UNIT_WIDTH,
        "y": TOP_MARGIN + event.layer * (LAYER_HEIGHT + LAYER_GAP),
        "width": max(MIN_EVENT_WIDTH, event.duration_span * TIME_UNIT_WIDTH),
        "height": EVENT_HEIGHT,
    }


def node_to_event_position(node: Dict[str, Any], time_range: TimeRange) -> Dict[str, int]:
    """时间轴节点几何 -> 事件坐标 {pseudo_time_order, duration_span, layer}"""
    low, _ = time_range
    x = float(node.get("x", LEFT_MARGIN))
    y = float(node.get("y", TOP_MARGIN))
    width = float(node.get("width", TIME_UNIT_WIDTH))
    return {
        "pseudo_time_order": max(0, _round_half_up((x - LEFT_MARGIN) / TIME_UNIT_WIDTH + low)),
        "duration_span": max(1, _round_half_up(width / TIME_UNIT_WIDTH)),
        "layer": max(0, _round_half_up((y - TOP_MARGIN) / (LAYER_HEIGHT + LAYER_GAP))),
    }


class GraphService:
    """图谱生成与时间轴同步"""

    def __init__(self, database: BookDatabaseService):
        self.database = database
        self.storage = database.storage

    def graph_path(self, book_path: str, file_name: str) -> str:
        return join_path(self.database.canvas_folder(book_path), file_name)

    def load_graph(self, book_path: str, file_name: str) -> nx.DiGraph:
        return graph_store.load_graph(self.storage, self.graph_path(book_path, file_name))

    def _save(self, book_path: str, file_name: str, G: nx.DiGraph) -> nx.DiGraph:
        graph_store.save_graph(self.storage, self.graph_path(book_path, file_name), G)
        logger.debug(f"图谱统计 {file_name}: {graph_store.get_graph_stats(G)}")
        return G

    # --- 人物关系图 ---

    def generate_character_graph(self, book_path: str) -> nx.DiGraph:
        """每个人物一个节点（按角色分行），每条关系一条边，目标按 ID 或名称定位"""
        characters = self.database.get_characters(book_path)
        G = nx.DiGraph()

        rows: Dict[int, List[Character]] = {}
        for char in characters:
            rows.setdefault(ROLE_ROWS.get(char.role, 3), []).append(char)

        width, height = NODE_SIZE["character"]
        for row, members in rows.items():
            start_x = -(len(members) - 1) * HORIZONTAL_SPACING / 2
            for index, char in enumerate(members):
                G.add_node(
                    char.character_id,
                    type="character",
                    label=char.name,
                    role=char.role,
                    x=start_x + index * HORIZONTAL_SPACING,
                    y=row * VERTICAL_SPACING,
                    width=width,
                    height=height,
                    color=ROLE_COLORS.get(char.role, "6"),
                )

        by_name = {c.name: c.character_id for c in characters}
        for char in characters:
            for rel in char.relationships:
                target_id = rel.target_character_id if G.has_node(rel.target_character_id) \
                    else by_name.get(rel.target_name)
                if not target_id or target_id == char.character_id:
                    continue
                # 双向关系只保留一条边
                if G.has_edge(target_id, char.character_id):
                    continue
                label = rel.custom_type if rel.relationship_type == "custom" and rel.custom_type \
                    else RELATIONSHIP_LABELS.get(rel.relationship_type, rel.relationship_type)
                G.add_edge(
                    char.character_id,
                    target_id,
                    id=f"edge_{char.character_id}_{target_id}",
                    label=label,
                    relationship_type=rel.relationship_type,
                    color=RELATIONSHIP_COLORS.get(rel.relationship_type, "6"),
                )

        return self._save(book_path, CHARACTER_GRAPH_FILE, G)

    # --- 故事流图 ---

    def generate_story_graph(self, book_path: str) -> nx.DiGraph:
        """故事单元按故事线分行、按起始章节排序，同一故事线的相邻单元相连"""
        units = self.database.get_story_units(book_path)
        G = nx.DiGraph()

        groups: Dict[str, List[StoryUnit]] = {}
        for unit in units:
            groups.setdefault(unit.line_type, []).append(unit)

        width, height = NODE_SIZE["story_unit"]
        for line_type, members in groups.items():
            members.sort(key=lambda u: u.chapter_range.start)
            row = LINE_ROWS.get(line_type, 3)
            for index, unit in enumerate(members):
                G.add_node(
                    unit.unit_id,
                    type="story_unit",
                    label=unit.name,
                    line_type=line_type,
                    chapter_start=unit.chapter_range.start,
                    chapter_end=unit.chapter_range.end,
                    x=index * HORIZONTAL_SPACING,
                    y=row * VERTICAL_SPACING,
                    width=width,
                    height=height,
                    color=LINE_COLORS.get(line_type, "6"),
                )
            for current, following in zip(members, members[1:]):
                G.add_edge(
                    current.unit_id,
                    following.unit_id,
                    id=f"edge_{current.unit_id}_{following.unit_id}",
                    color=LINE_COLORS.get(line_type, "6"),
                )

        return self._save(book_path, STORY_GRAPH_FILE, G)

    # --- 时间轴图 ---

    def generate_timeline_graph(self, book_path: str) -> nx.DiGraph:
        """每个事件一个节点，同一故事单元内的事件按时间顺序相连"""
        events = sorted(self.database.get_events(book_path), key=lambda e: e.pseudo_time_order)
        time_range = calculate_time_range(events)
        G = nx.DiGraph()

        for event in events:
            G.add_node(
                event.event_id,
                type="event",
                label=event.name,
                color=event.color,
                story_unit_id=event.story_unit_id,
                **event_to_node_geometry(event, time_range),
            )

        by_unit: Dict[str, List[StoryEvent]] = {}
        for event in events:
            if event.story_unit_id:
                by_unit.setdefault(event.story_unit_id, []).append(event)
        for members in by_unit.values():
            for current, following in zip(members, members[1:]):
                G.add_edge(current.event_id, following.event_id, id=f"edge_{current.event_id}_{following.event_id}")

        return self._save(book_path, TIMELINE_GRAPH_FILE, G)

    def sync_timeline_graph_to_database(self, book_path: str,
                                        graph_data: Union[nx.DiGraph, Dict[str, Any]]) -> int:
        """
        把时间轴图中事件节点的几何换算为坐标，只写回发生变化的事件。

        Returns:
            int: 更新的事件数量。
        """
        if isinstance(graph_data, nx.DiGraph):
            graph_data = graph_store.graph_to_data(graph_data)

        events = {e.event_id: e for e in self.database.get_events(book_path)}
        time_range = calculate_time_range(list(events.values()))

        updated = 0
        for node in graph_data.get("nodes") or []:
            node_id = str(node.get("id", ""))
            if node_id.startswith(NON_EVENT_NODE_PREFIXES):
                continue
            event = events.get(node_id)
            if event is None:
                continue

            position = node_to_event_position(node, time_range)
            if (position["pseudo_time_order"] != event.pseudo_time_order
                    or position["duration_span"] != event.duration_span
                    or position["layer"] != event.layer):
                self.database.update_event_position(book_path, node_id, **position)
                updated += 1

        logger.info(f"时间轴同步完成，更新了 {updated} 个事件: {book_path}")
        return updated
