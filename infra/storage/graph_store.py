"""
图谱存储管理 (Graph Store)
负责 NetworkX 图数据与 {nodes, edges} JSON 文档之间的转换、持久化和加载，
供人物关系图、故事流图、时间轴图等可视化协作者读取。
"""
import json
import logging
from typing import Any, Dict

import networkx as nx

from infra.storage.file_storage import StorageAdapter

logger = logging.getLogger(__name__)


def graph_to_data(G: nx.DiGraph) -> Dict[str, Any]:
    """把图转换为 {nodes: [{id, ...}], edges: [{id, from_node, to_node, ...}]}"""
    nodes = [{"id": node_id, **attrs} for node_id, attrs in G.nodes(data=True)]
    edges = []
    for source, target, attrs in G.edges(data=True):
        edge = {"id": attrs.get("id", f"edge_{source}_{target}"), "from_node": source, "to_node": target}
        edge.update({k: v for k, v in attrs.items() if k != "id"})
        edges.append(edge)
    return {"nodes": nodes, "edges": edges}


def data_to_graph(data: Dict[str, Any]) -> nx.DiGraph:
    """从 {nodes, edges} 字典还原图，缺少 id 的节点和端点未知的边会被忽略"""
    G = nx.DiGraph()
    for node in data.get("nodes") or []:
        if not isinstance(node, dict) or not node.get("id"):
            continue
        G.add_node(node["id"], **{k: v for k, v in node.items() if k != "id"})

    for edge in data.get("edges") or []:
        if not isinstance(edge, dict):
            continue
        source, target = edge.get("from_node"), edge.get("to_node")
        if not G.has_node(source) or not G.has_node(target):
            continue
        G.add_edge(source, target, **{k: v for k, v in edge.items() if k not in ("from_node", "to_node")})
    return G


def load_graph(storage: StorageAdapter, path: str) -> nx.DiGraph:
    """
    加载图谱文档。如果不存在或已损坏，返回一个空图。
    """
    if not storage.exists(path):
        return nx.DiGraph()
    try:
        data = json.loads(storage.read(path))
        if not isinstance(data, dict):
            raise ValueError("图谱文档顶层必须是对象")
        return data_to_graph(data)
    except ValueError as e:
        logger.error(f"加载图谱失败 {path}: {e}", exc_info=True)
        return nx.DiGraph()


def save_graph(storage: StorageAdapter, path: str, G: nx.DiGraph) -> Dict[str, Any]:
    """
    保存图谱到 JSON 文档，返回写入的数据。
    """
    data = graph_to_data(G)
    storage.write(path, json.dumps(data, ensure_ascii=False, indent=2))
    logger.info(f"图谱已保存: {path} (节点数: {G.number_of_nodes()}, 边数: {G.number_of_edges()})")
    return data


def get_graph_stats(G: nx.DiGraph) -> Dict[str, Any]:
    return {
        "node_count": G.number_of_nodes(),
        "edge_count": G.number_of_edges(),
        "density": nx.density(G) if G.number_of_nodes() > 0 else 0,
    }
