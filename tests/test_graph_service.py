"""
图谱服务测试：时间轴几何换算、图谱生成与时间轴同步。
"""
import json

from core.schemas import StoryEvent
from infra.storage import graph_store
from services.graph_service import (
    calculate_time_range,
    event_to_node_geometry,
    node_to_event_position,
)


class TestTimelineGeometry:

    def test_time_range(self):
        assert calculate_time_range([]) == (0, 10)
        events = [
            StoryEvent(name="a", pseudo_time_order=0, duration_span=2),
            StoryEvent(name="b", pseudo_time_order=5, duration_span=3),
        ]
        assert calculate_time_range(events) == (0, 9)
        assert calculate_time_range([StoryEvent(name="c", pseudo_time_order=4)]) == (3, 6)

    def test_geometry(self):
        event = StoryEvent(name="x", pseudo_time_order=2, duration_span=3, layer=1)
        assert event_to_node_geometry(event, (1, 6)) == {"x": 250, "y": 160, "width": 300, "height": 60}

    def test_short_events_have_minimum_width(self):
        event = StoryEvent(name="x", pseudo_time_order=0, duration_span=1)
        assert event_to_node_geometry(event, (0, 2))["width"] == 100

    def test_geometry_round_trip(self):
        time_range = (2, 20)
        for order, span, layer in ((2, 1, 0), (7, 4, 3), (15, 2, 1)):
            event = StoryEvent(name="x", pseudo_time_order=order, duration_span=span, layer=layer)
            position = node_to_event_position(event_to_node_geometry(event, time_range), time_range)
            assert position == {"pseudo_time_order": order, "duration_span": span, "layer": layer}

    def test_position_snaps_and_clamps(self):
        node = {"x": 100, "y": 0, "width": 20}
        assert node_to_event_position(node, (0, 10)) == {"pseudo_time_order": 0, "duration_span": 1, "layer": 0}
        node = {"x": 300, "y": 210, "width": 250}
        assert node_to_event_position(node, (0, 10)) == {"pseudo_time_order": 2, "duration_span": 3, "layer": 2}


class TestGraphGeneration:

    def test_character_graph(self, database, graphs, storage, book):
        book_path, _ = book
        hero = database.add_character(book_path, {
            "name": "萧炎",
            "role": "protagonist",
            "relationships": [{"target_name": "药老", "relationship_type": "friend"}],
        })
        mentor = database.add_character(book_path, {
            "name": "药老",
            "relationships": [{"target_character_id": hero, "relationship_type": "friend"}],
        })

        G = graphs.generate_character_graph(book_path)
        assert set(G.nodes) == {hero, mentor}
        assert G.number_of_edges() == 1
        assert G.edges[hero, mentor]["label"] == "朋友"

        data = json.loads(storage.read(f"{book_path}/_canvas/character_graph.json"))
        assert data["edges"][0]["from_node"] == hero
        assert data["edges"][0]["to_node"] == mentor
        assert graphs.load_graph(book_path, "character_graph.json").number_of_nodes() == 2

    def test_story_graph_links_units_in_order(self, database, graphs, book):
        book_path, _ = book
        late = database.add_story_unit(book_path, {"name": "后", "chapter_range": {"start": 5, "end": 6}})
        early = database.add_story_unit(book_path, {"name": "前", "chapter_range": {"start": 1, "end": 2}})
        side = database.add_story_unit(book_path, {"name": "支线", "line_type": "sub"})

        G = graphs.generate_story_graph(book_path)
        assert list(G.edges) == [(early, late)]
        assert G.nodes[side]["line_type"] == "sub"

    def test_timeline_graph(self, database, graphs, book):
        book_path, _ = book
        unit_id = database.add_story_unit(book_path, {"name": "单元"})
        second = database.add_event(book_path, {"name": "二", "pseudo_time_order": 4, "story_unit_id": unit_id})
        first = database.add_event(book_path, {"name": "一", "pseudo_time_order": 1, "story_unit_id": unit_id})

        G = graphs.generate_timeline_graph(book_path)
        assert list(G.edges) == [(first, second)]
        assert G.nodes[first]["x"] == 250
        assert G.nodes[second]["x"] == 550


class TestTimelineSync:

    def test_sync_writes_changed_positions(self, database, graphs, book):
        book_path, _ = book
        moved = database.add_event(book_path, {"name": "移动", "pseudo_time_order": 2})
        still = database.add_event(book_path, {"name": "不动", "pseudo_time_order": 5})

        data = graph_store.graph_to_data(graphs.generate_timeline_graph(book_path))
        for node in data["nodes"]:
            if node["id"] == moved:
                node["x"] += 200
                node["y"] += 100
                node["width"] = 300
        data["nodes"].append({"id": "scale_1", "x": 0, "y": 0})

        assert graphs.sync_timeline_graph_to_database(book_path, data) == 1
        event = database.get_event(book_path, moved)
        assert (event.pseudo_time_order, event.duration_span, event.layer) == (4, 3, 1)
        assert database.get_event(book_path, still).pseudo_time_order == 5

    def test_unchanged_graph_updates_nothing(self, database, graphs, book):
        book_path, _ = book
        database.add_event(book_path, {"name": "甲", "pseudo_time_order": 3, "duration_span": 2, "layer": 1})
        G = graphs.generate_timeline_graph(book_path)
        assert graphs.sync_timeline_graph_to_database(book_path, G) == 0
