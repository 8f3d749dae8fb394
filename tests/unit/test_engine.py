"""
Unit tests for the diagram engine.
"""

import json
import logging

import pytest

from wbs_core import EngineSettings, HeuristicTextMeasurer, Position, parse
from wbs_core.layout import screen_top_left
from wbs_core.settings import GridSettings, HistorySettings
from wbs_backend.engine import DiagramEngine


def on_grid(value, grid=20):
    return abs(value / grid - round(value / grid)) < 1e-9


def assert_snapped(engine, node_ids):
    for node_id in node_ids:
        element = engine.get_node(node_id)
        left, top = screen_top_left(
            engine.get_position(node_id), element.width, element.height, engine.viewport
        )
        assert on_grid(left), node_id
        assert on_grid(top), node_id


def make_engine(outline_text, **settings):
    engine = DiagramEngine(settings=EngineSettings(**settings), measurer=HeuristicTextMeasurer())
    engine.build(parse(outline_text))
    return engine


class EmptyLayout:
    def place(self, nodes, edges, mode):
        return {}


class TestBuild:
    def test_elements(self, engine):
        assert [n.id for n in engine.nodes()] == ["1", "1.1", "1.1.1", "1.1.2", "1.2", "1.2.1"]
        assert [e.id for e in engine.edges()][:2] == ["1-1.1", "1.1-1.1.1"]
        assert len(engine.edges()) == 5
        assert engine.get_node("1.1").parent_id == "1"
        assert engine.get_node("1").parent_id is None

    def test_title_defaults_to_visual_root(self, engine):
        assert engine.title == "Project"
        assert engine.visual_root_id() == "1"

    def test_title_override(self, settings, outline_text):
        engine = DiagramEngine(settings=settings, measurer=HeuristicTextMeasurer())
        engine.build(parse(outline_text), title="Roadmap")
        assert engine.title == "Roadmap"

    def test_every_node_has_position_and_default_size(self, engine):
        for node in engine.nodes():
            assert engine.get_position(node.id) is not None
            assert node.width == 240
            assert node.height == 72

    def test_nothing_to_undo_after_build(self, engine):
        assert not engine.can_undo
        assert not engine.can_redo

    def test_rebuild_same_ids_keeps_positions(self, engine, outline_text):
        engine.begin_drag("1.2")
        engine.drag_by(100, 0)
        engine.end_drag()
        moved = engine.get_position("1.2")

        engine.build(parse(outline_text))

        assert engine.get_position("1.2") == moved
        assert not engine.can_undo

    def test_rebuild_with_new_node_runs_layout(self, engine, outline_text):
        engine.build(parse(outline_text + "\n  Closeout"))
        assert engine.get_position("1.3") is not None

    def test_rebuild_keeps_collapse_for_surviving_ids(self, engine, outline_text):
        engine.toggle_collapse("1.1")
        engine.build(parse(outline_text))
        assert engine.is_collapsed("1.1")

    def test_layout_mode_change_on_build(self, engine, outline_text):
        before = engine.positions()
        engine.build(parse(outline_text), layout_mode="horizontal")
        assert engine.layout_mode.value == "horizontal"
        assert engine.positions() != before

    def test_missing_layout_positions_fall_back_to_origin(self, settings, outline_text, caplog):
        engine = DiagramEngine(settings=settings, layout_adapter=EmptyLayout(), measurer=HeuristicTextMeasurer())
        with caplog.at_level(logging.WARNING):
            engine.build(parse(outline_text))
        assert all(p == Position() for p in engine.positions().values())
        assert "no position" in caplog.text

    def test_change_callback(self, engine):
        calls = []
        engine.on_change(lambda: calls.append(True))
        engine.toggle_collapse("1.1")
        assert calls


class TestGroupDrag:
    def test_group_is_node_and_subtree(self, engine):
        assert engine.drag_group("1.1") == ["1.1", "1.1.1", "1.1.2"]
        assert engine.drag_group("1.2.1") == ["1.2.1"]

    def test_group_is_selection_when_node_selected(self, engine):
        engine.select(["1.1.1", "1.2"])
        assert engine.drag_group("1.2") == ["1.1.1", "1.2"]
        assert engine.drag_group("1.1") == ["1.1", "1.1.1", "1.1.2"]

    def test_rigid_move_under_pan_and_zoom(self, engine):
        engine.set_viewport(pan_x=7, pan_y=3, zoom=1.5)
        before = engine.positions()

        engine.begin_drag("1.1")
        engine.drag_by(33, 17)

        for node_id in ("1.1", "1.1.1", "1.1.2"):
            assert engine.get_position(node_id) == Position(x=before[node_id].x + 33, y=before[node_id].y + 17)
        for node_id in ("1", "1.2", "1.2.1"):
            assert engine.get_position(node_id) == before[node_id]
        assert engine.is_dragging

    def test_drag_to_moves_anchor_center(self, engine):
        engine.begin_drag("1.2")
        engine.drag_to(500, 500)
        assert engine.get_position("1.2") == Position(x=500, y=500)

    def test_release_snaps_every_member(self, engine):
        engine.set_viewport(pan_x=7, pan_y=3, zoom=1.5)
        engine.begin_drag("1.1")
        engine.drag_by(33, 17)
        assert engine.end_drag()

        assert not engine.is_dragging
        assert_snapped(engine, ["1.1", "1.1.1", "1.1.2"])

    def test_release_records_one_entry(self, engine):
        before = engine.positions()
        engine.begin_drag("1.1")
        for step in range(1, 6):
            engine.drag_by(step * 10, step * 5)
        engine.end_drag()

        assert engine.undo()
        assert engine.positions() == before
        assert not engine.can_undo

    def test_release_without_movement_is_not_recorded(self, engine):
        engine.begin_drag("1.1")
        assert not engine.end_drag()
        assert not engine.can_undo

    def test_net_zero_drag_is_not_recorded(self, outline_text):
        engine = make_engine(outline_text, grid=GridSettings(snap_enabled=False))
        engine.begin_drag("1.1")
        engine.drag_by(10, 0)
        engine.drag_by(0, 0)
        assert not engine.end_drag()
        assert not engine.can_undo

    def test_snap_disabled_keeps_exact_position(self, outline_text):
        engine = make_engine(outline_text, grid=GridSettings(snap_enabled=False))
        engine.begin_drag("1.2")
        engine.drag_to(301.5, 222.25)
        engine.end_drag()
        assert engine.get_position("1.2") == Position(x=301.5, y=222.25)

    def test_collapsed_subtree_moves_with_parent(self, engine):
        engine.toggle_collapse("1.1")
        before = engine.positions()

        engine.begin_drag("1.1")
        engine.drag_by(40, 0)

        for node_id in ("1.1.1", "1.1.2"):
            assert engine.is_hidden(node_id)
            assert engine.get_position(node_id).x == before[node_id].x + 40
            assert engine.get_position(node_id).y == before[node_id].y

    def test_move_without_drag(self, engine):
        assert not engine.drag_to(1, 1)
        assert not engine.end_drag()

    def test_unknown_node(self, engine):
        assert not engine.begin_drag("9.9")
        assert engine.drag_group("9.9") == []


class TestUndoRedo:
    def test_undo_then_redo_restores_each_state(self, engine):
        start = engine.capture_snapshot()

        assert engine.toggle_collapse("1.1")
        assert engine.rename_node("1.2", "Delivery")
        assert engine.auto_fit("1")
        engine.begin_drag("1.2")
        engine.drag_by(55, 25)
        assert engine.end_drag()
        end = engine.capture_snapshot()

        for _ in range(4):
            assert engine.undo()
        assert not engine.undo()
        assert engine.capture_snapshot() == start

        for _ in range(4):
            assert engine.redo()
        assert not engine.redo()
        assert engine.capture_snapshot() == end

    def test_undo_rename_restores_tree(self, engine, outline_text):
        engine.rename_node("1.2", "Delivery")
        engine.undo()
        assert engine.get_node("1.2").label == "Execution"
        assert engine.outline_text == outline_text

    def test_new_action_clears_redo(self, engine):
        engine.toggle_collapse("1.1")
        engine.undo()
        assert engine.can_redo
        engine.toggle_collapse("1.2")
        assert not engine.can_redo

    def test_history_is_bounded(self, outline_text):
        engine = make_engine(outline_text, history=HistorySettings(max_history=3))
        for _ in range(5):
            engine.toggle_collapse("1.1")

        undone = 0
        while engine.undo():
            undone += 1
        assert undone == 3

    def test_undo_commits_open_drag_first(self, engine):
        before = engine.positions()
        engine.begin_drag("1.1")
        engine.drag_by(80, 40)

        assert engine.undo()
        assert not engine.is_dragging
        assert engine.positions() == before

    def test_collapse_during_drag_commits_drag_first(self, engine):
        start = engine.capture_snapshot()
        engine.begin_drag("1.1")
        engine.drag_by(100, 60)

        assert engine.toggle_collapse("1.2")
        assert not engine.is_dragging
        assert_snapped(engine, ["1.1", "1.1.1", "1.1.2"])
        assert not engine.end_drag()

        assert engine.undo()
        assert engine.is_collapsed("1.2") is False
        assert engine.undo()
        assert not engine.undo()
        assert engine.capture_snapshot() == start

    def test_rename_during_nudge_commits_nudge_first(self, engine):
        start = engine.capture_snapshot()
        engine.select(["1.2"])
        engine.handle_key_down("ArrowRight")

        assert engine.rename_node("1.1", "Design")
        assert not engine.is_nudging
        assert not engine.handle_key_up("ArrowRight")

        assert engine.undo()
        assert engine.get_node("1.1").label == "Planning"
        assert engine.undo()
        assert not engine.undo()
        assert engine.capture_snapshot() == start

    @pytest.mark.parametrize("mutate", [
        lambda e: e.auto_fit("1"),
        lambda e: e.auto_fit_all(),
        lambda e: e.resize_node("1", 300),
    ])
    def test_size_change_during_drag_is_a_separate_entry(self, engine, mutate):
        start = engine.capture_snapshot()
        engine.begin_drag("1.2")
        engine.drag_by(40, 40)

        assert mutate(engine)
        assert not engine.is_dragging

        assert engine.undo()
        assert engine.undo()
        assert not engine.undo()
        assert engine.capture_snapshot() == start

    def test_selection_is_not_history(self, engine):
        engine.select(["1.2"])
        engine.toggle_collapse("1.1")
        engine.undo()
        assert engine.selected_ids() == ["1.2"]

    def test_nothing_to_undo(self, engine):
        assert not engine.undo()
        assert not engine.redo()


class TestCollapse:
    def test_hides_descendants_and_edges(self, engine):
        assert engine.toggle_collapse("1.1")
        assert engine.hidden_ids() == {"1.1.1", "1.1.2"}
        assert "1.1.1" not in engine.visible_node_ids()
        assert all(e.target not in ("1.1.1", "1.1.2") for e in engine.visible_edges())

    def test_positions_unchanged(self, engine):
        before = engine.positions()
        engine.toggle_collapse("1")
        assert engine.positions() == before

    def test_expand_restores_visible_set(self, engine):
        visible = engine.visible_node_ids()
        engine.toggle_collapse("1.1")
        engine.toggle_collapse("1.1")
        assert engine.visible_node_ids() == visible

    def test_nested_collapse_survives_parent_toggle(self, engine):
        engine.collapse("1.1")
        engine.collapse("1")
        assert engine.visible_node_ids() == ["1"]
        engine.expand("1")
        assert engine.is_collapsed("1.1")
        assert engine.visible_node_ids() == ["1", "1.1", "1.2", "1.2.1"]

    def test_leaf_is_ignored(self, engine):
        assert not engine.toggle_collapse("1.2.1")
        assert not engine.can_undo

    def test_collapse_and_expand_are_idempotent(self, engine):
        assert engine.collapse("1.1")
        assert not engine.collapse("1.1")
        assert engine.expand("1.1")
        assert not engine.expand("1.1")

    def test_unknown_node(self, engine):
        assert not engine.toggle_collapse("9")


class TestSizes:
    def test_short_label_clamped_to_min(self, engine):
        assert engine.auto_fit("1")
        assert engine.get_node("1").width == 140
        assert engine.style_override("1").text_wrap_width == 120

    def test_long_label_clamped_to_max(self, engine):
        engine.rename_node("1.2.1", "W" * 100)
        engine.auto_fit("1.2.1")
        assert engine.get_node("1.2.1").width == 560

    def test_width_follows_measured_label(self, engine):
        engine.auto_fit("1.1.2")
        # "Identify stakeholders": 18 regular glyphs, 2 narrow, 1 space at 12px, plus padding
        assert engine.get_node("1.1.2").width == pytest.approx(12 * (18 * 0.6 + 2 * 0.3 + 0.33) + 24)

    def test_second_fit_is_a_no_op(self, engine):
        assert engine.auto_fit("1")
        assert not engine.auto_fit("1")
        engine.undo()
        assert not engine.can_undo

    def test_fit_all_is_one_action(self, engine):
        assert engine.auto_fit_all()
        assert all(engine.style_override(n.id) is not None for n in engine.nodes())
        engine.undo()
        assert all(n.width == 240 for n in engine.nodes())
        assert not engine.can_undo

    def test_resize_is_clamped(self, engine):
        engine.resize_node("1", 1000)
        assert engine.get_node("1").width == 560
        engine.resize_node("1", 10)
        assert engine.get_node("1").width == 140

    def test_reset_size(self, engine):
        engine.resize_node("1", 300)
        assert engine.reset_size("1")
        assert engine.get_node("1").width == 240
        assert engine.style_override("1") is None
        assert not engine.reset_size("1")

    def test_reset_all_sizes(self, engine):
        engine.auto_fit_all()
        assert engine.reset_all_sizes()
        assert all(n.width == 240 for n in engine.nodes())
        assert not engine.reset_all_sizes()

    def test_wrap_width_default(self, engine):
        assert engine.text_wrap_width("1") == 220
        assert engine.text_wrap_width("9") is None

    def test_unknown_node(self, engine):
        assert not engine.auto_fit("9")
        assert not engine.resize_node("9", 200)


class TestStyle:
    def test_box_width_applies_to_nodes_without_override(self, engine):
        engine.resize_node("1", 300)
        before = engine.positions()

        engine.update_style(box_width=400, box_height=100)

        assert engine.get_node("1").width == 300
        assert engine.get_node("1.1").width == 400
        assert engine.get_node("1.1").height == 100
        assert engine.positions() == before

    def test_not_undoable(self, engine):
        engine.update_style(font_size=20)
        assert engine.style.font_size == 20
        assert not engine.can_undo

    def test_out_of_range(self, engine):
        with pytest.raises(ValueError):
            engine.update_style(font_size=100)
        assert engine.style.font_size == 12


class TestNudge:
    def test_moves_selection_one_grid_step(self, engine):
        engine.select(["1.1.1"])
        start = engine.get_position("1.1.1")
        for _ in range(3):
            assert engine.handle_key_down("ArrowRight")

        assert engine.get_position("1.1.1").x == start.x + 60
        assert engine.is_nudging

    def test_release_snaps_and_records_once(self, engine):
        engine.select(["1.1.1"])
        before = engine.positions()
        for _ in range(3):
            engine.handle_key_down("ArrowDown")
        assert engine.handle_key_up("ArrowDown")

        assert_snapped(engine, ["1.1.1"])
        assert engine.undo()
        assert engine.positions() == before
        assert not engine.can_undo

    def test_release_snaps_under_pan_and_zoom(self, engine):
        engine.set_viewport(pan_x=7, pan_y=3, zoom=1.5)
        engine.select(["1.1", "1.2.1"])
        for _ in range(2):
            engine.handle_key_down("ArrowLeft")
        assert engine.handle_key_up("ArrowLeft")

        assert_snapped(engine, ["1.1", "1.2.1"])

    def test_step_is_divided_by_zoom(self, engine):
        engine.set_viewport(zoom=2)
        engine.select(["1.2"])
        start = engine.get_position("1.2")
        engine.nudge("left")
        assert engine.get_position("1.2").x == start.x - 10

    def test_large_step(self, engine):
        engine.select(["1.2"])
        start = engine.get_position("1.2")
        engine.handle_key_down("ArrowUp", shift=True)
        assert engine.get_position("1.2").y == start.y - 200

    def test_only_selected_nodes_move(self, engine):
        engine.select(["1.1"])
        child = engine.get_position("1.1.1")
        engine.nudge("right")
        assert engine.get_position("1.1.1") == child

    def test_ignored_while_typing(self, engine):
        engine.select(["1.1"])
        before = engine.positions()
        assert not engine.handle_key_down("ArrowLeft", focus_in_text_field=True)
        assert engine.positions() == before
        assert not engine.is_nudging

    def test_ignored_without_selection(self, engine):
        assert not engine.nudge("up")

    def test_other_keys(self, engine):
        engine.select(["1.1"])
        assert not engine.handle_key_down("Enter")
        assert not engine.handle_key_up("Enter")


class TestRename:
    def test_rename_updates_tree_and_outline(self, engine):
        assert engine.rename_node("1.2", "  Delivery\nphase ")
        assert engine.get_node("1.2").label == "Delivery phase"
        assert engine.tree.find("1.2").label == "Delivery phase"
        assert "  Delivery phase\n    Build A" in engine.outline_text

    def test_empty_label_ignored(self, engine):
        assert not engine.rename_node("1.2", "   ")
        assert engine.get_node("1.2").label == "Execution"
        assert not engine.can_undo

    def test_same_label_ignored(self, engine):
        assert not engine.rename_node("1.2", "Execution ")
        assert not engine.can_undo

    def test_unknown_node(self, engine):
        assert not engine.rename_node("9", "X")

    def test_size_kept(self, engine):
        engine.resize_node("1.2", 320)
        engine.rename_node("1.2", "Delivery")
        assert engine.get_node("1.2").width == 320


class TestLayout:
    def test_switch_mode(self, engine):
        before = engine.positions()
        assert engine.set_layout_mode("horizontal")
        assert engine.positions() != before
        assert engine.can_undo

    def test_same_mode_is_a_no_op(self, engine):
        assert not engine.set_layout_mode("vertical")

    def test_invalid_mode(self, engine):
        with pytest.raises(ValueError):
            engine.set_layout_mode("spiral")

    def test_reset_layout_discards_manual_positions(self, engine):
        before = engine.positions()
        engine.begin_drag("1.2")
        engine.drag_by(90, 90)
        engine.end_drag()

        assert engine.reset_layout()
        assert engine.positions() == before


class TestSelection:
    def test_unknown_ids_dropped(self, engine):
        assert engine.select(["1.1", "nope"]) == ["1.1"]

    def test_additive(self, engine):
        engine.select(["1.2"])
        assert engine.select(["1.1"], additive=True) == ["1.1", "1.2"]

    def test_toggle(self, engine):
        engine.select(["1.1"])
        engine.toggle_selection("1.1")
        assert engine.selected_ids() == []

    def test_select_all_skips_hidden(self, engine):
        engine.toggle_collapse("1.1")
        assert engine.select_all() == ["1", "1.1", "1.2", "1.2.1"]

    def test_clear(self, engine):
        engine.select_all()
        engine.clear_selection()
        assert engine.selected_ids() == []


class TestViewportAndState:
    def test_zoom_must_be_positive(self, engine):
        with pytest.raises(ValueError):
            engine.set_viewport(zoom=0)

    def test_export_before_build(self, settings):
        engine = DiagramEngine(settings=settings, measurer=HeuristicTextMeasurer())
        with pytest.raises(ValueError):
            engine.export_state()
        assert engine.get_state()["diagram"] is None

    def test_export(self, engine, outline_text):
        engine.toggle_collapse("1")
        export = engine.export_state()

        assert export.title == "Project"
        assert export.outline == outline_text
        assert export.visual_root_id == "1"
        assert export.collapsed_ids == ["1"]
        assert len(export.nodes) == 6
        assert export.bounds["width"] == 240 + 2 * 24
        assert export.bounds["height"] == 72 + 2 * 24

    def test_export_is_json_serializable(self, engine):
        engine.auto_fit("1")
        data = engine.export_state().to_json_dict()
        text = json.dumps(data)
        assert '"0"' in text
        assert data["style_overrides"]["1"] == {"width": 140, "text_wrap_width": 120}

    def test_state(self, engine):
        engine.select(["1.1"])
        state = engine.get_state()
        assert state["selected_ids"] == ["1.1"]
        assert state["visible_node_ids"][0] == "1"
        assert state["viewport"] == {"pan_x": 0.0, "pan_y": 0.0, "zoom": 1.0}
        assert state["can_undo"] is False
