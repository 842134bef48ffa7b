"""Tests for JSON IO."""
import json

import pytest

from timetable_app.io_json import ConfigError, load_config, save_config, save_result
from timetable_app.models import OperationMode, RetentionMode, Slot, SlotState
from timetable_app.solver.result import PlacementEntry, SolveResult


def _raw() -> dict:
    return {
        "meta": {"school": "Riverside"},
        "settings": {"name": "Riverside", "max_days": 5, "max_hours": 6,
                     "availability": {"d_5_6": "closed"}},
        "teachers": [
            {"id": 1, "name": "Novak", "max_hours_per_day": 5,
             "availability": {"d_1_1": "closed", "d_1_2": "occupied"}},
            {"id": 2, "name": "Horvat"},
        ],
        "classes": [{"id": 10, "name": "7A"}, {"id": 11, "name": "7B"}],
        "rooms":   [{"id": 100, "name": "Lab"}],
        "blocks": [
            {"id": 1, "class_id": 10, "lesson_code": "MAT", "teacher_ids": [1]},
            {"id": 2, "class_id": 11, "lesson_code": "BIO", "duration": 2,
             "teacher_ids": [2], "room_ids": [100], "day": 2, "hour": 3, "locked": True},
        ],
        "params": {"mode": "best-effort", "retention": "keep-current",
                   "weights": {"gap": 900}, "solver": {"max_time_in_seconds": 5}},
    }


def _write(tmp_path, raw) -> str:
    p = tmp_path / "school.json"
    p.write_text(json.dumps(raw), encoding="utf-8")
    return str(p)


def test_load_valid(tmp_path):
    cfg = load_config(_write(tmp_path, _raw()))
    st = cfg.state
    assert cfg.meta["school"] == "Riverside"
    assert st.settings.max_hours == 6
    assert not st.settings.is_open(5, 6)
    assert st.get_teacher(1).state_at(1, 1) is SlotState.CLOSED
    assert st.get_teacher(1).state_at(1, 2) is SlotState.OCCUPIED
    assert st.get_teacher(1).max_hours_per_day == 5
    assert st.get_block(2).slot == Slot(2, 3)
    assert st.get_block(2).locked
    assert cfg.params.mode is OperationMode.BEST_EFFORT
    assert cfg.params.retention is RetentionMode.KEEP_CURRENT
    assert cfg.params.weights.gap == 900
    assert cfg.params.weights.large_gap == 5000
    assert cfg.params.solver.max_time_in_seconds == 5.0


def test_rooms_and_params_are_optional(tmp_path):
    raw = _raw()
    del raw["rooms"], raw["params"]
    raw["blocks"][1]["room_ids"] = []
    cfg = load_config(_write(tmp_path, raw))
    assert cfg.state.rooms == []
    assert cfg.params.mode is OperationMode.REBUILD


def test_save_and_reload(tmp_path):
    cfg = load_config(_write(tmp_path, _raw()))
    out = tmp_path / "nested" / "copy.json"
    save_config(cfg, out)
    again = load_config(out)
    assert again.state.blocks == cfg.state.blocks
    assert again.state.teachers == cfg.state.teachers
    assert again.state.settings == cfg.state.settings
    assert again.params == cfg.params


def test_missing_key_raises(tmp_path):
    raw = _raw()
    del raw["blocks"]
    with pytest.raises(ConfigError, match="blocks"):
        load_config(_write(tmp_path, raw))


def test_null_meta_is_accepted(tmp_path):
    raw = _raw()
    raw["meta"] = None
    assert load_config(_write(tmp_path, raw)).meta == {}


def test_duplicate_ids(tmp_path):
    raw = _raw()
    raw["teachers"].append({"id": 1, "name": "Twin"})
    with pytest.raises(ConfigError, match="Duplicate"):
        load_config(_write(tmp_path, raw))


def test_bad_availability_value(tmp_path):
    raw = _raw()
    raw["teachers"][0]["availability"] = {"d_1_1": "maybe"}
    with pytest.raises(ConfigError, match="availability"):
        load_config(_write(tmp_path, raw))


def test_malformed_slot_key(tmp_path):
    raw = _raw()
    raw["classes"][0]["availability"] = {"monday-1": "closed"}
    with pytest.raises(ConfigError):
        load_config(_write(tmp_path, raw))


def test_unknown_weight_key(tmp_path):
    raw = _raw()
    raw["params"]["weights"] = {"happiness": 3}
    with pytest.raises(ConfigError, match="happiness"):
        load_config(_write(tmp_path, raw))


def test_unknown_teacher_reference(tmp_path):
    raw = _raw()
    raw["blocks"][0]["teacher_ids"] = [99]
    with pytest.raises(ConfigError, match="unknown teacher"):
        load_config(_write(tmp_path, raw))


def test_block_without_teacher_rejected(tmp_path):
    raw = _raw()
    raw["blocks"][0]["teacher_ids"] = []
    with pytest.raises(ConfigError, match="teachers"):
        load_config(_write(tmp_path, raw))


def test_placement_outside_grid_rejected(tmp_path):
    raw = _raw()
    raw["blocks"][1]["hour"] = 6   # 2-hour block would end at hour 7
    with pytest.raises(ConfigError, match="outside the grid"):
        load_config(_write(tmp_path, raw))


def test_negative_weight_rejected(tmp_path):
    raw = _raw()
    raw["params"]["weights"] = {"gap": -1}
    with pytest.raises(ConfigError, match="gap"):
        load_config(_write(tmp_path, raw))


def test_fractional_int_setting_rejected(tmp_path):
    raw = _raw()
    raw["params"]["weights"] = {"gap": 2.7}
    with pytest.raises(ConfigError, match="gap must be a whole number"):
        load_config(_write(tmp_path, raw))

    raw["params"]["weights"] = {"gap": 3.0}
    raw["params"]["solver"] = {"max_time_in_seconds": 2.5, "num_workers": 2.0}
    cfg = load_config(_write(tmp_path, raw))
    assert cfg.params.weights.gap == 3
    assert isinstance(cfg.params.weights.gap, int)
    assert cfg.params.solver.max_time_in_seconds == 2.5
    assert cfg.params.solver.num_workers == 2


def test_save_result(tmp_path):
    result = SolveResult(status="OPTIMAL", objective_value=12,
                         entries=[PlacementEntry(1, 10, "MAT", 1, 2, "rebuild")])
    out = tmp_path / "out" / "result.json"
    save_result(result, out)
    data = json.loads(out.read_text(encoding="utf-8"))
    assert data["status"] == "OPTIMAL"
    assert data["entries"][0]["provenance"] == "rebuild"
