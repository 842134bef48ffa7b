"""
JSON serialisation / deserialisation for timetable snapshots.

Uses only the Python standard-library json module.  The docs warn that
parsing large or deeply nested JSON from untrusted sources can be expensive,
so basic structural validation is applied before domain objects are built.

Availability maps are keyed by slot ("d_<day>_<hour>") and hold one of
"open", "closed" or "occupied"; missing slots are open.

Reference: Python docs — json
https://docs.python.org/3/library/json.html
"""

from __future__ import annotations

import json
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Dict, List, Type, TypeVar

from timetable_app.models import (Block, Config, OperationMode, RetentionMode, Room,
    RunParams, ScheduleState, SchoolClass, SchoolSettings, Slot, SlotState,
    SolverParams, Teacher, Weights)
from timetable_app.solver.result import EditResult, SolveResult

T = TypeVar("T")


class ConfigError(ValueError):
    """Raised when the snapshot JSON is structurally invalid."""


def _require(obj: Dict[str, Any], key: str, ctx: str) -> Any:
    if key not in obj:
        raise ConfigError(f"Missing required key '{key}' in {ctx}")
    return obj[key]


def _as_list(obj: Any, ctx: str) -> List[Any]:
    if not isinstance(obj, list):
        raise ConfigError(f"Expected a JSON array in {ctx}, got {type(obj).__name__}")
    return obj


def _as_dict(obj: Any, ctx: str) -> Dict[str, Any]:
    if not isinstance(obj, dict):
        raise ConfigError(
            f"Expected a JSON object in {ctx}, got {type(obj).__name__}"
        )
    return obj


def _objects(obj: Any, ctx: str) -> List[Dict[str, Any]]:
    return [_as_dict(x, f"{ctx}[{i}]") for i, x in enumerate(_as_list(obj, ctx))]


def _check_unique_ids(items: list, ctx: str) -> None:
    seen: set = set()
    dupes: set = set()
    for item in items:
        item_id = getattr(item, "id", None)
        if item_id is None:
            raise ConfigError(f"Empty or missing 'id' in {ctx}")
        if item_id in seen:
            dupes.add(item_id)
        seen.add(item_id)
    if dupes:
        raise ConfigError(f"Duplicate ids in {ctx}: {sorted(dupes)}")


def _availability(raw: Any, ctx: str) -> Dict[Slot, SlotState]:
    out: Dict[Slot, SlotState] = {}
    for key, value in _as_dict(raw or {}, ctx).items():
        try:
            out[Slot.from_key(key)] = SlotState(str(value).lower())
        except ValueError as e:
            raise ConfigError(f"Bad availability entry {key!r}: {value!r} in {ctx}") from e
    return out


def _dump_availability(av: Dict[Slot, SlotState]) -> Dict[str, str]:
    # open is the default, so only the interesting slots are written
    return {s.key: st.value for s, st in sorted(av.items()) if st is not SlotState.OPEN}


def _scalars(cls: Type[T], raw: Dict[str, Any], ctx: str) -> T:
    """Build a flat dataclass of numbers, casting each value to its default's type."""
    known = {f.name: f for f in fields(cls)}
    unknown = sorted(set(raw) - set(known))
    if unknown:
        raise ConfigError(f"Unknown key(s) in {ctx}: {unknown}")
    defaults = cls()
    kwargs: Dict[str, Any] = {}
    for k, v in raw.items():
        kind = type(getattr(defaults, k))
        # int(2.7) would silently truncate
        if kind is int and isinstance(v, float) and not v.is_integer():
            raise ConfigError(f"Bad value in {ctx}: {k} must be a whole number, got {v}")
        try:
            kwargs[k] = kind(v)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Bad value in {ctx}: {e}") from e
    return cls(**kwargs)


def load_config(path: str | Path) -> Config:
    """Load and validate a Config from a JSON file."""
    with Path(path).open("r", encoding="utf-8") as f:
        raw = json.load(f)

    raw  = _as_dict(raw, "root")
    meta = _as_dict(raw.get("meta") or {}, "meta")

    settings_raw = _as_dict(raw.get("settings") or {}, "settings")
    teachers_raw = _objects(_require(raw, "teachers", "root"), "teachers")
    classes_raw  = _objects(_require(raw, "classes",  "root"), "classes")
    rooms_raw    = _objects(raw.get("rooms") or [],          "rooms")
    blocks_raw   = _objects(_require(raw, "blocks",   "root"), "blocks")
    params_raw   = _as_dict(raw.get("params") or {},         "params")

    settings = SchoolSettings(
        name         = str(settings_raw.get("name", "")),
        max_days     = int(settings_raw.get("max_days", 5)),
        max_hours    = int(settings_raw.get("max_hours", 8)),
        availability = _availability(settings_raw.get("availability"), "settings"),
    )

    teachers = [
        Teacher(
            id                = int(_require(t, "id",   f"teachers[{i}]")),
            name              = str(_require(t, "name", f"teachers[{i}]")),
            availability      = _availability(t.get("availability"), f"teachers[{i}]"),
            max_hours_per_day = int(t.get("max_hours_per_day", 8)),
        )
        for i, t in enumerate(teachers_raw)
    ]

    classes = [
        SchoolClass(
            id           = int(_require(c, "id",   f"classes[{i}]")),
            name         = str(_require(c, "name", f"classes[{i}]")),
            availability = _availability(c.get("availability"), f"classes[{i}]"),
        )
        for i, c in enumerate(classes_raw)
    ]

    rooms = [
        Room(
            id           = int(_require(r, "id",   f"rooms[{i}]")),
            name         = str(_require(r, "name", f"rooms[{i}]")),
            availability = _availability(r.get("availability"), f"rooms[{i}]"),
        )
        for i, r in enumerate(rooms_raw)
    ]

    blocks = [
        Block(
            id               = int(_require(b, "id",          f"blocks[{i}]")),
            class_id         = int(_require(b, "class_id",    f"blocks[{i}]")),
            lesson_code      = str(_require(b, "lesson_code", f"blocks[{i}]")),
            duration         = int(b.get("duration", 1)),
            teacher_ids      = [int(x) for x in _as_list(b.get("teacher_ids", []), f"blocks[{i}].teacher_ids")],
            room_ids         = [int(x) for x in _as_list(b.get("room_ids", []), f"blocks[{i}].room_ids")],
            locked           = bool(b.get("locked", False)),
            manual           = bool(b.get("manual", False)),
            group_id         = int(b.get("group_id", 0)),
            day              = int(b.get("day", 0)),
            hour             = int(b.get("hour", 0)),
            morning_priority = int(b.get("morning_priority", 0)),
        )
        for i, b in enumerate(blocks_raw)
    ]

    try:
        mode      = OperationMode(params_raw.get("mode", OperationMode.REBUILD.value))
        retention = RetentionMode(params_raw.get("retention", RetentionMode.KEEP_LOCKED.value))
    except ValueError as e:
        raise ConfigError(f"Bad value in params: {e}") from e

    params = RunParams(
        mode                  = mode,
        retention             = retention,
        weights               = _scalars(Weights,
                                         _as_dict(params_raw.get("weights") or {}, "params.weights"),
                                         "params.weights"),
        solver                = _scalars(SolverParams,
                                         _as_dict(params_raw.get("solver") or {}, "params.solver"),
                                         "params.solver"),
        minimize_working_days = bool(params_raw.get("minimize_working_days", False)),
        condense_load_limit   = int(params_raw.get("condense_load_limit", 24)),
    )

    _check_unique_ids(teachers, "teachers")
    _check_unique_ids(classes,  "classes")
    _check_unique_ids(rooms,    "rooms")
    _check_unique_ids(blocks,   "blocks")

    cfg = Config(
        meta   = meta,
        state  = ScheduleState(settings=settings, teachers=teachers, classes=classes,
                               rooms=rooms, blocks=blocks),
        params = params,
    )
    try:
        cfg.validate()
    except ValueError as e:
        raise ConfigError(str(e)) from e
    return cfg


def config_to_dict(cfg: Config) -> Dict[str, Any]:
    st = cfg.state
    return {
        "meta": cfg.meta,
        "settings": {
            "name":         st.settings.name,
            "max_days":     st.settings.max_days,
            "max_hours":    st.settings.max_hours,
            "availability": _dump_availability(st.settings.availability),
        },
        "teachers": [
            {"id": t.id, "name": t.name, "max_hours_per_day": t.max_hours_per_day,
             "availability": _dump_availability(t.availability)}
            for t in st.teachers
        ],
        "classes": [
            {"id": c.id, "name": c.name, "availability": _dump_availability(c.availability)}
            for c in st.classes
        ],
        "rooms": [
            {"id": r.id, "name": r.name, "availability": _dump_availability(r.availability)}
            for r in st.rooms
        ],
        "blocks": [asdict(b) for b in st.blocks],
        "params": {
            "mode":                  cfg.params.mode.value,
            "retention":             cfg.params.retention.value,
            "weights":               asdict(cfg.params.weights),
            "solver":                asdict(cfg.params.solver),
            "minimize_working_days": cfg.params.minimize_working_days,
            "condense_load_limit":   cfg.params.condense_load_limit,
        },
    }


def save_config(cfg: Config, path: str | Path) -> None:
    """Serialise Config to JSON, creating parent directories if needed."""
    cfg.validate()
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w", encoding="utf-8") as f:
        # ensure_ascii=False preserves accented names.
        json.dump(config_to_dict(cfg), f, ensure_ascii=False, indent=2)


def save_result(result: SolveResult | EditResult, path: str | Path) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w", encoding="utf-8") as f:
        json.dump(result.to_dict(), f, ensure_ascii=False, indent=2)
