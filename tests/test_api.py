"""Tests for the public dispatch layer, events and logging setup."""
import logging

import pytest

from timetable_app.events import AttemptStarted, CollectingSink, LoggingSink, Solved, emitter
from timetable_app.logger import ROOT_LOGGER, configure_logging
from timetable_app.models import (Block, OperationMode, RunParams, ScheduleState,
    SchoolClass, SchoolSettings, SolverParams, Teacher)
from timetable_app.solver.api import edit, solve


def _state() -> ScheduleState:
    st = ScheduleState(
        settings=SchoolSettings(max_days=2, max_hours=3),
        teachers=[Teacher(id=1, name="Alice")],
        classes=[SchoolClass(id=10, name="7A")],
    )
    st.blocks = [
        Block(id=1, class_id=10, lesson_code="MAT", teacher_ids=[1], day=1, hour=1),
        Block(id=2, class_id=10, lesson_code="ENG", teacher_ids=[1], day=1, hour=2),
    ]
    return st


def _params(mode: OperationMode) -> RunParams:
    return RunParams(mode=mode, solver=SolverParams(max_time_in_seconds=5, num_workers=1))


def test_solve_dispatches_rebuild():
    sink = CollectingSink()
    result = solve(_state(), _params(OperationMode.REBUILD), sink)
    assert result.ok
    assert all(e.provenance == "rebuild" for e in result.entries)
    assert sink.of_type(Solved)


def test_solve_dispatches_best_effort():
    result = solve(_state(), _params(OperationMode.BEST_EFFORT))
    assert result.ok
    assert "unplaced_weight" in result.stats


def test_solve_rejects_edit_mode():
    with pytest.raises(ValueError, match="edit"):
        solve(_state(), _params(OperationMode.EDIT))


@pytest.mark.parametrize("strategy", ["focused", "free", "greedy"])
def test_edit_strategies(strategy):
    result = edit(_state(), 1, 2, 1, strategy, _params(OperationMode.EDIT))
    assert result.success
    assert [c.block_id for c in result.changes] == [1]


def test_edit_unknown_strategy():
    with pytest.raises(ValueError):
        edit(_state(), 1, 2, 1, "random")


def test_invalid_params_rejected():
    params = _params(OperationMode.REBUILD)
    params.solver.max_attempts = 0
    with pytest.raises(ValueError, match="max_attempts"):
        solve(_state(), params)


def test_emitter_defaults_to_logging_sink():
    assert isinstance(emitter(None), LoggingSink)
    sink = CollectingSink()
    assert emitter(sink) is sink


def test_logging_sink_writes_records(caplog):
    with caplog.at_level(logging.INFO, logger=ROOT_LOGGER):
        LoggingSink()(AttemptStarted(1, 3, "strict"))
    assert "Attempt 1/3 (strict profile)" in caplog.text


def test_configure_logging_is_repeatable(tmp_path):
    log_file = tmp_path / "logs" / "run.log"
    logger = logging.getLogger(ROOT_LOGGER)
    try:
        configure_logging("DEBUG", log_file)
        configure_logging("DEBUG", log_file)
        active = [h for h in logger.handlers if not isinstance(h, logging.NullHandler)]
        assert len(active) == 2
        logging.getLogger(f"{ROOT_LOGGER}.solver").debug("hello")
        for h in active:
            h.flush()
        assert "hello" in log_file.read_text(encoding="utf-8")
    finally:
        for h in list(logger.handlers):
            if not isinstance(h, logging.NullHandler):
                logger.removeHandler(h)
                h.close()
        logger.setLevel(logging.NOTSET)
