"""Unit tests for pipeline orchestration module."""

import logging

import pytest

from morphnorm.core.normalization import UnitFailure
from morphnorm.pipeline import (
    ColoredFormatter,
    InMemoryExecutor,
    PipelineLogger,
    Stage,
)


def _noop(**kwargs):
    return None


class TestStage:
    """Tests for Stage dataclass."""

    def test_create_stage(self):
        """Test creating a basic stage."""
        stage = Stage(stage_id="center", func=_noop, name="Batch centering")
        assert stage.name == "Batch centering"
        assert stage.stage_id == "center"
        assert stage.depends_on == []
        assert stage.optional is False

    def test_name_defaults_to_id(self):
        """Test an empty name falls back to the stage ID."""
        assert Stage(stage_id="scale", func=_noop).name == "scale"

    def test_stage_with_dependencies(self):
        """Test stage with dependencies."""
        stage = Stage(stage_id="scale", func=_noop, depends_on=["center"])
        assert "center" in stage.depends_on

    def test_to_dict(self):
        """Test converting stage to dictionary."""
        stage = Stage(stage_id="center", func=_noop, depends_on=["analyze"], optional=True)
        d = stage.to_dict()
        assert d["stage_id"] == "center"
        assert d["func"] == "_noop"
        assert d["depends_on"] == ["analyze"]
        assert d["optional"] is True


class TestPipelineLogger:
    """Tests for PipelineLogger class."""

    def test_init(self, tmp_path):
        """Test logger initialization."""
        logger = PipelineLogger(str(tmp_path / "logs"))
        assert logger.log_dir.exists()
        assert logger.log_file.parent == logger.log_dir

    def test_console_only(self):
        """Test no log file without a log directory."""
        logger = PipelineLogger(log_name="morphnorm.test.console")
        logger.setup()
        assert logger.log_file is None
        assert len(logger.logger.handlers) == 1
        logger.close()

    def test_setup(self, tmp_path):
        """Test handler setup."""
        logger = PipelineLogger(str(tmp_path / "logs"), log_name="morphnorm.test.setup")
        logger.setup()
        assert len(logger.logger.handlers) == 2
        logger.close()
        assert logger.logger.handlers == []

    def test_unit_failures_logged(self, tmp_path):
        """Test each failed unit is written to the log."""
        logger = PipelineLogger(
            str(tmp_path / "logs"), log_name="morphnorm.test.failures", console=False
        )
        logger.setup()
        logger.log_unit_failures("scale", [
            UnitFailure("scale", "DegenerateSpread", "F", "P1", "control MAD is zero"),
        ])
        logger.log_unit_failures("scale", [])
        logger.close()

        text = logger.log_file.read_text()
        assert "Stage scale: 1 unit(s) failed" in text
        assert "[DegenerateSpread] control MAD is zero" in text

    def test_colored_formatter_leaves_record_intact(self):
        """Test coloring does not leak into other handlers."""
        formatter = ColoredFormatter("%(levelname)s %(message)s", "%H:%M:%S", PipelineLogger.COLORS)
        record = logging.makeLogRecord({"levelname": "INFO", "levelno": 20, "msg": "hello"})
        output = formatter.format(record)
        assert "\033[" in output
        assert record.levelname == "INFO"

    def test_format_duration_subsecond(self):
        """Test short stages are shown in milliseconds."""
        assert PipelineLogger.format_duration(0.35) == "350ms"

    def test_format_duration_seconds(self):
        """Test duration formatting for seconds."""
        assert PipelineLogger.format_duration(45.2) == "45.2s"

    def test_format_duration_minutes(self):
        """Test duration formatting for minutes."""
        assert PipelineLogger.format_duration(125) == "2m 5s"

    def test_format_duration_hours(self):
        """Test duration formatting for hours."""
        assert PipelineLogger.format_duration(7300) == "2h 1m"


class TestInMemoryExecutor:
    """Tests for InMemoryExecutor class."""

    def test_register_stage(self):
        """Test registering stages."""
        executor = InMemoryExecutor()
        executor.register_stage("A", lambda **k: "result_a")
        assert "A" in executor.stages
        assert isinstance(executor.stages["A"], Stage)

    def test_register_with_deps(self):
        """Test registering stage with dependencies."""
        executor = InMemoryExecutor()
        executor.register_stage("A", _noop)
        executor.register_stage("B", _noop, depends_on=["A"])
        assert executor.stages["B"].depends_on == ["A"]

    def test_register_duplicate(self):
        """Test a stage ID can only be registered once."""
        executor = InMemoryExecutor()
        executor.register_stage("A", _noop)
        with pytest.raises(ValueError, match="already registered"):
            executor.register_stage("A", _noop)

    def test_run_simple(self):
        """Test running simple pipeline."""
        executor = InMemoryExecutor()
        executor.register_stage("A", lambda **k: "a_result")
        executor.register_stage(
            "B", lambda stage_results, **k: stage_results["A"] + "_b", depends_on=["A"]
        )

        results = executor.run()
        assert results["A"] == "a_result"
        assert results["B"] == "a_result_b"
        assert executor.completed_stages == ["A", "B"]
        assert set(executor.durations) == {"A", "B"}

    def test_kwargs_passed(self):
        """Test run keyword arguments reach every stage."""
        executor = InMemoryExecutor()
        executor.register_stage("A", lambda table, **k: table * 2)
        assert executor.run(table=21)["A"] == 42

    def test_execution_order(self):
        """Test execution order with dependencies."""
        executor = InMemoryExecutor()
        order = []

        executor.register_stage("C", lambda **k: order.append("C"), depends_on=["B"])
        executor.register_stage("B", lambda **k: order.append("B"), depends_on=["A"])
        executor.register_stage("A", lambda **k: order.append("A"))

        executor.run()
        assert order == ["A", "B", "C"]

    def test_circular_dependency(self):
        """Test cycles are detected."""
        executor = InMemoryExecutor()
        executor.register_stage("A", _noop, depends_on=["B"])
        executor.register_stage("B", _noop, depends_on=["A"])
        with pytest.raises(ValueError, match="Circular"):
            executor.get_execution_order()

    def test_unknown_dependency(self):
        """Test dependencies must be registered."""
        executor = InMemoryExecutor()
        executor.register_stage("A", _noop, depends_on=["missing"])
        with pytest.raises(ValueError, match="unknown stage"):
            executor.run()

    def test_skip_optional(self):
        """Test optional stages can be skipped."""
        executor = InMemoryExecutor()
        executor.register_stage("A", lambda **k: "a", optional=True)
        executor.register_stage("B", lambda stage_results, **k: stage_results["A"], depends_on=["A"])
        results = executor.run(skip=["A"])
        assert results == {"A": None, "B": None}
        assert executor.skipped_stages == ["A"]
        assert executor.completed_stages == ["B"]

    def test_skip_required_rejected(self):
        """Test non-optional stages cannot be skipped."""
        executor = InMemoryExecutor()
        executor.register_stage("A", _noop)
        with pytest.raises(ValueError, match="not optional"):
            executor.run(skip=["A"])

    def test_stage_error_propagates(self, tmp_path):
        """Test stage exceptions are logged and re-raised."""
        logger = PipelineLogger(
            str(tmp_path / "logs"), log_name="morphnorm.test.executor", console=False
        )
        logger.setup()

        def fail(**kwargs):
            raise RuntimeError("stage exploded")

        executor = InMemoryExecutor(logger)
        executor.register_stage("A", fail)
        with pytest.raises(RuntimeError, match="stage exploded"):
            executor.run()
        logger.close()

        assert executor.completed_stages == []
        assert "Stage A failed: stage exploded" in logger.log_file.read_text()
