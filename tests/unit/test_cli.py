"""Unit tests for the command-line interface."""

import json

import numpy as np
import pandas as pd
import pytest
from click.testing import CliRunner

from morphnorm.cli import cli


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def invoke(runner, args):
    return runner.invoke(cli, args, obj={})


class TestCli:
    """Tests for the CLI group."""

    def test_help_lists_commands(self, runner):
        """Test the group help lists every command."""
        result = invoke(runner, ["--help"])
        assert result.exit_code == 0
        for command in ["normalize", "rank-features", "join"]:
            assert command in result.output

    def test_version(self, runner):
        """Test the version option."""
        result = invoke(runner, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestNormalizeCommand:
    """Tests for the normalize command."""

    def test_end_to_end(self, runner, end_to_end, end_to_end_csv, tmp_path):
        """Test outputs of a centering and scaling run."""
        _, expected = end_to_end
        out_dir = tmp_path / "out"
        result = invoke(runner, [
            "normalize", "-i", str(end_to_end_csv), "-o", str(out_dir),
            "--features", "F", "--strategy", "per_batch",
            "--skip", "stabilize", "--skip", "analyze",
        ])
        assert result.exit_code == 0, result.output
        assert "Normalized 8 rows" in result.output

        normalized = pd.read_csv(out_dir / "normalized.csv")
        np.testing.assert_allclose(normalized["F"], expected["scaled"], rtol=1e-9)
        assert normalized["is_control"].tolist() == [True, True, False, False] * 2
        assert not (out_dir / "variability.csv").exists()
        assert (out_dir / "failures.csv").exists()

        report = json.loads((out_dir / "report.json").read_text())
        assert report["scaling_strategy"] == "per_batch"
        assert report["output_features"] == ["F"]
        runs = (out_dir / "runs.jsonl").read_text().splitlines()
        assert json.loads(runs[-1])["n_rows"] == 8
        assert list((out_dir / "logs").glob("normalize_*.log"))

    def test_strategy_required(self, runner, end_to_end_csv, tmp_path):
        """Test the scaling strategy has no default."""
        result = invoke(runner, [
            "normalize", "-i", str(end_to_end_csv), "-o", str(tmp_path / "out"),
        ])
        assert result.exit_code != 0
        assert "strategy" in result.output
        assert not (tmp_path / "out").exists()

    def test_config_file(self, runner, screen_csv, sample_normalization_config, tmp_path):
        """Test a YAML config drives a full run with inferred features."""
        out_dir = tmp_path / "out"
        result = invoke(runner, [
            "normalize", "-i", str(screen_csv), "-o", str(out_dir),
            "-c", str(sample_normalization_config),
        ])
        assert result.exit_code == 0, result.output

        report = json.loads((out_dir / "report.json").read_text())
        assert report["scaling_strategy"] == "pooled"
        assert report["config"]["n_workers"] == 2
        assert "Cells_BatchSensitive" in report["excluded_features"]
        assert all(f.startswith("Cells_") for f in report["input_features"])

        ranking = pd.read_csv(out_dir / "variability.csv")
        assert ranking["feature"].iloc[0] == "Cells_BatchSensitive"
        normalized = pd.read_csv(out_dir / "normalized.csv")
        assert "Cells_BatchSensitive" not in normalized.columns
        assert len(normalized) == 120

    def test_invalid_config_file(self, runner, end_to_end_csv, tmp_path):
        """Test unknown config keys are reported without a traceback."""
        config_path = tmp_path / "bad.yaml"
        config_path.write_text("scaling:\n  strategy: pooled\n  spread: mad\n")
        result = invoke(runner, [
            "normalize", "-i", str(end_to_end_csv), "-o", str(tmp_path / "out"),
            "-c", str(config_path), "--features", "F",
        ])
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output
        assert "spread" in result.output
        assert not (tmp_path / "out").exists()

    def test_feature_prefix(self, runner, screen_csv, tmp_path):
        """Test prefix selection of features."""
        out_dir = tmp_path / "out"
        result = invoke(runner, [
            "normalize", "-i", str(screen_csv), "-o", str(out_dir),
            "--feature-prefix", "Cells_Feature_", "--strategy", "pooled",
            "--threshold", "100",
        ])
        assert result.exit_code == 0, result.output
        report = json.loads((out_dir / "report.json").read_text())
        assert report["output_features"] == [f"Cells_Feature_{i}" for i in range(4)]

    def test_stage_failure_exits_nonzero(self, runner, tmp_path):
        """Test failed units under the raise policy end the command with an error."""
        path = tmp_path / "constant.csv"
        pd.DataFrame({
            "Metadata_Plate": ["P1"] * 4 + ["P2"] * 4,
            "Metadata_Compound": ["DMSO", "DMSO", "taxol", "taxol"] * 2,
            "F": [3.0, 3.0, 4.0, 5.0, 1.0, 2.0, 4.0, 5.0],
        }).to_csv(path, index=False)

        args = [
            "normalize", "-i", str(path), "--features", "F", "--strategy", "per_batch",
            "--skip", "analyze",
        ]
        result = invoke(runner, args + ["-o", str(tmp_path / "raise")])
        assert result.exit_code == 1
        assert "DegenerateSpread" in result.output

        result = invoke(runner, args + ["-o", str(tmp_path / "drop"), "--on-failure", "drop"])
        assert result.exit_code == 0, result.output
        assert "Dropped (failed): F" in result.output
        failures = pd.read_csv(tmp_path / "drop" / "failures.csv")
        assert failures["kind"].tolist() == ["DegenerateSpread"]

    def test_missing_column(self, runner, end_to_end_csv, tmp_path):
        """Test a missing batch column is reported."""
        result = invoke(runner, [
            "normalize", "-i", str(end_to_end_csv), "-o", str(tmp_path / "out"),
            "--features", "F", "--strategy", "pooled", "--batch-key", "Metadata_Batch",
        ])
        assert result.exit_code == 1
        assert "Metadata_Batch" in result.output


class TestRankFeaturesCommand:
    """Tests for the rank-features command."""

    def test_rank_features(self, runner, screen_csv, tmp_path):
        """Test the ranking file and printed summary."""
        out_path = tmp_path / "ranking.csv"
        result = invoke(runner, ["rank-features", "-i", str(screen_csv), "-o", str(out_path)])
        assert result.exit_code == 0, result.output
        assert "Cells_BatchSensitive" in result.output

        ranking = pd.read_csv(out_path)
        assert list(ranking.columns) == ["rank", "feature", "batch_median_sd", "excluded"]
        assert ranking["feature"].iloc[0] == "Cells_BatchSensitive"
        assert bool(ranking["excluded"].iloc[0]) is True

    def test_rank_raw_features(self, runner, end_to_end_csv):
        """Test ranking without stabilization prints the raw statistic."""
        result = invoke(runner, [
            "rank-features", "-i", str(end_to_end_csv), "--features", "F", "--no-stabilize",
        ])
        assert result.exit_code == 0, result.output
        assert f"F: {np.std([13.0, 53.0], ddof=1):.4f} *" in result.output


class TestJoinCommand:
    """Tests for the join command."""

    def test_join(self, runner, tmp_path):
        """Test joining objects, images and ground truth."""
        pd.DataFrame({
            "TableNumber": [1, 1, 2],
            "ImageNumber": [1, 2, 1],
            "Cells_Area": [100.0, 90.0, 300.0],
        }).to_csv(tmp_path / "objects.csv", index=False)
        pd.DataFrame({
            "TableNumber": [1, 1, 2],
            "ImageNumber": [1, 2, 1],
            "Metadata_Plate": ["P1", "P1", "P2"],
            "Metadata_Compound": ["DMSO", "taxol", "taxol"],
            "Metadata_Concentration": [0.0, 1.0, 1.0],
        }).to_csv(tmp_path / "images.csv", index=False)
        pd.DataFrame({
            "compound": ["taxol"],
            "concentration": [1.0],
            "moa": ["Microtubule stabilizers"],
        }).to_csv(tmp_path / "moa.csv", index=False)

        out_path = tmp_path / "joined.csv"
        result = invoke(runner, [
            "join",
            "--objects", str(tmp_path / "objects.csv"),
            "--images", str(tmp_path / "images.csv"),
            "--ground-truth", str(tmp_path / "moa.csv"),
            "--annotation-on", "compound,concentration",
            "-o", str(out_path),
        ])
        assert result.exit_code == 0, result.output
        joined = pd.read_csv(out_path)
        assert len(joined) == 3
        assert joined["moa"].isna().tolist() == [True, False, False]

    def test_join_missing_keys(self, runner, tmp_path):
        """Test missing join keys are reported."""
        pd.DataFrame({"ImageNumber": [1]}).to_csv(tmp_path / "objects.csv", index=False)
        pd.DataFrame({"TableNumber": [1], "ImageNumber": [1]}).to_csv(
            tmp_path / "images.csv", index=False
        )
        result = invoke(runner, [
            "join",
            "--objects", str(tmp_path / "objects.csv"),
            "--images", str(tmp_path / "images.csv"),
            "-o", str(tmp_path / "joined.csv"),
        ])
        assert result.exit_code == 1
        assert "TableNumber" in result.output
