"""Unit tests for normalization configuration."""

import pytest
import yaml

from morphnorm.core.normalization import (
    NormalizationConfig,
    ScalingConfig,
    StabilizationConfig,
    VariabilityConfig,
)


class TestNormalizationConfig:
    """Tests for NormalizationConfig."""

    def test_defaults(self):
        """Test documented defaults."""
        config = NormalizationConfig()
        assert config.quantile == 0.05
        assert config.stabilization.fail_on_nonfinite is False
        assert config.variability_threshold == 0.3
        assert config.variability.ddof == 1
        assert config.variability.exclude is True
        assert config.batch_key_column == "Metadata_Plate"
        assert config.control_column == "Metadata_Compound"
        assert config.control_values == ["DMSO"]
        assert config.control_flag_column == "is_control"
        assert config.scaling.mad_scale == 1.4826
        assert config.on_failure == "raise"
        assert config.n_workers == 1
        assert config.scaling_strategy is None

    def test_strategy_has_no_default(self):
        """Test validation fails until a strategy is chosen."""
        with pytest.raises(ValueError, match="strategy must be set"):
            NormalizationConfig().validate()
        NormalizationConfig(scaling_strategy="pooled").validate()

    def test_strategy_not_needed_when_scale_skipped(self):
        """Test skipping scaling makes the strategy optional."""
        NormalizationConfig(skip_stages=["scale"]).validate()

    def test_flat_shortcuts(self):
        """Test flat keyword options set the nested sections."""
        config = NormalizationConfig(
            quantile=0.1, variability_threshold=0.5, scaling_strategy="per_batch"
        )
        assert config.stabilization.quantile == 0.1
        assert config.variability.threshold == 0.5
        assert config.scaling.strategy == "per_batch"

    @pytest.mark.parametrize("kwargs, match", [
        ({"quantile": 0.0}, "quantile"),
        ({"quantile": 1.0}, "quantile"),
        ({"variability_threshold": -0.1}, "threshold"),
        ({"scaling_strategy": "global"}, "Unknown scaling strategy"),
        ({"on_failure": "ignore"}, "failure policy"),
        ({"n_workers": 0}, "n_workers"),
        ({"skip_stages": ["normalize"]}, "skip_stages"),
        ({"control_values": []}, "control_values"),
        ({"scaling": ScalingConfig(mad_scale=0.0)}, "mad_scale"),
        ({"variability": VariabilityConfig(ddof=-1)}, "ddof"),
    ])
    def test_validate_rejects(self, kwargs, match):
        """Test out-of-range parameters raise ValueError."""
        kwargs.setdefault("scaling_strategy", "pooled")
        if "scaling" in kwargs:
            kwargs["scaling"].strategy = "pooled"
        with pytest.raises(ValueError, match=match):
            NormalizationConfig(**kwargs).validate()

    def test_from_yaml(self, sample_normalization_config):
        """Test loading a nested YAML file."""
        config = NormalizationConfig.from_yaml(sample_normalization_config)
        assert config.stabilization.quantile == 0.1
        assert config.variability.threshold == 0.5
        assert config.scaling.strategy == "pooled"
        assert config.on_failure == "drop"
        assert config.n_workers == 2
        config.validate()

    def test_from_dict_flat_keys(self):
        """Test flat keys in a dictionary."""
        config = NormalizationConfig.from_dict({
            "quantile": 0.2,
            "variability_threshold": 1.0,
            "scaling_strategy": "per_batch",
            "control_values": ["DMSO", "vehicle"],
        })
        assert config.quantile == 0.2
        assert config.variability_threshold == 1.0
        assert config.scaling_strategy == "per_batch"
        assert config.control_values == ["DMSO", "vehicle"]

    def test_from_empty_yaml(self, tmp_path):
        """Test an empty file yields defaults."""
        path = tmp_path / "empty.yaml"
        path.write_text("")
        config = NormalizationConfig.from_yaml(path)
        assert config.to_dict() == NormalizationConfig.default().to_dict()

    def test_null_sections_use_defaults(self):
        """Test sections written as null in YAML fall back to defaults."""
        config = NormalizationConfig.from_dict({
            "stabilization": None,
            "variability": None,
            "scaling": {"strategy": "pooled"},
        })
        assert config.stabilization == StabilizationConfig()
        assert config.variability == VariabilityConfig()
        assert config.scaling_strategy == "pooled"

    def test_unknown_section_key_rejected(self):
        """Test unknown keys in a section raise ValueError."""
        with pytest.raises(ValueError, match="quantil"):
            NormalizationConfig.from_dict({"stabilization": {"quantil": 0.1}})

    def test_non_mapping_section_rejected(self):
        """Test a section must be a mapping."""
        with pytest.raises(ValueError, match="scaling"):
            NormalizationConfig.from_dict({"scaling": "pooled"})

    def test_to_dict_round_trip(self, tmp_path):
        """Test to_dict output loads back to the same configuration."""
        config = NormalizationConfig(
            stabilization=StabilizationConfig(quantile=0.2),
            scaling_strategy="pooled",
            skip_stages=["analyze"],
        )
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(config.to_dict()))
        assert NormalizationConfig.from_yaml(path).to_dict() == config.to_dict()

    def test_default_sections_not_shared(self):
        """Test instances do not share nested section objects."""
        first = NormalizationConfig(scaling_strategy="pooled")
        second = NormalizationConfig()
        assert second.scaling_strategy is None
        assert first.scaling is not second.scaling
