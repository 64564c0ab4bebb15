"""
Unit tests for configuration loading and validation.
"""

import json

import pytest

from bod_analysis.config import (
    ExperimentConfig,
    FitConfig,
    PhysicalConstants,
    config_from_dict,
    load_config,
    with_fit_overrides,
)
from bod_analysis.errors import InvalidConfiguration


class TestDefaults:
    def test_defaults_are_valid(self):
        config = load_config(None)
        assert config.fit.resample_count == 1000
        assert config.fit.confidence_level == 0.95
        assert config.treatments == ("control", "paper", "plastic")
        assert config.constants.temperature_k == pytest.approx(293.15)

    @pytest.mark.parametrize(
        "changes",
        [
            {"resample_count": 0},
            {"confidence_level": 0.0},
            {"confidence_level": 1.0},
            {"initial_guess": (0.0, 0.1)},
            {"initial_guess": (0.0, float("inf"), 70.0)},
            {"min_successful": 0},
            {"n_jobs": 0},
            {"seed": -1},
            {"seed": True},
            {"seed": 1.5},
        ],
    )
    def test_invalid_fit_settings(self, changes):
        with pytest.raises(InvalidConfiguration):
            FitConfig(**changes).validate()

    def test_seed_may_be_none(self):
        FitConfig(seed=None).validate()

    def test_invalid_constants(self):
        with pytest.raises(InvalidConfiguration, match="smaller than the bottle"):
            PhysicalConstants(bottle_volume_ml=100.0, sample_volume_ml=100.0).validate()

    def test_invalid_mad_threshold(self):
        with pytest.raises(InvalidConfiguration):
            ExperimentConfig(mad_threshold=-1.0).validate()


class TestLoading:
    def test_load_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "constants": {"temperature_c": 25.0},
            "fit": {"initial_guess": [1.0, 0.2, 60.0], "resample_count": 250, "seed": 7},
            "exclude_reactors": ["R07", 12],
            "habitats": ["sand", "mud"],
        }))
        config = load_config(str(path))
        assert config.constants.temperature_c == 25.0
        assert config.constants.sample_volume_ml == 164.0
        assert config.fit.initial_guess == (1.0, 0.2, 60.0)
        assert config.fit.resample_count == 250
        assert config.exclude_reactors == ("R07", "12")
        assert config.habitats == ("sand", "mud")

    @pytest.mark.parametrize(
        "data",
        [
            {"fit": {"resamples": 10}},
            {"constants": {"volume": 1.0}},
            {"outliers": []},
        ],
    )
    def test_unknown_keys(self, data):
        with pytest.raises(InvalidConfiguration, match="Unknown keys"):
            config_from_dict(data)

    def test_invalid_values_rejected_on_load(self):
        with pytest.raises(InvalidConfiguration):
            config_from_dict({"fit": {"confidence_level": 1.5}})


class TestOverrides:
    def test_none_values_keep_config(self):
        config = ExperimentConfig()
        assert with_fit_overrides(config, seed=None, resample_count=None) is config

    def test_overrides_replace_fit_settings(self):
        config = with_fit_overrides(ExperimentConfig(), seed=9, resample_count=50, include_apparent=False)
        assert config.fit.seed == 9
        assert config.fit.resample_count == 50
        assert config.fit.include_apparent is False

    def test_invalid_override(self):
        with pytest.raises(InvalidConfiguration):
            with_fit_overrides(ExperimentConfig(), confidence_level=2.0)
