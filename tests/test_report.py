"""
End-to-end tests of the reporting pipeline and command-line entry point.
"""

import json

import numpy as np
import pandas as pd
import pytest

import bod_report
from bod_analysis.config import ExperimentConfig, FitConfig
from bod_analysis.preprocess import preprocess


@pytest.fixture
def quick_config():
    return ExperimentConfig(fit=FitConfig(resample_count=20, seed=5))


class TestFitGroups:
    def test_one_fit_per_group(self, raw_pressure, quick_config):
        obs = preprocess(raw_pressure, quick_config)
        fits = bod_report.fit_groups(obs, quick_config.fit)
        assert [(f.habitat, f.treatment) for f in fits] == [("sand", "control"), ("sand", "paper"), ("sand", "plastic")]
        for fit in fits:
            assert fit.n_obs == 63
            assert fit.n_reactors == 3
            assert len(fit.run) == 21
            assert fit.apparent is not None
        limits = {f.treatment: f.apparent.limit for f in fits}
        assert limits["control"] < limits["plastic"] < limits["paper"]

    def test_group_fit_row(self, raw_pressure, quick_config):
        obs = preprocess(raw_pressure, quick_config)
        fit = bod_report.fit_groups(obs[obs["treatment"] == "paper"], quick_config.fit)[0]
        row = fit.to_dict()
        assert row["limit_ci_low"] <= row["limit_ci_high"]
        assert 50.0 < row["limit"] < 65.0
        assert row["resample_count"] == 20

    def test_too_few_successful_fits_gives_nan_interval(self, raw_pressure):
        fit_config = FitConfig(resample_count=3, seed=1, min_successful=10)
        obs = preprocess(raw_pressure)
        fit = bod_report.fit_group(obs[obs["treatment"] == "paper"], fit_config)
        assert all(np.isnan(low) and np.isnan(high) for low, high in fit.intervals.values())
        assert fit.apparent is not None

    def test_without_apparent(self, raw_pressure):
        fit_config = FitConfig(resample_count=5, include_apparent=False)
        obs = preprocess(raw_pressure)
        fit = bod_report.fit_group(obs[obs["treatment"] == "plastic"], fit_config)
        assert fit.apparent is None
        assert len(fit.run) == 5
        assert np.isnan(fit.to_dict()["limit"])


class TestAnalyzeBod:
    def test_writes_tables_and_figures(self, raw_pressure, quick_config, tmp_path, capsys):
        outdir = tmp_path / "out"
        fits = bod_report.analyze_bod(raw_pressure, quick_config, outdir=str(outdir))
        assert len(fits) == 3
        for stem in ["bod_observations", "bod_summary", "bod_fit_results", "bod_bootstrap_trials", "bod_anova"]:
            assert (outdir / f"{stem}.csv").exists()
            assert (outdir / f"{stem}.json").exists()
        assert (outdir / "sand_bod_timeseries.png").exists()
        assert (outdir / "sand_paper_bod_fit.png").exists()
        assert (outdir / "sand_paper_bootstrap_params.png").exists()
        trials = pd.read_csv(outdir / "bod_bootstrap_trials.csv")
        assert len(trials) == 3 * 21
        records = json.loads((outdir / "bod_fit_results.json").read_text())
        assert {r["treatment"] for r in records} == {"control", "paper", "plastic"}
        assert "BOD analysis complete" in capsys.readouterr().out

    def test_main_cli(self, raw_pressure_csv, tmp_path):
        outdir = tmp_path / "cli"
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps({"exclude_reactors": ["SA-CO1"]}))
        bod_report.main([
            "--csv", str(raw_pressure_csv),
            "--out", str(outdir),
            "--config", str(config_path),
            "--resamples", "10",
            "--seed", "3",
            "--jobs", "2",
            "--no-plots",
        ])
        results = pd.read_csv(outdir / "bod_fit_results.csv")
        assert len(results) == 3
        assert (results["resample_count"] == 10).all()
        control = results[results["treatment"] == "control"].iloc[0]
        assert control["n_reactors"] == 2
        observations = pd.read_csv(outdir / "bod_observations.csv")
        assert observations.loc[observations["reactor_id"] == "SA-CO1", "outlier"].all()
        assert not list(outdir.glob("*.png"))
