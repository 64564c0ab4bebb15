"""
Unit tests for descriptive statistics and treatment comparisons.
"""

import numpy as np
import pandas as pd
import pytest

from bod_analysis.errors import InvalidConfiguration
from bod_analysis.preprocess import preprocess
from bod_analysis.stat_utils import (
    bootstrap_ci,
    final_bod_per_reactor,
    one_way_anova,
    summarize_bod,
    treatment_anova,
    treatment_tests,
)


class TestBootstrapCI:
    def test_point_and_bounds(self):
        res = bootstrap_ci([1.0, 2.0, 3.0, 4.0, 5.0], n_boot=2000)
        assert res["point"] == pytest.approx(3.0)
        assert res["ci_low"] <= 3.0 <= res["ci_high"]

    def test_nan_only(self):
        res = bootstrap_ci([np.nan, np.nan])
        assert np.isnan(res["point"])

    def test_reproducible(self):
        assert bootstrap_ci([1.0, 5.0, 9.0], random_state=1) == bootstrap_ci([1.0, 5.0, 9.0], random_state=1)

    def test_confidence_level_is_a_fraction(self):
        values = [1.0, 4.0, 2.0, 8.0, 5.0, 7.0]
        wide = bootstrap_ci(values, n_boot=2000, confidence_level=0.95)
        narrow = bootstrap_ci(values, n_boot=2000, confidence_level=0.5)
        assert wide["ci_low"] <= narrow["ci_low"] <= narrow["ci_high"] <= wide["ci_high"]

    def test_percent_level_rejected(self):
        with pytest.raises(InvalidConfiguration):
            bootstrap_ci([1.0, 2.0, 3.0], confidence_level=95)


class TestSummaries:
    def test_summarize_bod(self, raw_pressure):
        obs = preprocess(raw_pressure)
        summary = summarize_bod(obs, n_boot=200)
        assert len(summary) == 3 * 21
        assert (summary["n"] == 3).all()
        last = summary[(summary["treatment"] == "paper") & (summary["time_days"] == 20.0)].iloc[0]
        assert last["ci_low"] <= last["mean_bod_mg_L"] <= last["ci_high"]

    def test_summary_uses_confidence_level(self, raw_pressure):
        obs = preprocess(raw_pressure)
        wide = summarize_bod(obs, n_boot=500, confidence_level=0.99)
        narrow = summarize_bod(obs, n_boot=500, confidence_level=0.5)
        assert ((wide["ci_high"] - wide["ci_low"]) >= (narrow["ci_high"] - narrow["ci_low"])).all()

    def test_final_bod_per_reactor(self, raw_pressure):
        final = final_bod_per_reactor(preprocess(raw_pressure))
        assert len(final) == 9
        assert (final["time_days"] == 20.0).all()


class TestTreatmentComparisons:
    def test_one_way_anova_detects_difference(self):
        res = one_way_anova(["a"] * 3 + ["b"] * 3, [1.0, 1.1, 0.9, 5.0, 5.2, 4.9])
        assert res["anova_p"] < 0.001
        assert res["df_between"] == 1
        assert res["df_within"] == 4

    def test_one_way_anova_single_group(self):
        res = one_way_anova(["a"] * 4, [1.0, 2.0, 3.0, 4.0])
        assert np.isnan(res["anova_F"])

    def test_treatment_anova_single_habitat(self, raw_pressure):
        table = treatment_anova(preprocess(raw_pressure))
        assert "C(treatment)" in table["term"].tolist()
        p = table.loc[table["term"] == "C(treatment)", "PR(>F)"].iloc[0]
        assert p < 0.001

    def test_treatment_anova_two_habitats(self, raw_pressure_factory):
        raw = raw_pressure_factory(habitats=("sand", "mud"))
        table = treatment_anova(preprocess(raw))
        assert {"C(habitat)", "C(treatment)", "C(habitat):C(treatment)", "Residual"} <= set(table["term"])

    def test_treatment_anova_needs_two_treatments(self, raw_pressure):
        obs = preprocess(raw_pressure)
        table = treatment_anova(obs[obs["treatment"] == "paper"])
        assert table.empty

    def test_treatment_tests_per_habitat(self, raw_pressure_factory):
        raw = raw_pressure_factory(habitats=("sand", "mud"))
        tests = treatment_tests(preprocess(raw))
        assert sorted(tests["habitat"]) == ["mud", "sand"]
        assert (tests["n_reactors"] == 9).all()
        assert isinstance(tests, pd.DataFrame)
