"""
Integration tests for visualize_countdown.py using Streamlit's AppTest.

These run the actual Streamlit app in a headless runtime, catching issues
that unit tests with a fake Streamlit module cannot (widget state, query
params, chart serialization).

Run: pytest test_integration.py -v
"""

import os

import pytest
from streamlit.testing.v1 import AppTest

import last_line as ll

SCRIPT = os.path.join(os.path.dirname(os.path.abspath(__file__)), "visualize_countdown.py")
TIMEOUT = 30


def _fresh_app():
    """Create a fresh AppTest instance."""
    return AppTest.from_file(SCRIPT, default_timeout=TIMEOUT)


def _assert_no_error(at, context):
    """Assert the app ran without exceptions."""
    excs = list(at.exception)
    assert not excs, f"{context}: {excs[0]}"


# ===========================================================================
# Default render
# ===========================================================================

class TestDefaultRender:
    def test_runs_clean(self):
        at = _fresh_app()
        at.run()
        _assert_no_error(at, "default")

    def test_default_fit_is_moores_law(self):
        at = _fresh_app()
        at.run()
        assert at.radio(key="countdown_fit").value == ll.DEFAULT_FIT

    def test_countdown_and_stats_metrics(self):
        at = _fresh_app()
        at.run()
        labels = [m.label for m in at.metric]
        for label in ("Days", "Hours", "Minutes", "Seconds",
                      "Current best", "Best model", "Remaining", "Last updated"):
            assert label in labels

    def test_predictions_table_has_nine_rows(self):
        at = _fresh_app()
        at.run()
        assert len(at.table) == 1
        assert len(at.table[0].value) == len(ll.FIT_NAMES)


# ===========================================================================
# Countdown fit selection
# ===========================================================================

class TestFitSelection:
    @pytest.mark.parametrize("fit", ll.FIT_NAMES)
    def test_every_fit_renders(self, fit):
        at = _fresh_app()
        at.run()
        at.radio(key="countdown_fit").set_value(fit).run()
        _assert_no_error(at, f"fit={fit}")
        assert at.radio(key="countdown_fit").value == fit

    def test_query_param_selects_fit(self):
        at = _fresh_app()
        at.query_params["fit"] = "ridge"
        at.run()
        _assert_no_error(at, "?fit=ridge")
        assert at.radio(key="countdown_fit").value == "ridge"

    def test_unknown_query_param_warns_and_keeps_default(self):
        at = _fresh_app()
        at.query_params["fit"] = "cubic"
        at.run()
        _assert_no_error(at, "?fit=cubic")
        assert len(at.warning) >= 1
        assert at.radio(key="countdown_fit").value == ll.DEFAULT_FIT


# ===========================================================================
# Refresh
# ===========================================================================

class TestRefresh:
    def test_refresh_button(self):
        at = _fresh_app()
        at.run()
        at.button[0].click().run()
        _assert_no_error(at, "refresh")
