"""
Shared test configuration.

Points TRIBESIM_LEGEND_DIR at a temporary directory for the test session so
API tests never write legend databases into the project dir.
"""

import os

import pytest


@pytest.fixture(autouse=True, scope="session")
def _isolate_legend_dir(tmp_path_factory):
    """Use a temp legend directory for all tests."""
    tmp_dir = tmp_path_factory.mktemp("tribesim_legends")
    os.environ["TRIBESIM_LEGEND_DIR"] = str(tmp_dir)
    yield
    os.environ.pop("TRIBESIM_LEGEND_DIR", None)
