import os

# Must be set before any Qt GUI object is created
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import pytest
from PyQt6.QtGui import QFontDatabase
from PyQt6.QtWidgets import QApplication

from treemorph_app import text_sampler


@pytest.fixture(scope="session")
def qapp():
    app = QApplication.instance()
    if app is None:
        app = QApplication([])
    yield app


@pytest.fixture
def fresh_text_cache():
    text_sampler.clear_text_point_cache()
    yield
    text_sampler.clear_text_point_cache()


@pytest.fixture
def installed_family(qapp):
    """A font family Qt can actually apply, or skip when the host has none."""
    for family in QFontDatabase.families():
        candidate = text_sampler.FontCandidate(family, 150, True)
        if text_sampler.font_applied(text_sampler.build_qfont(candidate), family):
            return family
    pytest.skip("no font family installed")
