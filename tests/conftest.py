"""
Shared fixtures for WBS diagram tests.
"""

import pytest

from wbs_core import EngineSettings, HeuristicTextMeasurer, parse
from wbs_backend.engine import DiagramEngine


SCENARIO_OUTLINE = """Project
  Planning
    Define scope
    Identify stakeholders
  Execution
    Build A"""

CODED_OUTLINE = """1\tProject
1.1\tPlanning
1.1.1\tDefine scope
1.2\tExecution"""


@pytest.fixture
def settings():
    return EngineSettings()


@pytest.fixture
def engine(settings):
    """Engine built from the six-line scenario outline."""
    engine = DiagramEngine(settings=settings, measurer=HeuristicTextMeasurer())
    engine.build(parse(SCENARIO_OUTLINE))
    return engine


@pytest.fixture
def outline_text():
    return SCENARIO_OUTLINE


@pytest.fixture
def coded_text():
    return CODED_OUTLINE
