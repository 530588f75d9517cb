"""Test setup for the study planner."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from node_models import StudyNode  # noqa: E402


@pytest.fixture
def sample_forest() -> tuple[StudyNode, ...]:
    """Two subjects: one with a nested branch, one plain leaf."""
    processo = StudyNode("Processo Administrativo", id="proc")
    atos = StudyNode("Atos", studied=True, id="atos")
    licitacoes = StudyNode("Licitações", children=(atos,), id="lic")
    administrativo = StudyNode(
        "Direito Administrativo", children=(processo, licitacoes), id="adm"
    )
    portugues = StudyNode("Português", id="port")
    return (administrativo, portugues)
