"""Shared pytest fixtures."""

from datetime import date

import pytest

from models import (
    CostBreakdown, PriceMatch, ScheduleTask, Link,
    WbsArticle, WbsChapter, WbsProject, WbsSubChapter,
)
from workdays import PortugueseCalendar


def make_project(floors=1, start=date(2026, 3, 2), extra_chapters=()):
    chapters = [
        WbsChapter(code="06", name="Betão armado", sub_chapters=[
            WbsSubChapter(code="06.01", name="Pilares e vigas", articles=[
                WbsArticle(code="06.01.01", name="Betão C25/30 em pilares", unit="m3", quantity=40),
                WbsArticle(code="06.01.02", name="Armaduras A500", unit="kg", quantity=2000),
            ]),
        ]),
        WbsChapter(code="09", name="Coberturas", sub_chapters=[
            WbsSubChapter(code="09.01", name="Coberturas inclinadas", articles=[
                WbsArticle(code="09.01.01", name="Cobertura em painel sandwich", unit="m2", quantity=200),
            ]),
        ]),
    ]
    chapters.extend(extra_chapters)
    return WbsProject(id="p-1", name="Moradia Teste", start_date=start,
                      chapters=chapters, number_of_floors=floors, district="Lisboa")


def make_matches():
    return [
        PriceMatch(article_code="06.01.01", price_code="EHS010", unit_cost=150.0,
                   breakdown=CostBreakdown(materials=90.0, labor=45.0, machinery=15.0), confidence=85),
        PriceMatch(article_code="06.01.02", price_code="EHA020", unit_cost=1.8,
                   breakdown=CostBreakdown(materials=1.2, labor=0.5, machinery=0.1), confidence=90),
        PriceMatch(article_code="09.01.01", price_code="QTA010", unit_cost=45.0,
                   breakdown=CostBreakdown(materials=30.0, labor=12.0, machinery=3.0), confidence=70),
    ]


def make_task(uid, days, preds=(), summary=False, parent=None):
    """Bare schedule task for hand-built networks; dates are irrelevant to CPM."""
    return ScheduleTask(
        uid=uid, wbs=str(uid), name=f"T{uid}", duration_days=days, duration_hours=0.0,
        start_date=date(2026, 1, 5), finish_date=date(2026, 1, 5),
        predecessors=tuple(p if isinstance(p, Link) else Link(p) for p in preds),
        is_summary=summary, parent_uid=parent,
    )


@pytest.fixture
def project():
    return make_project()


@pytest.fixture
def matches():
    return make_matches()


@pytest.fixture
def calendar():
    return PortugueseCalendar()
