from datetime import date

import pytest

from conftest import make_matches, make_project
from defaults import MILESTONES, PROCUREMENT_LEAD_TIMES
from logic import generate_schedule
from models import Link, PriceMatch
from workdays import PortugueseCalendar, add_working_days, is_working_day


@pytest.fixture
def schedule(project, matches):
    return generate_schedule(project, matches, 10)


def test_finish_not_before_start(schedule):
    assert schedule.finish_date >= schedule.start_date
    for t in schedule.tasks:
        assert t.finish_date >= t.start_date


def test_start_rolls_to_working_day(matches):
    schedule = generate_schedule(make_project(start=date(2026, 3, 7)), matches)
    assert schedule.start_date == date(2026, 3, 9)
    assert is_working_day(schedule.start_date)


def test_uids_unique(schedule):
    uids = [t.uid for t in schedule.tasks]
    assert len(uids) == len(set(uids))


def test_predecessors_reference_existing_tasks(schedule):
    uids = {t.uid for t in schedule.tasks}
    for t in schedule.tasks:
        assert all(l.uid in uids for l in t.predecessors)


def test_summaries_bound_their_children(schedule):
    for summary in schedule.summary_tasks:
        children = schedule.children_of(summary.uid)
        assert children
        assert summary.start_date == min(c.start_date for c in children)
        assert summary.finish_date == max(c.finish_date for c in children)
        assert summary.cost == pytest.approx(sum(c.cost for c in children))


def test_phase_precedence(schedule):
    structure = next(t for t in schedule.summary_tasks if t.phase == "structure")
    roof = next(t for t in schedule.summary_tasks if t.phase == "roof")
    assert Link(structure.uid, "FS", 0) in roof.predecessors
    assert roof.start_date >= structure.finish_date


def test_procurement_gates_phase(schedule):
    orders = [t for t in schedule.tasks if t.phase == "procurement"]
    assert {o.name for o in orders} == {
        PROCUREMENT_LEAD_TIMES["structure"]["name"], PROCUREMENT_LEAD_TIMES["roof"]["name"]}
    for order in orders:
        assert order.resources == ()
        assert order.cost == 0
        assert order.start_date == schedule.start_date
        gated = [s for s in schedule.summary_tasks if Link(order.uid, "FS", 0) in s.predecessors]
        assert len(gated) == 1
        assert gated[0].start_date >= order.finish_date

    steel = next(o for o in orders if o.name == PROCUREMENT_LEAD_TIMES["structure"]["name"])
    assert steel.duration_days == 20
    assert steel.finish_date == add_working_days(schedule.start_date, 20)


def test_milestones(schedule):
    milestones = schedule.milestones
    expected = {m["name"] for m in MILESTONES if m["after_phase"] in ("structure", "roof")}
    assert {m.name for m in milestones} == expected
    for m in milestones:
        assert m.duration_days == 0
        assert m.start_date == m.finish_date
        assert m.resources == ()
        assert len(m.predecessors) == 1
        trigger = schedule.task(m.predecessors[0].uid)
        assert m.predecessors[0].type == "FS"
        assert trigger.is_summary
        assert m.start_date == trigger.finish_date


def test_critical_path_has_detail_and_summary(schedule):
    assert schedule.critical_path
    kinds = {schedule.task(uid).is_summary for uid in schedule.critical_path}
    assert kinds == {True, False}


def test_total_cost(schedule):
    assert schedule.total_cost == pytest.approx(150 * 40 + 1.8 * 2000 + 45 * 200)


def test_total_duration_counts_working_days(schedule):
    cal = PortugueseCalendar()
    assert schedule.total_duration_days == cal.working_days_between(schedule.start_date, schedule.finish_date)


def test_resources_aggregated(schedule):
    names = {r.name for r in schedule.resources}
    assert {"Pedreiro", "Carpinteiro"} <= names
    pedreiro = next(r for r in schedule.resources if r.name == "Pedreiro")
    assert pedreiro.total_hours == pytest.approx(45 * 40 / 14 + 0.5 * 2000 / 14, abs=0.01)


def test_team_summary(schedule):
    ts = schedule.team_summary
    assert ts.max_workers == 10
    assert ts.total_man_hours == round(45 * 40 / 14 + 0.5 * 2000 / 14 + 12 * 200 / 15)
    assert ts.peak_week.startswith("2026-W")


def test_unmatched_article_reported_not_raised(project):
    matches = [m for m in make_matches() if m.article_code != "06.01.02"]
    schedule = generate_schedule(project, matches)
    assert [w.article_code for w in schedule.warnings] == ["06.01.02"]
    assert all(t.wbs != "06.01.02" for t in schedule.tasks)


def test_floor_stagger(matches):
    schedule = generate_schedule(make_project(floors=4), matches)
    structure = [t for t in schedule.detail_tasks if t.phase == "structure"]
    assert len(structure) == 8
    cal = PortugueseCalendar()
    by_uid = {t.uid: t for t in schedule.tasks}
    for t in structure:
        for link in t.predecessors:
            if link.type == "SS":
                assert cal.working_days_between(by_uid[link.uid].start_date, t.start_date) >= 5


def test_no_task_on_weekend_or_holiday(matches):
    schedule = generate_schedule(make_project(start=date(2026, 11, 20), floors=2), matches)
    for t in schedule.detail_tasks:
        assert is_working_day(t.start_date)


def test_august_start_takes_longer(matches):
    flat = generate_schedule(make_project(start=date(2026, 7, 6)), matches,
                             {"seasonal_factors": [1.0] * 12})
    seasonal = generate_schedule(make_project(start=date(2026, 7, 6)), matches)
    assert seasonal.total_duration_days > flat.total_duration_days


def test_calls_are_independent(project, matches):
    first = generate_schedule(project, matches, 10)
    second = generate_schedule(project, matches, 10)
    assert first == second
    assert min(t.uid for t in second.tasks) == 1


def test_task_lookup(schedule):
    first = schedule.tasks[0]
    assert schedule.task(first.uid) is first
    with pytest.raises(KeyError):
        schedule.task(99999)


def test_unit_conversion_scales_cost(project):
    matches = make_matches()
    matches[2] = PriceMatch("09.01.01", "QTA010", 45.0, matches[2].breakdown, unit_conversion=2.0)
    schedule = generate_schedule(project, matches)
    roof = next(t for t in schedule.tasks if t.wbs == "09.01.01")
    assert roof.cost == pytest.approx(45 * 200 * 2)
