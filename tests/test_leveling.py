from datetime import date

import pytest

from config import resolve_options
from conftest import make_matches, make_project
from defaults import PT_SEASONAL
from helpers import WorkerCapacity
from logic import SeasonalAdjuster, generate_schedule
from models import Link
from reporting import daily_worker_usage
from workdays import PortugueseCalendar, WorkdayTimeline


class TestWorkerCapacity:
    def test_fits_and_allocates(self):
        cap = WorkerCapacity()
        assert cap.fits("structure", 0, 5, 4, 4)
        cap.allocate("structure", 1, 0, 5, 4)
        assert not cap.fits("structure", 4, 6, 1, 4)
        assert cap.fits("structure", 5, 8, 4, 4)
        assert cap.fits("roof", 0, 5, 4, 4)
        assert cap.used("structure", 2) == 4
        assert cap.peak("structure") == 4

    def test_next_release(self):
        cap = WorkerCapacity()
        cap.allocate("structure", 1, 0, 5, 2)
        cap.allocate("structure", 2, 0, 3, 2)
        assert cap.next_release("structure", 0) == (3, 2)
        assert cap.next_release("structure", 3) == (5, 1)
        assert cap.next_release("structure", 5) is None

    def test_zero_team_not_booked(self):
        cap = WorkerCapacity()
        cap.allocate("procurement", 9, 0, 20, 0)
        assert cap.peak("procurement") == 0


class TestSeasonalAdjuster:
    def test_august_stretches_work(self, calendar):
        timeline = WorkdayTimeline(calendar, date(2026, 8, 3))
        assert SeasonalAdjuster(PT_SEASONAL, timeline).adjusted_duration(10, 0) == 15

    def test_spring_is_neutral(self, calendar):
        timeline = WorkdayTimeline(calendar, date(2026, 4, 6))
        assert SeasonalAdjuster(PT_SEASONAL, timeline).adjusted_duration(10, 0) == 10

    def test_never_below_one_day(self, calendar):
        timeline = WorkdayTimeline(calendar, date(2026, 4, 6))
        adjuster = SeasonalAdjuster([2.0] * 12, timeline)
        assert adjuster.adjusted_duration(1, 0) == 1

    def test_zero_duration_untouched(self, calendar):
        timeline = WorkdayTimeline(calendar, date(2026, 4, 6))
        assert SeasonalAdjuster(PT_SEASONAL, timeline).adjusted_duration(0, 0) == 0


@pytest.mark.parametrize("max_workers", [1, 2, 4, 10])
@pytest.mark.parametrize("floors", [1, 4])
def test_phase_crews_never_exceed_cap(max_workers, floors):
    schedule = generate_schedule(make_project(floors=floors), make_matches(), max_workers)
    usage = daily_worker_usage(schedule)
    per_day = usage.groupby(["Date", "Phase"])["Workers"].sum()
    assert (per_day <= max_workers).all()


def test_deferred_task_gets_resource_link(project, matches):
    schedule = generate_schedule(project, matches, 4)
    concrete = next(t for t in schedule.tasks if t.wbs == "06.01.01")
    rebar = next(t for t in schedule.tasks if t.wbs == "06.01.02")
    # equal base durations: WBS order decides, concrete goes first
    assert concrete.team_size == 4
    assert rebar.start_date == concrete.finish_date
    assert Link(concrete.uid, "FS", 0) in rebar.predecessors


def test_parallel_when_crews_allow(project, matches):
    schedule = generate_schedule(project, matches, 10)
    concrete = next(t for t in schedule.tasks if t.wbs == "06.01.01")
    rebar = next(t for t in schedule.tasks if t.wbs == "06.01.02")
    assert concrete.start_date == rebar.start_date
    assert all(l.uid != concrete.uid for l in rebar.predecessors)


def test_more_workers_never_later():
    few = generate_schedule(make_project(floors=2), make_matches(), 1)
    many = generate_schedule(make_project(floors=2), make_matches(), 20)
    assert many.finish_date <= few.finish_date


def test_team_sizes_clamped_to_cap(project, matches):
    schedule = generate_schedule(project, matches, 2)
    assert all(t.team_size <= 2 for t in schedule.detail_tasks)


def test_flat_seasonal_factors_keep_base_durations(project, matches):
    opts = resolve_options({"seasonal_factors": [1.0] * 12})
    schedule = generate_schedule(project, matches, opts)
    concrete = next(t for t in schedule.tasks if t.wbs == "06.01.01")
    assert concrete.duration_days == 5


def test_calendar_span_matches_duration(project, matches):
    schedule = generate_schedule(project, matches)
    cal = PortugueseCalendar()
    for t in schedule.detail_tasks:
        assert cal.working_days_between(t.start_date, t.finish_date) == t.duration_days
        assert cal.is_workday(t.start_date)
