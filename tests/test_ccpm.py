import math

import pandas as pd
import pytest

from ccpm import CriticalChainManager, update_buffer_consumption, zone_for
from conftest import make_matches, make_project
from errors import InputValidationError
from logic import generate_schedule
from models import ScheduleOptions


@pytest.fixture
def ccpm_schedule(project, matches):
    return generate_schedule(project, matches, {"max_workers": 10, "use_critical_chain": True})


def test_disabled_by_default(project, matches):
    assert generate_schedule(project, matches).critical_chain is None


def test_ccpm_never_longer_than_original(ccpm_schedule):
    cc = ccpm_schedule.critical_chain
    assert cc.aggressive_duration_days <= cc.original_duration_days
    assert cc.ccpm_duration_days <= cc.original_duration_days
    assert cc.ccpm_duration_days == cc.aggressive_duration_days + cc.project_buffer.duration_days
    assert ccpm_schedule.total_duration_days == cc.ccpm_duration_days


def test_project_buffer(ccpm_schedule):
    cc = ccpm_schedule.critical_chain
    pb = cc.project_buffer
    assert pb.type == "project"
    assert pb.duration_days > 0
    assert pb.consumed_percent == 0
    assert pb.zone == "green"
    assert pb.feeding_chain == cc.chain_task_uids
    assert ccpm_schedule.finish_date == pb.finish_date
    assert cc.buffer_ratio == pytest.approx(pb.duration_days / cc.ccpm_duration_days, abs=0.01)
    assert cc.safety_reduction_percent == 50


def test_project_buffer_sized_from_aggressive_duration(ccpm_schedule):
    cc = ccpm_schedule.critical_chain
    assert cc.aggressive_duration_days < cc.original_duration_days
    assert cc.project_buffer.duration_days == math.ceil(0.5 * cc.aggressive_duration_days)


def test_project_buffer_on_staggered_floors(matches):
    schedule = generate_schedule(make_project(floors=3), matches,
                                 {"max_workers": 10, "use_critical_chain": True})
    cc = schedule.critical_chain
    full = math.ceil(0.5 * cc.aggressive_duration_days)
    # trimmed only when lags keep the cut chain close to the original
    assert cc.project_buffer.duration_days == min(full, cc.original_duration_days - cc.aggressive_duration_days)
    assert cc.aggressive_duration_days < cc.original_duration_days
    assert cc.ccpm_duration_days <= cc.original_duration_days


def test_procurement_orders_are_cut(ccpm_schedule):
    orders = [t for t in ccpm_schedule.tasks if t.phase == "procurement"]
    assert orders
    cut = CriticalChainManager(ccpm_schedule.tasks, None, None, ScheduleOptions(), None).aggressive_durations()
    for t in orders:
        assert cut[t.uid] == math.ceil(t.duration_days / 2)
        assert cut[t.uid] < t.duration_days


def test_chain_is_made_of_schedule_tasks(ccpm_schedule):
    cc = ccpm_schedule.critical_chain
    assert cc.chain_task_uids
    for uid in cc.chain_task_uids:
        task = ccpm_schedule.task(uid)
        assert not task.is_summary
        assert uid in ccpm_schedule.critical_path


def test_buffer_uids_do_not_clash_with_tasks(ccpm_schedule):
    task_uids = {t.uid for t in ccpm_schedule.tasks}
    for b in ccpm_schedule.critical_chain.buffers:
        assert b.uid not in task_uids


def test_feeding_buffers_finish_before_merge(matches):
    schedule = generate_schedule(make_project(floors=3), matches,
                                 {"max_workers": 10, "use_critical_chain": True})
    cc = schedule.critical_chain
    for fb in cc.feeding_buffers:
        assert fb.type == "feeding"
        assert fb.duration_days > 0
        assert fb.protects_task in cc.chain_task_uids
        assert fb.feeding_chain
        assert not set(fb.feeding_chain) & set(cc.chain_task_uids)
        assert fb.start_date <= fb.finish_date
        assert fb.zone == "green"


@pytest.mark.parametrize("consumed,zone", [
    (0, "green"), (33, "green"), (34, "yellow"), (67, "yellow"), (68, "red"), (100, "red"),
])
def test_zone_thresholds(consumed, zone):
    assert zone_for(consumed) == zone


def test_delay_consumes_project_buffer(ccpm_schedule):
    pb = ccpm_schedule.critical_chain.project_buffer
    last = pb.feeding_chain[-1]
    progress = pd.DataFrame({"TaskID": [last], "DelayDays": [1]})
    updated = update_buffer_consumption(ccpm_schedule, progress)
    new_pb = updated.critical_chain.project_buffer
    assert new_pb.consumed_percent == pytest.approx(min(100.0, round(100 / pb.duration_days, 1)))
    assert new_pb.zone == zone_for(new_pb.consumed_percent)
    assert updated.critical_chain.buffers[0] == new_pb
    # input left untouched
    assert ccpm_schedule.critical_chain.project_buffer.consumed_percent == 0


def test_consumption_clamped(ccpm_schedule):
    last = ccpm_schedule.critical_chain.project_buffer.feeding_chain[-1]
    progress = pd.DataFrame({"TaskID": [last], "DelayDays": [10_000]})
    updated = update_buffer_consumption(ccpm_schedule, progress)
    assert updated.critical_chain.project_buffer.consumed_percent == 100
    assert updated.critical_chain.project_buffer.zone == "red"


def test_consumption_never_decreases(ccpm_schedule):
    last = ccpm_schedule.critical_chain.project_buffer.feeding_chain[-1]
    late = update_buffer_consumption(
        ccpm_schedule, pd.DataFrame({"TaskID": [last], "DelayDays": [10_000]}))
    recovered = update_buffer_consumption(
        late, pd.DataFrame({"TaskID": [last], "DelayDays": [0]}))
    assert recovered.critical_chain.project_buffer.consumed_percent == 100


def test_latest_report_wins_when_dated(ccpm_schedule):
    pb = ccpm_schedule.critical_chain.project_buffer
    last = pb.feeding_chain[-1]
    progress = pd.DataFrame({
        "TaskID": [last, last],
        "DelayDays": [10_000, 0],
        "Date": ["2026-04-01", "2026-04-10"],
    })
    updated = update_buffer_consumption(ccpm_schedule, progress)
    assert updated.critical_chain.project_buffer.consumed_percent == 0


def test_unrelated_tasks_do_not_consume(ccpm_schedule):
    progress = pd.DataFrame({"TaskID": [99999], "DelayDays": [50]})
    updated = update_buffer_consumption(ccpm_schedule, progress)
    assert updated.critical_chain.project_buffer.consumed_percent == 0


def test_missing_columns_rejected(ccpm_schedule):
    with pytest.raises(InputValidationError):
        update_buffer_consumption(ccpm_schedule, pd.DataFrame({"TaskID": [1]}))


def test_non_numeric_task_id_rejected(ccpm_schedule):
    progress = pd.DataFrame({"TaskID": ["abc"], "DelayDays": [2]})
    with pytest.raises(InputValidationError):
        update_buffer_consumption(ccpm_schedule, progress)


def test_schedule_without_chain_returned_as_is(project, matches):
    schedule = generate_schedule(project, matches)
    progress = pd.DataFrame({"TaskID": [1], "DelayDays": [3]})
    assert update_buffer_consumption(schedule, progress) is schedule


def test_custom_ratios(project):
    schedule = generate_schedule(project, make_matches(), {
        "use_critical_chain": True, "safety_reduction": 0.2, "project_buffer_ratio": 0.3})
    cc = schedule.critical_chain
    assert cc.safety_reduction_percent == 20
    assert cc.ccpm_duration_days <= cc.original_duration_days
