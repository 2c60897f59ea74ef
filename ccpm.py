import math
from dataclasses import replace
from typing import Callable, Dict, List

import pandas as pd
from loguru import logger

from defaults import GREEN_ZONE_MAX, YELLOW_ZONE_MAX, PHASE_NAMES
from models import (
    CriticalChainBuffer, CriticalChainData, ProjectSchedule, ScheduleOptions, ScheduleTask,
)
from errors import InputValidationError
from reporting import _validate_required_columns


def zone_for(consumed_percent: float) -> str:
    """Fever-chart zone for a buffer consumption percentage."""
    if consumed_percent <= GREEN_ZONE_MAX:
        return "green"
    if consumed_percent <= YELLOW_ZONE_MAX:
        return "yellow"
    return "red"


class CriticalChainManager:
    """
    Goldratt critical chain on top of a finished CPM analysis.

    Work estimates are cut by `safety_reduction`; the removed safety is
    pooled into one project buffer after the chain and feeding buffers where
    non-critical sub-chains merge into it. Procurement orders are cut
    like any other chain task.
    """

    def __init__(self, tasks: List[ScheduleTask], cpm, timeline, options: ScheduleOptions,
                 next_uid: Callable[[], int]):
        self.tasks = tasks
        self.task_by_id = {t.uid: t for t in tasks}
        self.cpm = cpm
        self.timeline = timeline
        self.options = options
        self.next_uid = next_uid

    def aggressive_durations(self) -> Dict[int, int]:
        r = self.options.safety_reduction
        durations = {}
        for t in self.tasks:
            if t.is_summary or t.is_milestone or t.duration_days <= 0:
                continue
            durations[t.uid] = max(1, math.ceil(round(t.duration_days * (1 - r), 9)))
        return durations

    def _real_preds(self, node, seen=None) -> List[tuple]:
        """Task nodes feeding `node`, looking through summary events."""
        seen = set() if seen is None else seen
        found = []
        for pred, _type, _lag in self.cpm.edges.get(node, []):
            if pred in seen:
                continue
            seen.add(pred)
            if pred[0] == "task":
                found.append(pred)
            else:
                found.extend(self._real_preds(pred, seen))
        return found

    def _feeding_subchain(self, first, aggressive, claimed) -> List[int]:
        """Walk back from `first` through non-critical driving predecessors."""
        chain, node = [], first
        while node is not None:
            chain.append(node[1])
            claimed.add(node)
            candidates = [p for p in self._real_preds(node)
                          if self.cpm.float[p] > 0 and p not in claimed]
            node = max(candidates, key=lambda p: (aggressive.EF[p], aggressive.cumulative[p], -p[1]),
                       default=None)
        chain.reverse()
        return chain

    def apply(self) -> CriticalChainData:
        opts = self.options
        aggressive_durations = self.aggressive_durations()
        aggressive = self.cpm.__class__(self.tasks, durations=aggressive_durations).run()

        original = self.cpm.project_duration
        aggr = aggressive.project_duration
        project_buffer_days = math.ceil(round(opts.project_buffer_ratio * aggr, 9))
        if aggr + project_buffer_days > original:
            # only when the cut cannot shorten the chain (1-day tasks, lags)
            logger.warning(f"Project buffer of {project_buffer_days} days would outrun the original "
                           f"{original} days, trimmed to {max(0, original - aggr)}")
            project_buffer_days = max(0, original - aggr)
        ccpm_duration = aggr + project_buffer_days

        chain = self.cpm.driving_chain()
        project_buffer = CriticalChainBuffer(
            uid=self.next_uid(), type="project", name="Buffer de Projeto",
            duration_days=project_buffer_days, consumed_percent=0.0, zone="green",
            start_date=self.timeline.date_at(aggr),
            finish_date=self.timeline.date_at(ccpm_duration),
            feeding_chain=tuple(chain), protects_task=chain[-1] if chain else None,
        )

        feeding_buffers = []
        claimed = {("task", uid) for uid in chain}
        for merge_uid in chain:
            merge = ("task", merge_uid)
            for pred in self._real_preds(merge):
                if self.cpm.float[pred] <= 0 or pred in claimed:
                    continue
                sub_chain = self._feeding_subchain(pred, aggressive, claimed)
                sub_duration = sum(aggressive_durations.get(uid, self.task_by_id[uid].duration_days)
                                   for uid in sub_chain)
                if sub_duration <= 0:
                    continue
                days = math.ceil(round(opts.feeding_buffer_ratio * sub_duration, 9))
                merge_start = aggressive.ES[merge]
                feeder = self.task_by_id[sub_chain[-1]]
                feeding_buffers.append(CriticalChainBuffer(
                    uid=self.next_uid(), type="feeding",
                    name=f"Buffer Alimentação: {PHASE_NAMES.get(feeder.phase, feeder.name)}",
                    duration_days=days, consumed_percent=0.0, zone="green",
                    start_date=self.timeline.date_at(merge_start - days),
                    finish_date=self.timeline.date_at(merge_start),
                    feeding_chain=tuple(sub_chain), protects_task=merge_uid,
                ))

        ratio = round(project_buffer_days / ccpm_duration, 2) if ccpm_duration else 0.0
        logger.info(f"Critical chain: {original} -> {aggr} days aggressive, project buffer "
                    f"{project_buffer_days}, {len(feeding_buffers)} feeding buffer(s)")
        return CriticalChainData(
            chain_task_uids=tuple(chain),
            buffers=tuple([project_buffer] + feeding_buffers),
            project_buffer=project_buffer,
            feeding_buffers=tuple(feeding_buffers),
            original_duration_days=original,
            aggressive_duration_days=aggr,
            ccpm_duration_days=ccpm_duration,
            safety_reduction_percent=round(opts.safety_reduction * 100),
            buffer_ratio=ratio,
        )


def _latest_delays(actual_progress: pd.DataFrame) -> Dict[int, float]:
    _validate_required_columns(actual_progress, {"TaskID", "DelayDays"}, "actual_progress")
    df = actual_progress.copy()
    df["DelayDays"] = pd.to_numeric(df["DelayDays"], errors="coerce").fillna(0.0)
    if "Date" in df.columns:
        df["Date"] = pd.to_datetime(df["Date"], errors="coerce")
        df = df.sort_values("Date").groupby("TaskID", as_index=False).last()
    else:
        df = df.groupby("TaskID", as_index=False)["DelayDays"].max()
    try:
        return {int(tid): float(delay) for tid, delay in zip(df["TaskID"], df["DelayDays"])}
    except (TypeError, ValueError) as e:
        raise InputValidationError(f"actual_progress has a non-numeric TaskID: {e}") from e


def _consume(buffer: CriticalChainBuffer, delays: Dict[int, float]) -> CriticalChainBuffer:
    delay = max((delays.get(uid, 0.0) for uid in buffer.feeding_chain), default=0.0)
    if buffer.duration_days > 0:
        computed = min(100.0, max(0.0, delay / buffer.duration_days * 100))
    else:
        computed = 100.0 if delay > 0 else 0.0
    consumed = round(max(buffer.consumed_percent, computed), 1)
    return replace(buffer, consumed_percent=consumed, zone=zone_for(consumed))


def update_buffer_consumption(schedule: ProjectSchedule, actual_progress: pd.DataFrame) -> ProjectSchedule:
    """
    Re-derive buffer consumption from reported delays.

    actual_progress: one row per progress report with TaskID and DelayDays
    (working days late); with a Date column only the latest report per task
    counts. Consumption never goes down. Returns a new schedule.
    """
    if schedule.critical_chain is None:
        logger.warning(f"{schedule.project_name!r} has no critical chain, nothing to update")
        return schedule

    delays = _latest_delays(actual_progress)
    chain = schedule.critical_chain
    project_buffer = _consume(chain.project_buffer, delays)
    feeding = tuple(_consume(b, delays) for b in chain.feeding_buffers)

    for b in (project_buffer,) + feeding:
        if b.zone == "red":
            logger.warning(f"{b.name} in red zone ({b.consumed_percent}% consumed)")

    return replace(schedule, critical_chain=replace(
        chain, project_buffer=project_buffer, feeding_buffers=feeding,
        buffers=(project_buffer,) + feeding,
    ))
