from datetime import timedelta
from typing import Iterable, List, Optional

import pandas as pd
from loguru import logger

from defaults import HOURS_PER_DAY, PHASE_NAMES
from errors import InputValidationError
from models import ProjectResource, ScheduleTask, TeamSummary
from workdays import PortugueseCalendar

USAGE_COLUMNS = ["Date", "Phase", "TaskID", "Workers"]


def _validate_required_columns(df: pd.DataFrame, required: set, name: str = "DataFrame") -> None:
    missing = required - set(df.columns)
    if missing:
        raise InputValidationError(f"{name} missing required columns: {sorted(list(missing))}")


def _tasks_of(schedule_or_tasks) -> List[ScheduleTask]:
    return list(getattr(schedule_or_tasks, "tasks", schedule_or_tasks))


def aggregate_resources(tasks: Iterable[ScheduleTask]) -> List[ProjectResource]:
    """One project resource per (name, type), hours and cost summed over detail tasks."""
    rows = [
        {"Name": r.name, "Type": r.type, "Rate": r.rate, "Hours": r.hours, "Cost": r.cost}
        for t in tasks if not t.is_summary
        for r in t.resources
    ]
    if not rows:
        return []
    df = pd.DataFrame(rows)
    grouped = (
        df.groupby(["Name", "Type"], sort=False)
        .agg(Rate=("Rate", "first"), Hours=("Hours", "sum"), Cost=("Cost", "sum"))
        .reset_index()
    )
    return [
        ProjectResource(uid=i, name=row.Name, type=row.Type, standard_rate=float(row.Rate),
                        total_hours=round(float(row.Hours), 2), total_cost=round(float(row.Cost), 2))
        for i, row in enumerate(grouped.itertuples(index=False), start=1)
    ]


def daily_worker_usage(schedule_or_tasks, calendar: Optional[PortugueseCalendar] = None) -> pd.DataFrame:
    """One row per working day, phase and task with the crew on site."""
    calendar = calendar or PortugueseCalendar()
    rows = []
    for t in _tasks_of(schedule_or_tasks):
        if t.is_summary or t.is_milestone or t.team_size <= 0:
            continue
        day = t.start_date
        while day < t.finish_date:
            if calendar.is_workday(day):
                rows.append({"Date": pd.Timestamp(day), "Phase": t.phase, "TaskID": t.uid,
                             "Workers": t.team_size})
            day += timedelta(days=1)
    return pd.DataFrame(rows, columns=USAGE_COLUMNS)


def compute_team_summary(tasks: Iterable[ScheduleTask], max_workers: int, total_duration_days: int,
                         calendar: Optional[PortugueseCalendar] = None) -> TeamSummary:
    tasks = _tasks_of(tasks)
    man_hours = sum(t.duration_hours for t in tasks if not t.is_summary and not t.is_milestone)
    average = round(man_hours / (total_duration_days * HOURS_PER_DAY), 1) if total_duration_days > 0 else 0.0

    usage = daily_worker_usage(tasks, calendar)
    peak_week = ""
    if not usage.empty:
        # weeks run Monday..Sunday, labelled by the Sunday they end on
        weekly = usage.groupby(pd.Grouper(key="Date", freq="W-SUN"))["Workers"].sum()
        week_end = weekly.idxmax()
        iso = (week_end - pd.Timedelta(days=6)).isocalendar()
        peak_week = f"{iso[0]}-W{iso[1]:02d}"

    return TeamSummary(max_workers=max_workers, average_workers=average,
                       total_man_hours=int(round(man_hours)), peak_week=peak_week)


def schedule_to_dataframe(schedule) -> pd.DataFrame:
    """Flat task table, one row per task in schedule order."""
    critical = set(schedule.critical_path)
    rows = [{
        "TaskID": t.uid,
        "WBS": t.wbs,
        "TaskName": t.name,
        "Phase": t.phase,
        "Discipline": PHASE_NAMES.get(t.phase, t.phase),
        "Start": pd.Timestamp(t.start_date),
        "Finish": pd.Timestamp(t.finish_date),
        "DurationDays": t.duration_days,
        "TeamSize": t.team_size,
        "Cost": t.cost,
        "IsSummary": t.is_summary,
        "IsMilestone": t.is_milestone,
        "Critical": t.uid in critical,
        "Predecessors": ";".join(f"{l.uid}{l.type}{'+' + str(l.lag) if l.lag else ''}"
                                 for l in t.predecessors),
    } for t in schedule.tasks]
    return pd.DataFrame(rows)


def format_summary(schedule) -> str:
    ts = schedule.team_summary
    lines = [
        f"Projeto: {schedule.project_name}",
        f"Início: {schedule.start_date}  Fim: {schedule.finish_date}  "
        f"({schedule.total_duration_days} dias úteis)",
        f"Custo total: {schedule.total_cost:,.2f} €",
        f"Tarefas: {len(schedule.detail_tasks)} | Fases: {len(schedule.summary_tasks)} | "
        f"Marcos: {len(schedule.milestones)}",
        f"Equipa: máx. {ts.max_workers}, média {ts.average_workers}, "
        f"{ts.total_man_hours} h.h, semana de pico {ts.peak_week or '-'}",
        f"Caminho crítico: {len(schedule.critical_path)} tarefas",
    ]
    cc = schedule.critical_chain
    if cc is not None:
        lines.append(
            f"Cadeia crítica: {cc.original_duration_days} -> {cc.ccpm_duration_days} dias "
            f"(buffer de projeto {cc.project_buffer.duration_days} dias, "
            f"{cc.project_buffer.consumed_percent}% consumido, zona {cc.project_buffer.zone})")
    if schedule.warnings:
        lines.append(f"Avisos: {len(schedule.warnings)} artigo(s) sem preço")
        for w in schedule.warnings:
            lines.append(f"  - {w.article_code}: {w.description}")
    text = "\n".join(lines)
    logger.debug(f"Summary for {schedule.project_name!r} built ({len(lines)} lines)")
    return text
