import math
from collections import defaultdict, deque
from typing import Dict, Iterable, List, Optional

from loguru import logger

from ccpm import CriticalChainManager
from config import resolve_options
from defaults import PROCUREMENT_LEAD_TIMES, MILESTONES, PHASE_NAMES
from errors import CycleDetectedError, InputValidationError, ConfigurationError
from helpers import (
    ScheduleContext, validate_project, index_matches, build_task_graph,
    expand_floors, sequence_phases, topo_order_tasks, cycle_members,
)
from models import (
    WbsProject, PriceMatch, PlannedTask, ScheduleTask, ProjectSchedule, Link,
)
from reporting import aggregate_resources, compute_team_summary


# -----------------------------
# Seasonal productivity
# -----------------------------
class SeasonalAdjuster:
    """
    Stretches a base duration by the mean productivity factor of the months
    its working days fall in. Factors < 1 lengthen, never shorten below 1 day.
    """

    def __init__(self, factors: List[float], timeline):
        self.factors = factors
        self.timeline = timeline

    def mean_factor(self, start: int, base_days: int) -> float:
        months = [self.timeline.month_at(start + i) for i in range(base_days)]
        return sum(self.factors[m] for m in months) / len(months)

    def adjusted_duration(self, base_days: int, start: int) -> int:
        if base_days <= 0:
            return base_days
        factor = self.mean_factor(start, base_days)
        return max(1, math.ceil(round(base_days / factor, 9)))


# -----------------------------
# Resource leveling
# -----------------------------
def _link_bound(link: Link, pred: PlannedTask, duration: int) -> int:
    """Earliest start offset a single link allows."""
    if link.type == "SS":
        return pred.start + link.lag
    if link.type == "FF":
        return pred.finish + link.lag - duration
    if link.type == "SF":
        return pred.start + link.lag - duration
    return pred.finish + link.lag


class ResourceLeveler:
    """
    Serial list scheduling per phase: longest task first (WBS order on ties),
    each placed at its earliest start where the phase still has crew room.
    A task that does not fit waits for the next completion of a task of the
    same phase; that completion becomes an FS resource link.
    This is a heuristic, not an optimal resource-constrained solver.
    """

    def __init__(self, ctx: ScheduleContext, adjuster: SeasonalAdjuster):
        self.ctx = ctx
        self.adjuster = adjuster
        self.max_workers = ctx.options.max_workers

    def earliest_start(self, task: PlannedTask, not_before: int = 0) -> int:
        start = not_before
        for link in task.predecessors:
            pred = self.ctx.tasks.get(link.uid)
            if pred is None:
                raise InputValidationError(f"Task {task.uid} references unknown predecessor {link.uid}")
            if pred.start is None:
                continue
            start = max(start, _link_bound(link, pred, task.base_duration))
        return start

    def place(self, task: PlannedTask, earliest: int):
        capacity = self.ctx.capacity
        if task.team_size > self.max_workers:
            raise ConfigurationError(
                f"Task {task.uid} needs {task.team_size} workers but max_workers is {self.max_workers}")
        start, blocker = earliest, None
        while True:
            duration = self.adjuster.adjusted_duration(task.base_duration, start)
            if capacity.fits(task.phase, start, start + duration, task.team_size, self.max_workers):
                break
            release = capacity.next_release(task.phase, start)
            if release is None:
                raise ConfigurationError(f"No crew window found for task {task.uid}")
            start, blocker = release

        if blocker is not None and all(l.uid != blocker for l in task.predecessors):
            task.predecessors.append(Link(blocker, "FS", 0))
        task.duration, task.start, task.finish = duration, start, start + duration
        capacity.allocate(task.phase, task.uid, task.start, task.finish, task.team_size)

    def level_phase(self, tasks: List[PlannedTask], phase_start: int):
        pending = {t.uid: t for t in tasks}
        while pending:
            ready = [t for t in pending.values()
                     if all(l.uid not in pending for l in t.predecessors)]
            if not ready:
                successors = defaultdict(list)
                for t in pending.values():
                    for l in t.predecessors:
                        successors[l.uid].append(t.uid)
                raise CycleDetectedError(cycle_members(pending, successors))
            task = min(ready, key=lambda t: (-t.base_duration, t.sequence, t.uid))
            self.place(task, self.earliest_start(task, phase_start))
            del pending[task.uid]


# -----------------------------
# Procurement and milestones
# -----------------------------
def inject_procurement(phases, ctx: ScheduleContext) -> List[PlannedTask]:
    """
    Long-lead orders start on day 0 and gate the phase that installs them.
    Only phases present in the project get an order.
    """
    orders = []
    for phase, lead in PROCUREMENT_LEAD_TIMES.items():
        if phase not in phases:
            continue
        summary = phases[phase][0]
        order = ctx.register(PlannedTask(
            uid=ctx.next_uid(), wbs=f"PROC-{summary.wbs}", name=lead["name"], phase="procurement",
            base_duration=lead["days"], kind="procurement", outline_level=1,
            duration=lead["days"], start=0, finish=lead["days"],
            notes=f"Prazo de entrega: {lead['days']} dias úteis",
        ))
        summary.predecessors.append(Link(order.uid, "FS", 0))
        orders.append(order)
        logger.debug(f"Procurement {lead['name']!r} gates {phase} ({lead['days']} working days)")
    return orders


def insert_milestones(phases, ctx: ScheduleContext) -> List[PlannedTask]:
    milestones = []
    for marker in MILESTONES:
        phase = marker["after_phase"]
        if phase not in phases:
            continue
        summary = phases[phase][0]
        milestones.append(ctx.register(PlannedTask(
            uid=ctx.next_uid(), wbs=f"M-{summary.wbs}", name=marker["name"], phase=phase,
            base_duration=0, kind="milestone", outline_level=1,
            predecessors=[Link(summary.uid, "FS", 0)],
            duration=0, start=summary.finish, finish=summary.finish,
        )))
    return milestones


# -----------------------------
# Critical path
# -----------------------------
class CPMAnalyzer:
    """
    Critical path analysis over schedule tasks with FS/SS/FF/SF links and lags.

    Each summary task becomes a start event and a finish event (both zero
    duration). Links onto a summary land on its start event (FS/SS) or finish
    event (FF/SF); links from a summary leave its finish event (FS/FF) or
    start event (SS/SF). Children hang between the two events.

    tasks: objects with uid, duration_days, predecessors, is_summary, parent_uid
    durations: optional {uid: days} override (used for aggressive CCPM estimates)
    """

    def __init__(self, tasks: Iterable, durations: Optional[Dict[int, int]] = None):
        self.tasks = list(tasks)
        self.task_by_id = {t.uid: t for t in self.tasks}
        overrides = durations or {}
        self.durations = {
            t.uid: (0 if t.is_summary else overrides.get(t.uid, t.duration_days))
            for t in self.tasks
        }

        # Graph data structures, nodes are ("task"|"start"|"finish", uid)
        self.nodes = []
        self.edges = defaultdict(list)      # succ -> [(pred, type, lag)]
        self.adj = defaultdict(list)        # pred -> [succ]

        # CPM results per node
        self.ES, self.EF = {}, {}
        self.LS, self.LF = {}, {}
        self.cumulative = {}
        self.float = {}
        self.project_duration = 0

    # --------------------------------------------------------
    def _node_duration(self, node) -> int:
        return self.durations[node[1]] if node[0] == "task" else 0

    def _source(self, link: Link):
        pred = self.task_by_id.get(link.uid)
        if pred is None:
            raise InputValidationError(f"Unknown predecessor uid {link.uid}")
        if not pred.is_summary:
            return ("task", pred.uid)
        return ("start", pred.uid) if link.type in ("SS", "SF") else ("finish", pred.uid)

    def _target(self, task, link: Link):
        if not task.is_summary:
            return ("task", task.uid)
        return ("finish", task.uid) if link.type in ("FF", "SF") else ("start", task.uid)

    def _add_edge(self, pred, succ, link_type="FS", lag=0):
        self.edges[succ].append((pred, link_type, lag))
        self.adj[pred].append(succ)

    def build_graph(self):
        """Build event nodes and typed edges."""
        for t in self.tasks:
            if t.is_summary:
                self.nodes += [("start", t.uid), ("finish", t.uid)]
                self._add_edge(("start", t.uid), ("finish", t.uid))
            else:
                self.nodes.append(("task", t.uid))

        for t in self.tasks:
            parent = self.task_by_id.get(t.parent_uid) if t.parent_uid is not None else None
            if parent is not None and parent.is_summary and not t.is_summary:
                self._add_edge(("start", parent.uid), ("task", t.uid))
                self._add_edge(("task", t.uid), ("finish", parent.uid))
            for link in t.predecessors:
                self._add_edge(self._source(link), self._target(t, link), link.type, link.lag)

    def topological_nodes(self):
        indeg = {n: 0 for n in self.nodes}
        for succ, preds in self.edges.items():
            indeg[succ] += len(preds)
        q = deque(n for n in self.nodes if indeg[n] == 0)
        ordered = []
        while q:
            u = q.popleft()
            ordered.append(u)
            for v in self.adj[u]:
                indeg[v] -= 1
                if indeg[v] == 0:
                    q.append(v)
        if len(ordered) != len(self.nodes):
            stuck = cycle_members((n for n in self.nodes if indeg[n] > 0), self.adj)
            raise CycleDetectedError({n[1] for n in stuck})
        return ordered

    def _start_bound(self, pred, link_type, lag, duration) -> int:
        if link_type == "SS":
            return self.ES[pred] + lag
        if link_type == "FF":
            return self.EF[pred] + lag - duration
        if link_type == "SF":
            return self.ES[pred] + lag - duration
        return self.EF[pred] + lag

    # --------------------------------------------------------
    def forward_pass(self, order):
        """Compute earliest start/finish (ES/EF)."""
        for u in order:
            d = self._node_duration(u)
            preds = self.edges.get(u, [])
            self.ES[u] = max([0] + [self._start_bound(p, lt, lag, d) for p, lt, lag in preds])
            self.EF[u] = self.ES[u] + d
            self.cumulative[u] = d + max((self.cumulative[p] for p, _, _ in preds), default=0)
        self.project_duration = max(self.EF.values(), default=0)

    def backward_pass(self, order):
        """Compute latest start/finish (LS/LF)."""
        for u in reversed(order):
            d = self._node_duration(u)
            lf = self.project_duration
            for s in self.adj[u]:
                for p, lt, lag in self.edges[s]:
                    if p != u:
                        continue
                    if lt == "SS":
                        lf = min(lf, self.LS[s] - lag + d)
                    elif lt == "FF":
                        lf = min(lf, self.LF[s] - lag)
                    elif lt == "SF":
                        lf = min(lf, self.LF[s] - lag + d)
                    else:
                        lf = min(lf, self.LS[s] - lag)
            self.LF[u] = lf
            self.LS[u] = lf - d

    # --------------------------------------------------------
    def analyze(self):
        """Run full CPM analysis and calculate floats."""
        topo_order_tasks(self.tasks)
        self.build_graph()
        order = self.topological_nodes()
        self.forward_pass(order)
        self.backward_pass(order)
        for n in self.nodes:
            self.float[n] = self.LS[n] - self.ES[n]
        return self.project_duration

    def run(self):
        self.analyze()
        return self

    # --------------------------------------------------------
    def _children(self, uid):
        return [t for t in self.tasks if t.parent_uid == uid and not t.is_summary]

    def early_start(self, uid) -> int:
        t = self.task_by_id[uid]
        if not t.is_summary:
            return self.ES[("task", uid)]
        kids = self._children(uid)
        return min((self.ES[("task", k.uid)] for k in kids), default=self.ES[("start", uid)])

    def early_finish(self, uid) -> int:
        t = self.task_by_id[uid]
        if not t.is_summary:
            return self.EF[("task", uid)]
        return self.EF[("finish", uid)]

    def slack(self, uid) -> int:
        t = self.task_by_id[uid]
        if not t.is_summary:
            return self.float[("task", uid)]
        kids = self._children(uid)
        return min((self.float[("task", k.uid)] for k in kids), default=self.float[("start", uid)])

    def cumulative_duration(self, uid) -> int:
        t = self.task_by_id[uid]
        return self.cumulative[("finish", uid) if t.is_summary else ("task", uid)]

    def get_critical_tasks(self) -> List[int]:
        """Zero-slack task uids (summaries included) by early start."""
        critical = [t for t in self.tasks if self.slack(t.uid) == 0]
        critical.sort(key=lambda t: (self.early_start(t.uid), 0 if t.is_summary else 1,
                                     -self.cumulative_duration(t.uid), t.uid))
        return [t.uid for t in critical]

    def _tight_preds(self, node):
        """Zero-slack predecessors whose link actually sets this node's start."""
        d = self._node_duration(node)
        return [p for p, lt, lag in self.edges.get(node, [])
                if self.float[p] == 0 and self._start_bound(p, lt, lag, d) == self.ES[node]]

    def driving_chain(self) -> List[int]:
        """
        The single chain of non-summary tasks that drives the project finish,
        traced back from the last zero-slack task; ties go to the longer
        cumulative duration.
        """
        ends = [n for n in self.nodes if n[0] == "task" and self.float[n] == 0
                and self.EF[n] == self.project_duration]
        if not ends:
            return []
        node = min(ends, key=lambda n: (-self.cumulative[n], n[1]))
        chain, seen = [], set()
        while node is not None and node not in seen:
            seen.add(node)
            if node[0] == "task":
                chain.append(node[1])
            preds = self._tight_preds(node)
            node = min(preds, key=lambda n: (-self.cumulative[n], n)) if preds else None
        chain.reverse()
        return chain


# -----------------------------
# Orchestration
# -----------------------------
def _phase_start(summary: PlannedTask, ctx: ScheduleContext) -> int:
    start = 0
    for link in summary.predecessors:
        pred = ctx.tasks[link.uid]
        start = max(start, _link_bound(link, pred, 0))
    return start


def _freeze(task: PlannedTask, ctx: ScheduleContext) -> ScheduleTask:
    timeline = ctx.timeline
    return ScheduleTask(
        uid=task.uid, wbs=task.wbs, name=task.name,
        duration_days=task.duration, duration_hours=round(task.labor_hours, 2),
        start_date=timeline.date_at(task.start), finish_date=timeline.date_at(task.finish),
        predecessors=tuple(task.predecessors), is_summary=task.is_summary,
        is_milestone=task.is_milestone, phase=task.phase, outline_level=task.outline_level,
        resources=tuple(task.resources), cost=round(task.cost, 2),
        material_cost=round(task.material_cost, 2), team_size=task.team_size,
        parent_uid=task.parent_uid, notes=task.notes,
    )


def generate_schedule(project: WbsProject, matches: Iterable[PriceMatch],
                      max_workers_or_options=10) -> ProjectSchedule:
    """
    Turn a priced WBS into a resource-leveled, calendar-aware schedule.

    max_workers_or_options: int (crew cap), dict of option values or ScheduleOptions.
    Every call builds its own context, so concurrent calls share nothing.
    """
    options = resolve_options(max_workers_or_options)
    validate_project(project)
    match_index = index_matches(matches)

    ctx = ScheduleContext(project, options)
    logger.info(f"Scheduling {project.name!r} from {ctx.timeline.origin} "
                f"(max_workers={options.max_workers}, floors={project.number_of_floors})")

    phases = build_task_graph(project, match_index, ctx)
    expand_floors(phases, ctx)
    sequence_phases(phases)
    orders = inject_procurement(phases, ctx)

    leveler = ResourceLeveler(ctx, SeasonalAdjuster(ctx.seasonal_factors, ctx.timeline))
    for phase, tasks in phases.items():
        summary, children = tasks[0], tasks[1:]
        start = _phase_start(summary, ctx)
        leveler.level_phase(children, start)
        summary.start = min(c.start for c in children)
        summary.finish = max(c.finish for c in children)
        summary.duration = summary.finish - summary.start
        summary.labor_hours = sum(c.labor_hours for c in children)
        summary.cost = sum(c.cost for c in children)
        summary.material_cost = sum(c.material_cost for c in children)
        summary.team_size = ctx.capacity.peak(phase)
        logger.debug(f"{PHASE_NAMES[phase]}: days {summary.start}-{summary.finish}, "
                     f"peak crew {summary.team_size}")

    milestones = insert_milestones(phases, ctx)

    ordered = list(orders)
    for tasks in phases.values():
        ordered.extend(tasks)
    ordered.extend(milestones)
    frozen = [_freeze(t, ctx) for t in ordered]

    cpm = CPMAnalyzer(frozen).run()
    critical_path = tuple(cpm.get_critical_tasks())
    finish_offset = max((t.finish for t in ordered), default=0)
    total_duration = finish_offset

    critical_chain = None
    if options.use_critical_chain and frozen:
        critical_chain = CriticalChainManager(frozen, cpm, ctx.timeline, options, ctx.next_uid).apply()
        total_duration = critical_chain.ccpm_duration_days

    finish_date = (critical_chain.project_buffer.finish_date if critical_chain
                   else ctx.timeline.date_at(finish_offset))
    total_cost = round(sum(t.cost for t in frozen if t.is_summary), 2)

    schedule = ProjectSchedule(
        project_name=project.name,
        start_date=ctx.timeline.origin,
        finish_date=finish_date,
        total_duration_days=total_duration,
        total_cost=total_cost,
        tasks=tuple(frozen),
        resources=tuple(aggregate_resources(frozen)),
        critical_path=critical_path,
        team_summary=compute_team_summary(frozen, options.max_workers, finish_offset, ctx.calendar),
        critical_chain=critical_chain,
        warnings=tuple(ctx.warnings),
    )
    logger.info(f"Scheduled {len(frozen)} tasks, {total_duration} working days, "
                f"finish {schedule.finish_date}, cost {total_cost:,.2f} €")
    return schedule
