import itertools
import math
from collections import defaultdict, deque, OrderedDict
from typing import Dict, Iterable, List, Optional

from loguru import logger

from config import seasonal_factors_for
from defaults import (
    PHASE_ORDER, PHASE_NAMES, CHAPTER_PHASES, DEFAULT_PHASE, PHASE_GAPS,
    LABOR_ROLES, DEFAULT_ROLE, HOURS_PER_DAY, FLOOR_STAGGER_PHASES,
)
from errors import InputValidationError, CycleDetectedError
from models import (
    WbsProject, PriceMatch, PlannedTask, TaskResource, Link,
    ScheduleOptions, UnmatchedArticleWarning,
)
from workdays import PortugueseCalendar, WorkdayTimeline, to_date


class ScheduleContext:
    """
    Everything one scheduling call owns: options, calendar, uid sequence,
    task registry, warnings. Never shared between calls.
    """

    def __init__(self, project: WbsProject, options: ScheduleOptions):
        self.project = project
        self.options = options
        self.calendar = PortugueseCalendar(extra_holidays=options.extra_holidays)
        self.timeline = WorkdayTimeline(self.calendar, project.start_date)
        self.seasonal_factors = seasonal_factors_for(options)
        self.capacity = WorkerCapacity()
        self.tasks: Dict[int, PlannedTask] = {}
        self.warnings: List[UnmatchedArticleWarning] = []
        self._uids = itertools.count(1)

    def next_uid(self) -> int:
        return next(self._uids)

    def register(self, task: PlannedTask) -> PlannedTask:
        self.tasks[task.uid] = task
        return task


# ------------------------- Validation -------------------------

def _is_number(x) -> bool:
    return isinstance(x, (int, float)) and not isinstance(x, bool) and math.isfinite(x)


def validate_project(project: WbsProject):
    """Reject malformed WBS input before any scheduling work happens."""
    if project is None:
        raise InputValidationError("No WBS project given")
    if not project.start_date:
        raise InputValidationError(f"Project {project.name!r} has no start date")
    try:
        to_date(project.start_date)
    except (ValueError, TypeError) as e:
        raise InputValidationError(f"Invalid start date {project.start_date!r}", details=str(e)) from e
    if not isinstance(project.number_of_floors, int) or project.number_of_floors < 1:
        raise InputValidationError(f"number_of_floors must be >= 1, got {project.number_of_floors!r}")

    seen = set()
    problems = []
    for chapter in project.chapters:
        if not chapter.code:
            problems.append(f"chapter {chapter.name!r} has no code")
        for sub in chapter.sub_chapters:
            for article in sub.articles:
                code = (article.code or "").strip()
                if not code:
                    problems.append(f"article {article.name!r} in {sub.code} has no code")
                    continue
                if code in seen:
                    problems.append(f"duplicate article code {code}")
                seen.add(code)
                if article.quantity is None or not _is_number(article.quantity):
                    problems.append(f"article {code} has no quantity")
                elif article.quantity <= 0:
                    problems.append(f"article {code} has non-positive quantity {article.quantity}")
                if article.unit_cost is not None and _is_number(article.unit_cost) and article.unit_cost < 0:
                    problems.append(f"article {code} has negative unit cost")
    if problems:
        raise InputValidationError(f"Invalid WBS: {problems[0]}", details=problems)


def index_matches(matches: Optional[Iterable[PriceMatch]]) -> Dict[str, PriceMatch]:
    index = {}
    for m in matches or []:
        if not m.article_code:
            raise InputValidationError("Price match without article code")
        if not _is_number(m.unit_conversion) or m.unit_conversion <= 0:
            raise InputValidationError(
                f"Price match for {m.article_code} has invalid unit conversion {m.unit_conversion!r}")
        if not _is_number(m.confidence) or not (0 <= m.confidence <= 100):
            # reporting only, kept as given
            logger.warning(f"Price match for {m.article_code} has confidence outside 0-100: {m.confidence!r}")
        if m.article_code in index:
            logger.warning(f"Several price matches for article {m.article_code}; keeping the last one")
        index[m.article_code] = m
    return index


# ------------------------- Task graph -------------------------

def chapter_to_phase(chapter_code: str) -> str:
    phase = CHAPTER_PHASES.get(str(chapter_code).strip())
    if phase is None:
        logger.warning(f"Unknown chapter code {chapter_code!r}, filing under {DEFAULT_PHASE}")
        return DEFAULT_PHASE
    return phase


def primary_role(phase: str) -> Dict:
    for role in LABOR_ROLES.values():
        if phase in role["phases"]:
            return role
    return DEFAULT_ROLE


def infer_team_size(labor_hours: float, options: ScheduleOptions) -> int:
    cap = min(options.max_team_size, options.max_workers)
    ideal = math.ceil(labor_hours / (options.target_duration_days * HOURS_PER_DAY)) if labor_hours > 0 else 1
    return max(1, min(cap, ideal))


def duration_for(labor_hours: float, team_size: int) -> int:
    if labor_hours <= 0:
        return 1
    return max(1, math.ceil(labor_hours / (team_size * HOURS_PER_DAY)))


def task_resources(phase: str, hours: float, team: int, quantity: float,
                   match: PriceMatch, options: ScheduleOptions) -> List[TaskResource]:
    role = primary_role(phase)
    rate = options.labor_hourly_rate or role["rate"]
    price_units = quantity * match.unit_conversion
    resources = [TaskResource(name=role["name"], type="labor", units=team, rate=rate, hours=hours)]
    if match.breakdown.materials > 0:
        resources.append(TaskResource(
            name=f"Materiais - {match.price_code}", type="material",
            units=price_units, rate=match.breakdown.materials, hours=0))
    if match.breakdown.machinery > 0:
        machinery_cost = match.breakdown.machinery * price_units
        resources.append(TaskResource(
            name=f"Equipamento - {match.price_code}", type="machinery", units=1,
            rate=machinery_cost / hours if hours > 0 else machinery_cost, hours=hours))
    return resources


def _price_note(match: PriceMatch) -> str:
    if _is_number(match.confidence):
        return f"Preço: {match.price_code} ({match.confidence:.0f}% conf.)"
    return f"Preço: {match.price_code}"


def build_task_graph(project: WbsProject, matches: Dict[str, PriceMatch],
                     ctx: ScheduleContext) -> "OrderedDict[str, List[PlannedTask]]":
    """
    One detail task per matched article, grouped by phase in canonical order.
    Each group starts with its phase summary task. Unmatched articles become
    warnings on the context.
    """
    options = ctx.options
    grouped = defaultdict(list)
    sequence = itertools.count()

    for chapter in project.chapters:
        phase = chapter_to_phase(chapter.code)
        for sub in chapter.sub_chapters:
            for article in sub.articles:
                match = matches.get(article.code)
                if match is None:
                    logger.warning(f"Article {article.code} has no price match, skipped")
                    ctx.warnings.append(UnmatchedArticleWarning(article.code, article.name))
                    continue
                grouped[phase].append((next(sequence), chapter, article, match))

    phases = OrderedDict()
    for phase in PHASE_ORDER:
        if phase not in grouped:
            continue
        entries = grouped[phase]
        summary = ctx.register(PlannedTask(
            uid=ctx.next_uid(), wbs=entries[0][1].code, name=PHASE_NAMES[phase],
            phase=phase, base_duration=0, kind="summary", outline_level=1,
            sequence=entries[0][0]))
        tasks = [summary]

        for seq, chapter, article, match in entries:
            rate = options.labor_hourly_rate or primary_role(phase)["rate"]
            hours = match.breakdown.labor * article.quantity * match.unit_conversion / rate
            team = infer_team_size(hours, options)
            unit_cost = match.unit_cost if match.unit_cost > 0 else (article.unit_cost or 0.0)
            tasks.append(ctx.register(PlannedTask(
                uid=ctx.next_uid(), wbs=article.code, name=article.name, phase=phase,
                base_duration=duration_for(hours, team), labor_hours=hours, team_size=team,
                quantity=article.quantity,
                cost=unit_cost * article.quantity * match.unit_conversion,
                material_cost=match.breakdown.materials * article.quantity * match.unit_conversion,
                resources=task_resources(phase, hours, team, article.quantity, match, options),
                outline_level=2, sequence=seq, parent_uid=summary.uid,
                article_code=article.code,
                notes=_price_note(match),
            )))
        phases[phase] = tasks
        logger.debug(f"Phase {phase}: {len(tasks) - 1} article task(s)")
    return phases


# ------------------------- Floor stagger -------------------------

def _scale_resources(resources: List[TaskResource], share: float, team: int) -> List[TaskResource]:
    scaled = []
    for r in resources:
        if r.type == "labor":
            scaled.append(TaskResource(r.name, r.type, units=team, rate=r.rate, hours=r.hours * share))
        elif r.type == "material":
            scaled.append(TaskResource(r.name, r.type, units=r.units * share, rate=r.rate, hours=0))
        else:
            # rate is cost per hour, so scaling the hours scales the cost
            hours = r.hours * share
            scaled.append(TaskResource(r.name, r.type, units=r.units,
                                       rate=r.rate if r.hours > 0 else r.rate * share, hours=hours))
    return scaled


def expand_floors(phases: "OrderedDict[str, List[PlannedTask]]", ctx: ScheduleContext):
    """
    Split article tasks of floor-by-floor trades into one task per floor,
    chained start-to-start with a lag so the crew moves up one floor at a time.
    """
    floors = ctx.project.number_of_floors or 1
    if floors <= 1:
        return phases
    lag = ctx.options.floor_stagger_lag
    share = 1.0 / floors

    for phase, tasks in phases.items():
        if phase not in FLOOR_STAGGER_PHASES:
            continue
        expanded = [tasks[0]]
        for task in tasks[1:]:
            hours = task.labor_hours * share
            team = infer_team_size(hours, ctx.options)
            previous = None
            for floor in range(floors):
                # floor 0 keeps the article's uid
                uid = task.uid if floor == 0 else ctx.next_uid()
                floor_task = PlannedTask(
                    uid=uid, wbs=task.wbs, name=f"{task.name} - Piso {floor}", phase=phase,
                    base_duration=duration_for(hours, team), labor_hours=hours, team_size=team,
                    quantity=task.quantity * share, cost=task.cost * share,
                    material_cost=task.material_cost * share,
                    resources=_scale_resources(task.resources, share, team),
                    predecessors=[Link(previous.uid, "SS", lag)] if previous else list(task.predecessors),
                    outline_level=3, sequence=task.sequence, floor=floor,
                    parent_uid=task.parent_uid, article_code=task.article_code, notes=task.notes,
                )
                ctx.register(floor_task)
                expanded.append(floor_task)
                previous = floor_task
        phases[phase] = expanded
        logger.debug(f"Phase {phase} staggered over {floors} floors ({len(expanded) - 1} tasks)")
    return phases


# ------------------------- Phase sequencing -------------------------

def sequence_phases(phases: "OrderedDict[str, List[PlannedTask]]"):
    """
    Chain phase summaries FS in canonical order, plus the minimum curing /
    drying gaps between phases that may not overlap.
    """
    summaries = OrderedDict((phase, tasks[0]) for phase, tasks in phases.items())
    previous = None
    for phase, summary in summaries.items():
        if previous is not None:
            summary.predecessors.append(Link(previous.uid, "FS", 0))
        for (before, after), gap in PHASE_GAPS.items():
            if after == phase and before in summaries:
                pred = summaries[before]
                if previous is not None and pred.uid == previous.uid:
                    # tighten the chain link instead of adding a second one
                    summary.predecessors = [
                        Link(l.uid, l.type, max(l.lag, gap)) if l.uid == pred.uid else l
                        for l in summary.predecessors]
                else:
                    summary.predecessors.append(Link(pred.uid, "FS", gap))
        previous = summary
    return list(summaries)


# ------------------------- Topological order -------------------------

def cycle_members(leftover, successors) -> set:
    """
    Of the nodes a Kahn pass could not order, the ones that lie on a cycle.
    Nodes merely downstream of a cycle are dropped.
    """
    leftover = set(leftover)
    on_cycle = set()
    for start in leftover:
        stack, seen = list(successors.get(start, ())), set()
        while stack:
            node = stack.pop()
            if node == start:
                on_cycle.add(start)
                break
            if node in seen or node not in leftover:
                continue
            seen.add(node)
            stack.extend(successors.get(node, ()))
    return on_cycle


def topo_order_tasks(tasks) -> List[int]:
    """
    Kahn ordering of task uids over their predecessor links. Raises
    CycleDetectedError naming the uids that form the cycle(s).
    """
    uids = [t.uid for t in tasks]
    known = set(uids)
    indegree = {uid: 0 for uid in uids}
    successors = {uid: [] for uid in uids}

    for t in tasks:
        for link in t.predecessors:
            if link.uid not in known:
                raise InputValidationError(f"Task {t.uid} references unknown predecessor {link.uid}")
            indegree[t.uid] += 1
            successors[link.uid].append(t.uid)

    queue = deque(uid for uid in uids if indegree[uid] == 0)
    ordered = []
    while queue:
        current = queue.popleft()
        ordered.append(current)
        for succ in successors[current]:
            indegree[succ] -= 1
            if indegree[succ] == 0:
                queue.append(succ)

    if len(ordered) != len(uids):
        raise CycleDetectedError(cycle_members((uid for uid in uids if indegree[uid] > 0), successors))
    return ordered


# -----------------------------
# Worker capacity (per phase, per working day)
# -----------------------------
class WorkerCapacity:
    """
    Tracks crews reserved per phase and working-day offset.
    allocations[phase] -> list of (task_uid, workers, start, end), end exclusive.
    """

    def __init__(self):
        self.allocations = defaultdict(list)
        self.daily = defaultdict(lambda: defaultdict(int))

    def used(self, phase: str, day: int) -> int:
        return self.daily[phase].get(day, 0)

    def fits(self, phase: str, start: int, end: int, workers: int, limit: int) -> bool:
        usage = self.daily[phase]
        return all(usage.get(day, 0) + workers <= limit for day in range(start, end))

    def allocate(self, phase: str, task_uid: int, start: int, end: int, workers: int):
        if workers <= 0 or end <= start:
            return
        self.allocations[phase].append((task_uid, workers, start, end))
        usage = self.daily[phase]
        for day in range(start, end):
            usage[day] += workers

    def next_release(self, phase: str, after: int):
        """(day, task_uid) of the earliest completion strictly after `after`, or None."""
        releases = [(end, uid) for uid, _w, _s, end in self.allocations[phase] if end > after]
        return min(releases) if releases else None

    def peak(self, phase: str) -> int:
        return max(self.daily[phase].values(), default=0)
