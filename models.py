from dataclasses import dataclass, field
from typing import List, Optional, Dict, Tuple
from datetime import date


# -----------------------------
# Input side (WBS + price matches)
# -----------------------------

@dataclass
class WbsArticle:
    code: str
    name: str
    unit: str
    quantity: float
    unit_cost: float = 0.0


@dataclass
class WbsSubChapter:
    code: str
    name: str
    articles: List[WbsArticle] = field(default_factory=list)


@dataclass
class WbsChapter:
    code: str                            # ProNIC chapter code, e.g. "06"
    name: str
    sub_chapters: List[WbsSubChapter] = field(default_factory=list)


@dataclass
class WbsProject:
    id: str
    name: str
    start_date: date
    chapters: List[WbsChapter] = field(default_factory=list)
    number_of_floors: int = 1
    building_type: str = "residential"
    district: Optional[str] = None


@dataclass
class CostBreakdown:
    materials: float = 0.0               # per unit
    labor: float = 0.0
    machinery: float = 0.0


@dataclass
class PriceMatch:
    article_code: str
    price_code: str
    unit_cost: float
    breakdown: CostBreakdown = field(default_factory=CostBreakdown)
    unit_conversion: float = 1.0
    confidence: float = 0.0              # 0-100, reporting only


# -----------------------------
# Output side (immutable schedule)
# -----------------------------

@dataclass(frozen=True)
class Link:
    uid: int
    type: str = "FS"                     # FS | SS | FF | SF
    lag: int = 0                         # working days


@dataclass(frozen=True)
class TaskResource:
    name: str
    type: str                            # labor | material | machinery | subcontractor
    units: float
    rate: float
    hours: float
    team_size: Optional[int] = None

    @property
    def cost(self) -> float:
        if self.type == "material" or self.hours <= 0:
            return self.units * self.rate
        return self.hours * self.rate


@dataclass(frozen=True)
class ScheduleTask:
    uid: int
    wbs: str
    name: str
    duration_days: int
    duration_hours: float
    start_date: date
    finish_date: date
    predecessors: Tuple[Link, ...] = ()
    is_summary: bool = False
    is_milestone: bool = False
    phase: str = ""
    outline_level: int = 2
    resources: Tuple[TaskResource, ...] = ()
    cost: float = 0.0
    material_cost: float = 0.0
    percent_complete: float = 0.0
    team_size: int = 0
    parent_uid: Optional[int] = None     # owning phase summary, if any
    notes: Optional[str] = None


@dataclass(frozen=True)
class ProjectResource:
    uid: int
    name: str
    type: str
    standard_rate: float
    total_hours: float
    total_cost: float


@dataclass(frozen=True)
class CriticalChainBuffer:
    uid: int
    type: str                            # project | feeding
    name: str
    duration_days: int
    consumed_percent: float
    zone: str                            # green | yellow | red
    start_date: date
    finish_date: date
    feeding_chain: Tuple[int, ...] = ()
    protects_task: Optional[int] = None


@dataclass(frozen=True)
class CriticalChainData:
    chain_task_uids: Tuple[int, ...]
    buffers: Tuple[CriticalChainBuffer, ...]
    project_buffer: CriticalChainBuffer
    feeding_buffers: Tuple[CriticalChainBuffer, ...]
    original_duration_days: int
    aggressive_duration_days: int
    ccpm_duration_days: int
    safety_reduction_percent: int
    buffer_ratio: float


@dataclass(frozen=True)
class TeamSummary:
    max_workers: int
    average_workers: float
    total_man_hours: int
    peak_week: str


@dataclass(frozen=True)
class UnmatchedArticleWarning:
    article_code: str
    description: str
    message: str = "No price match; article excluded from the schedule"


@dataclass(frozen=True)
class ProjectSchedule:
    project_name: str
    start_date: date
    finish_date: date
    total_duration_days: int
    total_cost: float
    tasks: Tuple[ScheduleTask, ...]
    resources: Tuple[ProjectResource, ...]
    critical_path: Tuple[int, ...]
    team_summary: TeamSummary
    critical_chain: Optional[CriticalChainData] = None
    warnings: Tuple[UnmatchedArticleWarning, ...] = ()

    # Read views over the single canonical task tuple
    def task(self, uid: int) -> ScheduleTask:
        for t in self.tasks:
            if t.uid == uid:
                return t
        raise KeyError(uid)

    @property
    def summary_tasks(self) -> List[ScheduleTask]:
        return [t for t in self.tasks if t.is_summary]

    @property
    def detail_tasks(self) -> List[ScheduleTask]:
        return [t for t in self.tasks if not t.is_summary and not t.is_milestone]

    @property
    def milestones(self) -> List[ScheduleTask]:
        return [t for t in self.tasks if t.is_milestone]

    def children_of(self, summary_uid: int) -> List[ScheduleTask]:
        return [t for t in self.tasks if t.parent_uid == summary_uid]


@dataclass
class ScheduleOptions:
    max_workers: int = 10
    use_critical_chain: bool = False
    safety_reduction: float = 0.5
    project_buffer_ratio: float = 0.5
    feeding_buffer_ratio: float = 0.5
    seasonal_factors: Optional[List[float]] = None     # None -> Portuguese defaults
    labor_hourly_rate: Optional[float] = None          # None -> phase trade rate
    target_duration_days: int = 5
    max_team_size: int = 10
    floor_stagger_lag: int = 5
    extra_holidays: List[date] = field(default_factory=list)


# -----------------------------
# Internal, mutable working record used while a schedule is being built
# -----------------------------

@dataclass
class PlannedTask:
    uid: int
    wbs: str
    name: str
    phase: str
    base_duration: int                   # working days before seasonal adjustment
    labor_hours: float = 0.0
    team_size: int = 0
    quantity: float = 0.0
    cost: float = 0.0
    material_cost: float = 0.0
    resources: List[TaskResource] = field(default_factory=list)
    predecessors: List[Link] = field(default_factory=list)
    kind: str = "work"                   # work | summary | procurement | milestone
    outline_level: int = 2
    sequence: int = 0                    # original WBS order, used for tie-breaks
    floor: Optional[int] = None
    parent_uid: Optional[int] = None
    article_code: str = ""
    notes: Optional[str] = None
    duration: int = 0                    # working days after adjustment
    start: Optional[int] = None          # working-day offset from project start
    finish: Optional[int] = None

    @property
    def is_summary(self):
        return self.kind == "summary"

    @property
    def is_milestone(self):
        return self.kind == "milestone"
