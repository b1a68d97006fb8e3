from tote.specialists.adapter import PlanAdapter
from tote.specialists.base import SpecialistAgent
from tote.specialists.executor import Executor
from tote.specialists.planner import PlanBuilder

__all__ = [
    "Executor",
    "PlanAdapter",
    "PlanBuilder",
    "SpecialistAgent",
]
