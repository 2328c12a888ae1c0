"""Result types for deployment evaluation."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ecsdeploy.core.errors import EcsDeployError
from ecsdeploy.engine.base import ChangeSet


@dataclass
class PlanResult:
    """Result of planning (dry-run) a deployment."""

    deployment: str
    order: List[str] = field(default_factory=list)
    change_sets: Dict[str, ChangeSet] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    error: Optional[EcsDeployError] = None

    @property
    def total_changes(self) -> int:
        return sum(len(cs.changes) for cs in self.change_sets.values())

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class DeployResult:
    """Result of deploying (or destroying) units in order."""

    deployment: str
    order: List[str] = field(default_factory=list)
    completed: List[str] = field(default_factory=list)
    change_sets: Dict[str, ChangeSet] = field(default_factory=dict)
    outputs: Dict[str, Dict[str, str]] = field(default_factory=dict)
    duration_seconds: float = 0.0
    error: Optional[EcsDeployError] = None

    @property
    def failed_unit(self) -> Optional[str]:
        if self.error is None:
            return None
        return self.error.details.get("unit")

    @property
    def total_created(self) -> int:
        return sum(len(cs.creations) for cs in self.change_sets.values())

    @property
    def success(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


class ResultCollector:
    """Aggregates per-unit outcomes while the evaluator walks the graph."""

    def __init__(self, deployment: str, order: List[str]) -> None:
        self._result = DeployResult(deployment=deployment, order=list(order))

    def record(self, unit: str, change_set: ChangeSet, outputs: Dict[str, str]) -> None:
        self._result.completed.append(unit)
        self._result.change_sets[unit] = change_set
        self._result.outputs[unit] = outputs

    def record_error(self, error: EcsDeployError) -> None:
        self._result.error = error

    def finalize(self, duration: float) -> DeployResult:
        self._result.duration_seconds = duration
        return self._result
