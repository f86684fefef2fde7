"""
Tuning results - outcome records collected while applying the policy.

Every sub-operation of a step yields a SettingResult instead of raising,
so a run always completes and reports what actually landed.
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Any
from enum import Enum
import json


NOT_AVAILABLE = "N/A"


class Status(str, Enum):
    """Outcome of a single setting attempt."""
    APPLIED = "applied"
    SKIPPED = "skipped"   # Feature or value not supported on this host
    FAILED = "failed"     # Environment refused the write or command


class StepName(str, Enum):
    """Steps of a tuning run, in execution order."""
    CPU = "cpu"
    VM = "vm"
    NET = "net"
    THP = "thp"
    IO = "io"


@dataclass
class SettingResult:
    """Result of one write, file install or command."""
    target: str
    status: Status
    desired: str = ""
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class StepReport:
    """All results produced by one HostTuner operation."""
    name: str
    title: str = ""
    results: List[SettingResult] = field(default_factory=list)

    def add(
        self,
        target: str,
        status: Status,
        desired: str = "",
        message: str = "",
    ) -> SettingResult:
        result = SettingResult(target=target, status=status, desired=desired, message=message)
        self.results.append(result)
        return result

    def extend(self, other: "StepReport"):
        self.results.extend(other.results)

    def count(self, status: Status) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def skipped_entirely(self) -> bool:
        """True when the step did nothing but report it was skipped."""
        return bool(self.results) and all(r.status == Status.SKIPPED for r in self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "title": self.title,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class VerifiedValue:
    """A value read back from the host after tuning."""
    group: str
    target: str
    actual: str = NOT_AVAILABLE
    desired: Optional[str] = None

    @property
    def matches(self) -> bool:
        if self.desired is None:
            return self.actual != NOT_AVAILABLE
        return normalize_value(self.actual) == normalize_value(self.desired)


@dataclass
class VerificationReport:
    """Effective host state, read back after the steps ran."""
    values: List[VerifiedValue] = field(default_factory=list)

    def add(self, group: str, target: str, actual: Optional[str], desired: Optional[str] = None):
        self.values.append(VerifiedValue(
            group=group,
            target=target,
            actual=actual if actual is not None else NOT_AVAILABLE,
            desired=desired,
        ))

    def get(self, target: str) -> Optional[str]:
        for value in self.values:
            if value.target == target:
                return value.actual
        return None

    def mismatches(self) -> List[VerifiedValue]:
        return [v for v in self.values if not v.matches]


@dataclass
class TuningReport:
    """Complete outcome of a run."""
    policy_version: str
    steps: List[StepReport] = field(default_factory=list)
    verification: Optional[VerificationReport] = None

    def step(self, name: str) -> Optional[StepReport]:
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def totals(self) -> Dict[str, int]:
        totals = {status.value: 0 for status in Status}
        for step in self.steps:
            for status in Status:
                totals[status.value] += step.count(status)
        return totals

    def to_json(self, indent: int = 2) -> str:
        """Serialize to JSON string."""
        data = {
            "policy_version": self.policy_version,
            "steps": [s.to_dict() for s in self.steps],
            "totals": self.totals(),
        }
        if self.verification:
            data["verification"] = [asdict(v) for v in self.verification.values]
        return json.dumps(data, indent=indent)


def normalize_value(value: Any) -> str:
    """
    Normalize a sysctl/sysfs value for comparison and file output.

    /proc/sys prints triples tab-separated ("4096\\t87380\\t16777216"),
    config files use single spaces; lists come from TOML arrays.
    """
    if isinstance(value, (list, tuple)):
        return " ".join(str(v) for v in value)
    if isinstance(value, bool):
        return "1" if value else "0"
    return " ".join(str(value).split())
