from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field


class ReportedStatus(str, Enum):
    processing = "processing"
    complete = "complete"
    failed = "failed"
    bounced = "bounced"

    @property
    def is_terminal(self) -> bool:
        return self is not ReportedStatus.processing

    @property
    def is_failure(self) -> bool:
        return self in (ReportedStatus.failed, ReportedStatus.bounced)


class OutcomeState(str, Enum):
    pending = "pending"
    complete = "complete"
    complete_no_artifact = "complete_no_artifact"
    failed = "failed"


class StopReason(str, Enum):
    converged = "converged"
    exhausted = "exhausted"


class ComparisonStatus(str, Enum):
    passed = "passed"
    failed = "failed"
    baseline_created = "baseline_created"
    error = "error"


@dataclass(frozen=True)
class ClientReport:
    """One client's entry in a provider status snapshot."""

    status: ReportedStatus
    raw_status: str
    artifact_url: Optional[str] = None


StatusSnapshot = Dict[str, ClientReport]


@dataclass(frozen=True)
class Pending:
    state = OutcomeState.pending


@dataclass(frozen=True)
class CompleteNoArtifact:
    state = OutcomeState.complete_no_artifact


@dataclass(frozen=True)
class Complete:
    url: str
    state = OutcomeState.complete


@dataclass(frozen=True)
class Failed:
    reason: str
    state = OutcomeState.failed


ClientOutcome = Union[Pending, CompleteNoArtifact, Complete, Failed]

PENDING = Pending()
COMPLETE_NO_ARTIFACT = CompleteNoArtifact()


def is_settled(outcome: ClientOutcome) -> bool:
    """Complete and Failed outcomes never change for the rest of a job."""
    return isinstance(outcome, (Complete, Failed))


@dataclass(frozen=True)
class Job:
    job_id: str
    requested_clients: Tuple[str, ...]
    submitted_at: str
    reused: bool = False


class PreviewDescriptor(BaseModel):
    name: str
    url: str
    client: str


class ClientAudit(BaseModel):
    client: str
    state: OutcomeState
    url: Optional[str] = None
    reason: Optional[str] = None
    last_status: Optional[str] = None


class AuditSummary(BaseModel):
    requested: int = 0
    captured: int = 0
    failed: int = 0
    never_appeared: int = 0


class AuditRecord(BaseModel):
    task: str
    job_id: str
    provider: str
    attempts: int = Field(ge=0)
    stop_reason: StopReason
    generated_at: str
    clients: List[ClientAudit] = []
    summary: AuditSummary = AuditSummary()


class ComparisonResult(BaseModel):
    client: str
    name: str
    url: str
    status: ComparisonStatus
    baseline: str
    observed: Optional[str] = None
    diff: Optional[str] = None
    heatmap: Optional[str] = None
    pixel_count: Optional[int] = None
    percentage: Optional[float] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == ComparisonStatus.passed


class ComparisonReport(BaseModel):
    task: str
    generated_at: str
    max_diff_ratio: float
    results: List[ComparisonResult] = []
