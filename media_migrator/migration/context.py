"""
Per-batch state and migration results.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from media_migrator.core.logging_config import log_warning
from media_migrator.models.enums import MigrationState


@dataclass(frozen=True)
class MigrationIssue:
    """A per-record problem that did not abort the migration."""
    stage: str
    reason: str
    record_id: Optional[int] = None
    path: Optional[str] = None


@dataclass
class BatchContext:
    """
    State shared by the transformer, relocator and rewriter for one batch.

    ``reference_map`` maps legacy download ids to the ids of the media files
    created for them in this batch.
    """
    stage: str
    reference_map: Dict[int, int] = field(default_factory=dict)
    issues: List[MigrationIssue] = field(default_factory=list)

    def add_issue(
        self,
        reason: str,
        record_id: Optional[int] = None,
        path: Optional[str] = None,
    ) -> MigrationIssue:
        issue = MigrationIssue(stage=self.stage, reason=reason, record_id=record_id, path=path)
        self.issues.append(issue)
        log_warning(reason, stage=self.stage, record_id=record_id, path=path)
        return issue


@dataclass
class StageResult:
    name: str
    duration_ms: float = 0.0
    skipped: bool = False
    counters: Dict[str, int] = field(default_factory=dict)
    issues: List[MigrationIssue] = field(default_factory=list)

    def increment(self, counter: str, amount: int = 1) -> None:
        self.counters[counter] = self.counters.get(counter, 0) + amount

    def absorb(self, ctx: BatchContext) -> None:
        """Collect the issues of a finished batch."""
        self.issues.extend(ctx.issues)

    def skip(self, reason: str) -> None:
        self.skipped = True
        self.issues.append(MigrationIssue(stage=self.name, reason=reason))
        log_warning(f"Stage skipped: {reason}", stage=self.name)


@dataclass
class MigrationResult:
    state: MigrationState
    stages: List[StageResult] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def issues(self) -> List[MigrationIssue]:
        return [issue for stage in self.stages for issue in stage.issues]

    def stage(self, name: str) -> Optional[StageResult]:
        for result in self.stages:
            if result.name == name:
                return result
        return None
