"""
Run Tracking

Track analysis runs from creation to a terminal state.

State machine:
    created -> processing -> completed | failed | cancelled

Terminal states are final. The run file on disk is the source of truth so a
cancellation written by another process is seen by the running analysis.
"""

import os
import json
import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any, List
import uuid

from linkscore.errors import InvalidRunTransition

logger = logging.getLogger(__name__)


class RunStatus(Enum):
    """Run status states."""
    CREATED = "created"           # Accepted, not started
    PROCESSING = "processing"     # Pipeline running
    COMPLETED = "completed"       # Result bundle stored
    FAILED = "failed"             # Failed with error
    CANCELLED = "cancelled"       # User cancelled

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED})

ALLOWED_TRANSITIONS = {
    RunStatus.CREATED: {RunStatus.PROCESSING, RunStatus.FAILED, RunStatus.CANCELLED},
    RunStatus.PROCESSING: {RunStatus.PROCESSING, RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED},
}


@dataclass
class Run:
    """Analysis run data model."""
    run_id: str
    domain: str
    status: RunStatus
    created_at: datetime
    updated_at: datetime

    # Inputs
    request: Dict = field(default_factory=dict)

    # Progress tracking
    current_step: Optional[str] = None
    progress_percent: int = 0
    progress: Optional[Dict] = None

    # Timing
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None

    # Results
    result: Optional[Dict] = None
    api_cost: float = 0.0

    # Errors
    error_message: Optional[str] = None

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        data = asdict(self)
        data["status"] = self.status.value
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat()
        if self.started_at:
            data["started_at"] = self.started_at.isoformat()
        if self.completed_at:
            data["completed_at"] = self.completed_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "Run":
        """Create from dictionary."""
        data = dict(data)
        data["status"] = RunStatus(data["status"])
        data["created_at"] = datetime.fromisoformat(data["created_at"])
        data["updated_at"] = datetime.fromisoformat(data["updated_at"])
        if data.get("started_at"):
            data["started_at"] = datetime.fromisoformat(data["started_at"])
        if data.get("completed_at"):
            data["completed_at"] = datetime.fromisoformat(data["completed_at"])
        return cls(**data)

    def transition(self, status: RunStatus):
        """
        Move to a new status.

        Raises:
            InvalidRunTransition: If the current status does not allow it
        """
        if status not in ALLOWED_TRANSITIONS.get(self.status, set()):
            raise InvalidRunTransition(
                f"Run {self.run_id} cannot move from {self.status.value} to {status.value}"
            )

        now = datetime.now()
        self.status = status
        self.updated_at = now

        if status == RunStatus.PROCESSING and not self.started_at:
            self.started_at = now

        if status.is_terminal:
            self.completed_at = now
            if self.started_at:
                self.duration_seconds = (now - self.started_at).total_seconds()


class RunTracker:
    """
    Tracks analysis runs in JSON files.

    Implements the persistence interface the analysis engine uses:
    create_run, update_run_status, read_run_status, finalize_run.
    """

    def __init__(self, storage_path: Optional[str] = None):
        """
        Initialize run tracker.

        Args:
            storage_path: Directory for run data.
                         Defaults to ~/.linkscore/runs/
        """
        if storage_path is None:
            storage_path = os.getenv(
                "LINKSCORE_RUNS_PATH",
                str(Path.home() / ".linkscore" / "runs")
            )

        self.storage_path = Path(storage_path)
        self.storage_path.mkdir(parents=True, exist_ok=True)

    def _get_run_path(self, run_id: str) -> Path:
        """Get path for run file."""
        return self.storage_path / f"{run_id}.json"

    def _save_run(self, run: Run):
        """Persist run to storage (atomic replace)."""
        path = self._get_run_path(run.run_id)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w") as f:
            json.dump(run.to_dict(), f, indent=2)
        os.replace(tmp_path, path)

    def create_run(self, domain: str, request: Optional[Dict[str, Any]] = None) -> Run:
        """
        Create a new analysis run.

        Returns:
            The created Run object
        """
        run_id = f"run_{uuid.uuid4().hex[:16]}"
        now = datetime.now()

        run = Run(
            run_id=run_id,
            domain=domain,
            status=RunStatus.CREATED,
            created_at=now,
            updated_at=now,
            request=request or {},
        )
        self._save_run(run)

        logger.info(f"Created run {run_id} for {domain}")
        return run

    def get_run(self, run_id: str) -> Optional[Run]:
        """Load a run from storage."""
        path = self._get_run_path(run_id)
        if not path.exists():
            return None

        with open(path, "r") as f:
            return Run.from_dict(json.load(f))

    def read_run_status(self, run_id: str) -> Optional[RunStatus]:
        """Current status of a run, or None if unknown."""
        run = self.get_run(run_id)
        return run.status if run else None

    def update_run_status(
        self,
        run_id: str,
        status: RunStatus,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Optional[Run]:
        """
        Update a run's status.

        Args:
            run_id: Run ID
            status: New status
            payload: Progress record (processing) or {"error": message} (failed)

        Returns:
            Updated Run or None if not found

        Raises:
            InvalidRunTransition: If the run is already terminal
        """
        run = self.get_run(run_id)
        if not run:
            return None

        run.transition(status)

        if payload:
            if status == RunStatus.PROCESSING:
                run.progress = payload
                run.current_step = payload.get("step", run.current_step)
                run.progress_percent = int(payload.get("percentage", run.progress_percent))
            elif status == RunStatus.FAILED:
                run.error_message = payload.get("error")

        self._save_run(run)
        return run

    def finalize_run(self, run_id: str, bundle: Dict[str, Any]) -> Optional[Run]:
        """Mark run as completed with its result bundle."""
        run = self.get_run(run_id)
        if not run:
            return None

        run.transition(RunStatus.COMPLETED)
        run.result = bundle
        run.current_step = "completed"
        run.progress_percent = 100
        run.api_cost = float(bundle.get("total_cost", 0.0))
        self._save_run(run)

        logger.info(f"Completed run {run_id}")
        return run

    def fail_run(self, run_id: str, error_message: str) -> Optional[Run]:
        """Mark run as failed."""
        return self.update_run_status(run_id, RunStatus.FAILED, {"error": error_message})

    def cancel_run(self, run_id: str) -> Optional[Run]:
        """Cancel a created or processing run. Returns None if already terminal."""
        run = self.get_run(run_id)
        if not run or run.status.is_terminal:
            return None

        run.transition(RunStatus.CANCELLED)
        self._save_run(run)

        logger.info(f"Cancelled run {run_id}")
        return run

    def list_runs(
        self,
        status: Optional[RunStatus] = None,
        domain: Optional[str] = None,
        limit: int = 100,
    ) -> List[Run]:
        """
        List runs with optional filters, newest first.

        Args:
            status: Filter by status
            domain: Filter by domain
            limit: Maximum number of runs to return
        """
        runs = []
        for file_path in self.storage_path.glob("*.json"):
            try:
                with open(file_path, "r") as f:
                    runs.append(Run.from_dict(json.load(f)))
            except (OSError, ValueError, KeyError) as e:
                logger.warning(f"Failed to load run from {file_path}: {e}")

        if status:
            runs = [r for r in runs if r.status == status]
        if domain:
            runs = [r for r in runs if r.domain == domain]

        runs.sort(key=lambda r: r.created_at, reverse=True)
        return runs[:limit]
