"""
Checkpoint resolution from a table's commit timeline.

The checkpoint a round resumes from is stored on every sync commit under
CHECKPOINT_KEY. A user supplied override is recorded under
CHECKPOINT_RESET_KEY on the commit that used it, so the same override is
not applied twice.
"""

from typing import Optional
import logging

from core.exceptions import MissingCheckpointError
from schemas.result import ResumeCheckpoint
from schemas.timeline import Timeline

logger = logging.getLogger(__name__)

# Persisted verbatim in commit metadata; changing them orphans existing tables.
CHECKPOINT_KEY = "deltastreamer.checkpoint.key"
CHECKPOINT_RESET_KEY = "deltastreamer.checkpoint.reset_key"


class CheckpointResolver:
    """
    Decide which checkpoint the source should resume reading from.

    Resolution order:
    1. Table has completed commits and the override differs from the reset
       marker on the last commit: use the override (explicit reset)
    2. Last commit carries a resume checkpoint: use it
    3. Last commit carries neither: fail, the table was not built by a sync
    4. No history: use the override if any, else let the source decide
    """

    def resolve(
        self,
        timeline: Optional[Timeline],
        override: Optional[str] = None
    ) -> ResumeCheckpoint:
        """
        Args:
            timeline: Completed commit timeline, None when the table is new
            override: User supplied checkpoint

        Returns:
            ResumeCheckpoint with the value to pass to the source

        Raises:
            MissingCheckpointError: History exists without a resume checkpoint
        """
        resume: Optional[str] = None

        last_instant = timeline.last_instant() if timeline is not None else None
        if last_instant is not None:
            commit_metadata = timeline.get_commit_metadata(last_instant)
            if override is not None and override != commit_metadata.get_metadata(CHECKPOINT_RESET_KEY):
                resume = override
            elif commit_metadata.get_metadata(CHECKPOINT_KEY) is not None:
                resume = commit_metadata.get_metadata(CHECKPOINT_KEY)
            else:
                raise MissingCheckpointError(
                    "Unable to find previous checkpoint. Please double check if this table "
                    "was indeed built via delta sync",
                    context={
                        "last_instant": str(last_instant),
                        "instants": [str(i) for i in timeline.instants],
                        "commit_metadata": commit_metadata.to_json_string(),
                    }
                )

        if resume is None and override is not None:
            resume = override

        logger.info(f"Checkpoint to resume from : {resume}")

        return ResumeCheckpoint(value=resume, reset_marker=override)
