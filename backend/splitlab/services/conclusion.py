"""Conclusion and deployment of split test winners."""
import structlog
from typing import Optional
from sqlalchemy.orm import Session

from splitlab.errors import DeploymentFailed, NotDeployable, ValidationError
from splitlab.models.split_test import SplitTest, ContentVersion, ExperimentStatus, Winner
from splitlab.models.types import utcnow
from splitlab.services import lifecycle
from splitlab.services.content_client import ContentSystemClient
from splitlab.services.store import SplitTestStore

logger = structlog.get_logger()


def check_deployable(split_test: SplitTest) -> None:
    """
    Raises:
        NotDeployable: Unless concluded with a real winner that is neither deployed nor being deployed
    """
    if split_test.status != ExperimentStatus.CONCLUDED:
        raise NotDeployable(f"Split test must be concluded before deploying (status: {split_test.status.value})")
    if split_test.winner in (None, Winner.NO_DIFFERENCE):
        raise NotDeployable("There is no winning version to deploy")
    if split_test.winner_deployed:
        raise NotDeployable("The winning version has already been deployed")
    if split_test.deployment_requested_at is not None:
        raise NotDeployable("A deployment of this split test is already in progress")


class ConclusionService:
    """Records human conclusions and hands winners to the content system."""

    def __init__(self, db: Session, content_client: Optional[ContentSystemClient] = None):
        self.db = db
        self.store = SplitTestStore(db)
        self.content_client = content_client

    def conclude(
        self,
        split_test_id,
        winner: Winner,
        notes: Optional[str] = None,
        reviewed_by: Optional[str] = None
    ) -> SplitTest:
        """
        Conclude a finished split test with a chosen winner.

        The winner may differ from the latest analysis, but only with notes
        explaining the override.

        Raises:
            InvalidTransition: Unless completed, stopped_ethics or stopped_manual
            ValidationError: Overriding the analysed winner without notes
        """
        notes = notes.strip() if notes else None

        def operation():
            split_test = self.store.get(split_test_id)
            lifecycle.ensure_transition(split_test, ExperimentStatus.CONCLUDED)

            latest = split_test.latest_analysis
            if latest is not None and latest.winner != winner and not notes:
                raise ValidationError(
                    f"Notes are required when choosing '{winner.value}' over the analysed winner "
                    f"'{latest.winner.value}'"
                )

            split_test.winner = winner
            split_test.conclusion_notes = notes
            split_test.reviewed_by = reviewed_by
            lifecycle.transition(split_test, ExperimentStatus.CONCLUDED)
            return split_test

        return self.store.run_atomically(operation)

    async def deploy(self, split_test_id) -> SplitTest:
        """
        Ask the content system to publish the winner of a concluded split test.

        The deployment is reserved (deployment_requested_at) before the
        request goes out, so overlapping calls send a single request.
        winner_deployed is only set once the content system acknowledges.
        A failed request releases the reservation and may be retried.

        Raises:
            NotDeployable: Not concluded, no winner, already deployed or in flight
            DeploymentFailed: The content system did not acknowledge
        """
        def reserve():
            split_test = self.store.get(split_test_id)
            check_deployable(split_test)
            split_test.deployment_requested_at = utcnow()
            winning_version = ContentVersion(split_test.winner.value)
            return {
                "module_id": split_test.module_id,
                "split_test_id": str(split_test.id),
                "winner": winning_version.value,
                "version": split_test.version_payload(winning_version),
            }

        request = self.store.run_atomically(reserve)

        logger.info(
            "deployment_requested",
            split_test_id=request["split_test_id"],
            module_id=request["module_id"],
            winner=request["winner"]
        )

        try:
            await self.content_client.request_deployment(**request)
        except DeploymentFailed as e:
            logger.error(
                "deployment_failed",
                split_test_id=request["split_test_id"],
                error=e.message
            )
            self.store.run_atomically(lambda: self._release(split_test_id))
            raise

        def acknowledge():
            current = self.store.get(split_test_id)
            current.winner_deployed = True
            current.deployed_at = utcnow()
            current.deployment_requested_at = None
            return current

        return self.store.run_atomically(acknowledge)

    def _release(self, split_test_id) -> None:
        self.store.get(split_test_id).deployment_requested_at = None
