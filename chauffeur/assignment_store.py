"""
Database-backed assignment store (optimistic concurrency).

Each compare_and_set runs in its own transaction:

    first assignment   INSERT ride_assignment_heads (version=1)
                       -> primary key collision means another writer won
    later assignments  UPDATE ride_assignment_heads SET version = version + 1
                       WHERE ride_request_id = :ride AND version = :expected
                       -> 0 rows updated means another writer won

No row is locked across rides, so dispatches for different rides proceed
independently.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .assignment import Assignment, AssignmentState
from .dispatch_models import RideAssignmentHead, RideAssignmentRecord

logger = logging.getLogger(__name__)


class _LostRace(Exception):
    """Internal: rolls back the transaction of a losing writer."""


class SqlAssignmentStore:
    """AssignmentStore over ride_assignment_heads / ride_assignments."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def read(self, ride_request_id: str) -> AssignmentState:
        async with self.session_factory() as session:
            head = await session.get(RideAssignmentHead, ride_request_id)
            if head is None:
                return AssignmentState(ride_request_id)

            current: Optional[Assignment] = None
            if head.current_assignment_id:
                record = await session.get(RideAssignmentRecord, head.current_assignment_id)
                if record is not None:
                    current = record.to_assignment()

            return AssignmentState(ride_request_id=ride_request_id, current=current, version=head.version)

    async def compare_and_set(
        self,
        ride_request_id: str,
        expected_version: int,
        assignment: Assignment,
    ) -> bool:
        record_id = str(uuid.uuid4())
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    if expected_version == 0:
                        session.add(
                            RideAssignmentHead(
                                ride_request_id=ride_request_id,
                                version=1,
                                current_assignment_id=record_id,
                                current_driver_id=assignment.driver_id,
                            )
                        )
                        await session.flush()
                    else:
                        result = await session.execute(
                            update(RideAssignmentHead)
                            .where(
                                RideAssignmentHead.ride_request_id == ride_request_id,
                                RideAssignmentHead.version == expected_version,
                            )
                            .values(
                                version=expected_version + 1,
                                current_assignment_id=record_id,
                                current_driver_id=assignment.driver_id,
                            )
                            .execution_options(synchronize_session=False)
                        )
                        if result.rowcount != 1:
                            raise _LostRace()

                        await session.execute(
                            update(RideAssignmentRecord)
                            .where(
                                RideAssignmentRecord.ride_request_id == ride_request_id,
                                RideAssignmentRecord.superseded_at.is_(None),
                            )
                            .values(superseded_at=assignment.assigned_at)
                            .execution_options(synchronize_session=False)
                        )

                    session.add(
                        RideAssignmentRecord(
                            id=record_id,
                            ride_request_id=ride_request_id,
                            driver_id=assignment.driver_id,
                            version=expected_version + 1,
                            assigned_at=assignment.assigned_at,
                            supersedes_driver_id=assignment.supersedes_driver_id,
                            driver_payment=assignment.driver_payment,
                        )
                    )
        except (_LostRace, IntegrityError):
            logger.debug(f"CAS lost on ride {ride_request_id} at v{expected_version}")
            return False

        return True

    async def history(self, ride_request_id: str) -> list[Assignment]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(RideAssignmentRecord)
                .where(RideAssignmentRecord.ride_request_id == ride_request_id)
                .order_by(RideAssignmentRecord.version)
            )
            return [record.to_assignment() for record in result.scalars().all()]
