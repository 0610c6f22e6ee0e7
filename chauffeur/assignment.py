"""
Assignment Coordinator

Commits one driver to a ride with a compare-and-set on the ride's
assignment version:

    state = read(ride)                      # current assignment + version
    compare_and_set(ride, state.version, new_assignment)
        -> True:  new assignment is active, version + 1
        -> False: someone else committed first -> AssignmentConflict

A ride therefore has at most one active assignment, and two dispatchers
acting on the same observed state cannot both win. An assign without an
expected version only succeeds on an unassigned ride. Reassignment is an
assign at the version the caller observed: the new Assignment supersedes
the old one, which stays in the history unchanged.

Locking is per ride: callers working on different rides never wait on
each other.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional, Protocol, Union

logger = logging.getLogger(__name__)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# VALUES
# ============================================================================

@dataclass(frozen=True)
class Assignment:
    """A driver committed to a ride. Never edited; superseded by a newer one."""
    ride_request_id: str
    driver_id: str
    assigned_at: datetime
    version: int = 1
    supersedes_driver_id: Optional[str] = None
    driver_payment: Optional[Decimal] = None

    def to_dict(self) -> dict:
        return {
            "rideRequestId": self.ride_request_id,
            "driverId": self.driver_id,
            "assignedAt": self.assigned_at.isoformat(),
            "version": self.version,
            "supersedesDriverId": self.supersedes_driver_id,
            "driverPayment": f"{self.driver_payment:.2f}" if self.driver_payment is not None else None,
        }


@dataclass(frozen=True)
class AssignmentState:
    """What a ride's assignment pointer looked like when it was read."""
    ride_request_id: str
    current: Optional[Assignment] = None
    version: int = 0


@dataclass(frozen=True)
class AssignmentConflict:
    """
    Lost compare-and-set. An expected outcome, returned rather than raised.

    current is the assignment that won (if the store could read it back);
    a caller that wants to retry must start again from current_version.
    """
    ride_request_id: str
    driver_id: str
    expected_version: int
    current_version: int
    current: Optional[Assignment] = None

    def to_dict(self) -> dict:
        return {
            "rideRequestId": self.ride_request_id,
            "driverId": self.driver_id,
            "expectedVersion": self.expected_version,
            "currentVersion": self.current_version,
            "currentDriverId": self.current.driver_id if self.current else None,
        }


AssignmentResult = Union[Assignment, AssignmentConflict]


class AssignmentStore(Protocol):
    async def read(self, ride_request_id: str) -> AssignmentState: ...

    async def compare_and_set(
        self,
        ride_request_id: str,
        expected_version: int,
        assignment: Assignment,
    ) -> bool: ...

    async def history(self, ride_request_id: str) -> list[Assignment]: ...


# ============================================================================
# IN-MEMORY STORE
# ============================================================================

class InMemoryAssignmentStore:
    """
    Process-local assignment store, safe across threads and event loops.

    Each ride id gets its own lock; the check and the write happen under
    that lock with no await in between. Locks are kept for the life of the
    store, alongside the ride's state and history, so memory grows with the
    number of rides seen.
    """

    def __init__(self):
        self._states: dict[str, AssignmentState] = {}
        self._history: dict[str, list[Assignment]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, ride_request_id: str) -> threading.Lock:
        lock = self._locks.get(ride_request_id)
        if lock is None:
            with self._locks_guard:
                lock = self._locks.setdefault(ride_request_id, threading.Lock())
        return lock

    async def read(self, ride_request_id: str) -> AssignmentState:
        with self._lock_for(ride_request_id):
            return self._states.get(ride_request_id, AssignmentState(ride_request_id))

    async def compare_and_set(
        self,
        ride_request_id: str,
        expected_version: int,
        assignment: Assignment,
    ) -> bool:
        with self._lock_for(ride_request_id):
            state = self._states.get(ride_request_id, AssignmentState(ride_request_id))
            if state.version != expected_version:
                return False
            self._states[ride_request_id] = AssignmentState(
                ride_request_id=ride_request_id,
                current=assignment,
                version=expected_version + 1,
            )
            self._history.setdefault(ride_request_id, []).append(assignment)
            return True

    async def history(self, ride_request_id: str) -> list[Assignment]:
        with self._lock_for(ride_request_id):
            return list(self._history.get(ride_request_id, []))


# ============================================================================
# COORDINATOR
# ============================================================================

def _no_active_assignment(state: AssignmentState) -> bool:
    return state.current is None


class AssignmentCoordinator:
    """Assigns drivers to rides through an AssignmentStore."""

    def __init__(self, store: AssignmentStore, clock: Callable[[], datetime] = now_utc):
        self.store = store
        self.clock = clock

    async def current(self, ride_request_id: str) -> AssignmentState:
        return await self.store.read(ride_request_id)

    async def history(self, ride_request_id: str) -> list[Assignment]:
        return await self.store.history(ride_request_id)

    async def assign(
        self,
        ride_request_id: str,
        driver_id: str,
        expected_version: Optional[int] = None,
        driver_payment: Optional[Decimal] = None,
    ) -> AssignmentResult:
        """
        Commit driver_id to the ride.

        Args:
            ride_request_id: Ride to assign
            driver_id: Driver to commit
            expected_version: The assignment version the caller based its
                decision on (e.g. when it ranked drivers). Omitted means
                the ride must still be unassigned (version 0); a
                reassignment has to pass the version it observed.
            driver_payment: Payout recorded on the assignment

        Returns:
            Assignment on success, AssignmentConflict if the ride's
            assignment changed since expected_version
        """
        if not ride_request_id or not driver_id:
            raise ValueError("ride_request_id and driver_id are required")

        if expected_version is None:
            expected_version = 0
        state = await self.store.read(ride_request_id)
        if expected_version != state.version:
            return self._conflict(ride_request_id, driver_id, expected_version, state)

        assignment = Assignment(
            ride_request_id=ride_request_id,
            driver_id=driver_id,
            assigned_at=self.clock(),
            version=expected_version + 1,
            supersedes_driver_id=state.current.driver_id if state.current else None,
            driver_payment=driver_payment,
        )

        if await self.store.compare_and_set(ride_request_id, expected_version, assignment):
            if assignment.supersedes_driver_id:
                logger.info(
                    f"Driver {driver_id} reassigned to ride {ride_request_id} "
                    f"(was {assignment.supersedes_driver_id}, v{assignment.version})"
                )
            else:
                logger.info(f"Driver {driver_id} assigned to ride {ride_request_id} (v{assignment.version})")
            return assignment

        latest = await self.store.read(ride_request_id)
        return self._conflict(ride_request_id, driver_id, expected_version, latest)

    async def assign_with_retry(
        self,
        ride_request_id: str,
        driver_id: str,
        max_attempts: int = 3,
        should_retry: Callable[[AssignmentState], bool] = _no_active_assignment,
        driver_payment: Optional[Decimal] = None,
    ) -> AssignmentResult:
        """
        assign() with bounded retries on conflict.

        Every retry re-reads the ride's latest state and asks should_retry
        whether assigning on top of it is still wanted. The default only
        retries while the ride has no active assignment, so a driver another
        dispatcher just committed is never silently replaced.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        result: Optional[AssignmentResult] = None
        for attempt in range(1, max_attempts + 1):
            state = await self.store.read(ride_request_id)
            if attempt > 1 and not should_retry(state):
                break
            result = await self.assign(
                ride_request_id,
                driver_id,
                expected_version=state.version,
                driver_payment=driver_payment,
            )
            if isinstance(result, Assignment):
                return result
        return result

    def _conflict(
        self,
        ride_request_id: str,
        driver_id: str,
        expected_version: int,
        latest: AssignmentState,
    ) -> AssignmentConflict:
        logger.debug(
            f"Assignment conflict on ride {ride_request_id}: driver {driver_id} expected "
            f"v{expected_version}, found v{latest.version}"
        )
        return AssignmentConflict(
            ride_request_id=ride_request_id,
            driver_id=driver_id,
            expected_version=expected_version,
            current_version=latest.version,
            current=latest.current,
        )
