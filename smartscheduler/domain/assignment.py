"""
Assignment of incoming team bookings to team members.

Works on an in-memory ``TeamPool`` snapshot. Loading the snapshot before and
persisting it after (together with the booking) is the caller's job.
"""

import logging
from typing import List, Optional, Tuple

from .exceptions import InvalidConfigError
from .models import (
    AssignmentMethod,
    AssignmentOutcome,
    AssignmentResult,
    CandidateSlot,
    TeamMember,
    TeamPool,
)

logger = logging.getLogger(__name__)


def _recency_key(indexed: Tuple[int, TeamMember]):
    """
    Order members by assignments per unit of weight, then from least to most
    recently assigned (never-assigned first), then by pool position.

    ``last_assigned_at`` is a slot start, so it only breaks ties: bookings may
    arrive out of calendar order.
    """
    index, member = indexed
    load = member.assignment_count / member.weight
    if member.last_assigned_at is None:
        return (load, 0, 0.0, index)
    return (load, 1, member.last_assigned_at.timestamp(), index)


class HostAssigner:
    """
    Picks the team member who receives a booking.

    ``assign`` never raises for availability outcomes; it reports them through
    ``AssignmentResult``. Use ``assign_host`` for the raising variant.
    """

    def assign(
        self,
        pool: TeamPool,
        slot: CandidateSlot,
        method: AssignmentMethod | str,
        specific_member_id: Optional[str] = None,
    ) -> AssignmentResult:
        """
        Assign ``slot`` to a member of ``pool``.

        On success the chosen member's ``last_assigned_at`` is set to the slot
        start and its ``assignment_count`` incremented.

        Raises:
            InvalidConfigError: Unknown method, or missing/unknown specific member
        """
        method = self._parse_method(method)

        if method == AssignmentMethod.SPECIFIC:
            return self._assign_specific(pool, slot, specific_member_id)

        eligible = self._eligible_members(pool, slot)
        if not eligible:
            logger.debug("No member of %s is free at %s", pool.name, slot.time_range)
            return AssignmentResult(
                outcome=AssignmentOutcome.NO_AVAILABLE_HOST,
                slot=slot,
                method=method,
                message=f"No member of team '{pool.name}' is available at {slot.time_range}",
            )

        if method == AssignmentMethod.POOLED:
            chosen = self._select_pooled(eligible)
        else:
            chosen = self._select_round_robin(pool, eligible)

        return self._record(pool, chosen, slot, method)

    @staticmethod
    def _parse_method(method: AssignmentMethod | str) -> AssignmentMethod:
        try:
            return AssignmentMethod(method)
        except ValueError as exc:
            raise InvalidConfigError(f"Unknown assignment method: {method}") from exc

    def _assign_specific(
        self,
        pool: TeamPool,
        slot: CandidateSlot,
        member_id: Optional[str],
    ) -> AssignmentResult:
        if not member_id:
            raise InvalidConfigError("Specific assignment requires a member id")

        member = pool.find_member(member_id)
        if member is None:
            raise InvalidConfigError(f"'{member_id}' is not a member of team '{pool.name}'")

        if not self._is_free(pool, member, slot):
            return AssignmentResult(
                outcome=AssignmentOutcome.HOST_UNAVAILABLE,
                slot=slot,
                method=AssignmentMethod.SPECIFIC,
                message=f"Host '{member_id}' is not available at {slot.time_range}",
            )

        return self._record(pool, member, slot, AssignmentMethod.SPECIFIC)

    @staticmethod
    def _is_free(pool: TeamPool, member: TeamMember, slot: CandidateSlot) -> bool:
        return member.is_available_for(
            slot.time_range,
            pool.buffer_before_minutes,
            pool.buffer_after_minutes,
        )

    def _eligible_members(self, pool: TeamPool, slot: CandidateSlot) -> List[Tuple[int, TeamMember]]:
        return [
            (index, member)
            for index, member in enumerate(pool.members)
            if self._is_free(pool, member, slot)
        ]

    @staticmethod
    def _select_pooled(eligible: List[Tuple[int, TeamMember]]) -> TeamMember:
        _, member = min(eligible, key=lambda item: (-item[1].weight, _recency_key(item)))
        return member

    @staticmethod
    def _select_round_robin(pool: TeamPool, eligible: List[Tuple[int, TeamMember]]) -> TeamMember:
        """
        The member with the fewest assignments per weight wins, except that a
        member keeps the turn until it has used ``weight`` consecutive
        assignments.
        """
        if pool.streak_member_id is not None:
            for _, member in eligible:
                if member.member_id == pool.streak_member_id and pool.streak_count < member.weight:
                    return member

        _, member = min(eligible, key=_recency_key)
        return member

    @staticmethod
    def _record(
        pool: TeamPool,
        member: TeamMember,
        slot: CandidateSlot,
        method: AssignmentMethod,
    ) -> AssignmentResult:
        member.last_assigned_at = slot.start
        member.assignment_count += 1

        if method == AssignmentMethod.ROUND_ROBIN:
            if pool.streak_member_id == member.member_id and pool.streak_count < member.weight:
                pool.streak_count += 1
            else:
                pool.streak_member_id = member.member_id
                pool.streak_count = 1

        logger.debug("Assigned %s to %s via %s", slot.time_range, member.member_id, method.value)
        return AssignmentResult(
            outcome=AssignmentOutcome.ASSIGNED,
            slot=slot,
            method=method,
            member_id=member.member_id,
        )


def assign_host(
    pool: TeamPool,
    slot: CandidateSlot,
    method: AssignmentMethod | str,
    specific_member_id: Optional[str] = None,
) -> AssignmentResult:
    """
    Assign ``slot`` to a member of ``pool``.

    Raises:
        HostUnavailableError: The specific member has a conflict at the slot
        NoAvailableHostError: No pool member is free at the slot
        InvalidConfigError: Unknown method or member
    """
    return HostAssigner().assign(pool, slot, method, specific_member_id).raise_for_status()
