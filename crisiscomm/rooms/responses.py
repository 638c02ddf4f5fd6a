"""
Stakeholder Response Tracker — records responses and correlates them to the
most recent unanswered communication addressed to the same stakeholder.

Correlation is by stakeholder id. Recipients recorded without an id fall
back to the stakeholder's registered email. Correlation is best-effort:
an uncorrelated response is still recorded.
"""

from typing import Optional

from crisiscomm.schemas.room import Response, Room


def find_pending_communication(room: Room, stakeholder_id: str) -> Optional[int]:
    """Index of the latest communication to this stakeholder with no response yet."""
    stakeholder = room.find_stakeholder(stakeholder_id)
    for index in range(len(room.communications) - 1, -1, -1):
        comm = room.communications[index]
        if comm.response_received:
            continue
        if stakeholder is not None:
            if comm.is_addressed_to(stakeholder):
                return index
        elif any(r.stakeholder_id == stakeholder_id for r in comm.recipients):
            return index
    return None


def record_response(room: Room, response: Response) -> Optional[int]:
    """
    Append the response and mark the correlated communication.

    Returns the index of the correlated communication, if any.
    """
    index = find_pending_communication(room, response.stakeholder_id)
    if index is not None:
        comm = room.communications[index]
        comm.response_received = True
        comm.response_content = response.content
        comm.response_at = response.received_at
        response.communication_index = index
    room.responses.append(response)
    return index
