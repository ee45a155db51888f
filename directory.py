import threading
from enum import Enum
from typing import Dict, List, Set

from errors import DirectoryInconsistencyError, InvalidIdentifierError
from logging_config import get_logger


class RoomLifecycle(str, Enum):
    EMPTY = "empty"
    ACTIVE = "active"


def _validate_id(value, kind: str) -> None:
    if not isinstance(value, str) or not value:
        raise InvalidIdentifierError(f"{kind} id must be a non-empty string, got {value!r}")


class Directory:
    """In-memory bidirectional index of rooms and participants.

    ``_rooms`` maps a room id to its members and ``_participants`` maps a
    participant id to the rooms it belongs to. Every mutation updates both
    maps under one lock. Members are kept in a dict used as an ordered set
    so ``participants_of`` lists them in join order.

    Unknown ids are never an error: lookups return empty results and
    removals are no-ops.
    """

    def __init__(self, logger=None):
        self._rooms: Dict[str, Dict[str, None]] = {}
        self._participants: Dict[str, Set[str]] = {}
        self._lock = threading.RLock()
        self.logger = logger or get_logger(__name__)

    def create_room(self, room_id: str) -> str:
        with self._lock:
            if room_id not in self._rooms:
                self._rooms[room_id] = {}
                self.logger.debug(f"Created room {room_id}")
            return room_id

    def add_participant(self, room_id: str, participant_id: str) -> None:
        _validate_id(room_id, "room")
        _validate_id(participant_id, "participant")
        with self._lock:
            members = self._rooms.setdefault(room_id, {})
            added = participant_id not in members
            members[participant_id] = None
            self._participants.setdefault(participant_id, set()).add(room_id)
        if added:
            self.logger.debug(f"Participant {participant_id} added to room {room_id} ({len(members)} members)")
        else:
            self.logger.debug(f"Participant {participant_id} already in room {room_id}")

    def remove_participant(self, room_id: str, participant_id: str) -> None:
        """Remove one membership. The room itself is kept even when empty."""
        with self._lock:
            members = self._rooms.get(room_id)
            if members is not None:
                members.pop(participant_id, None)
            self._drop_room_from_participant(participant_id, room_id)
        self.logger.debug(f"Participant {participant_id} removed from room {room_id}")

    def remove_room(self, room_id: str) -> None:
        with self._lock:
            members = self._rooms.pop(room_id, None)
            if members is None:
                return
            for participant_id in members:
                rooms = self._participants.get(participant_id)
                if rooms is None or room_id not in rooms:
                    raise DirectoryInconsistencyError(
                        f"Room {room_id} lists {participant_id} but the participant does not list the room"
                    )
                self._drop_room_from_participant(participant_id, room_id)
        self.logger.debug(f"Removed room {room_id} ({len(members)} members detached)")

    def _drop_room_from_participant(self, participant_id: str, room_id: str) -> None:
        rooms = self._participants.get(participant_id)
        if rooms is None:
            return
        rooms.discard(room_id)
        if not rooms:
            del self._participants[participant_id]

    def participants_of(self, room_id: str) -> List[str]:
        with self._lock:
            return list(self._rooms.get(room_id, ()))

    def rooms_of(self, participant_id: str) -> Set[str]:
        with self._lock:
            return set(self._participants.get(participant_id, ()))

    def room_exists(self, room_id: str) -> bool:
        with self._lock:
            return room_id in self._rooms

    def lifecycle(self, room_id: str) -> RoomLifecycle:
        with self._lock:
            if self._rooms.get(room_id):
                return RoomLifecycle.ACTIVE
            return RoomLifecycle.EMPTY

    def rooms(self) -> List[str]:
        with self._lock:
            return list(self._rooms)

    def participants(self) -> List[str]:
        with self._lock:
            return list(self._participants)

    def check_consistency(self) -> None:
        """Raise DirectoryInconsistencyError unless both maps mirror each other."""
        with self._lock:
            for room_id, members in self._rooms.items():
                for participant_id in members:
                    if room_id not in self._participants.get(participant_id, ()):
                        raise DirectoryInconsistencyError(
                            f"{participant_id} is a member of {room_id} but does not list it"
                        )
            for participant_id, rooms in self._participants.items():
                if not rooms:
                    raise DirectoryInconsistencyError(f"{participant_id} is kept with no rooms")
                for room_id in rooms:
                    if participant_id not in self._rooms.get(room_id, ()):
                        raise DirectoryInconsistencyError(
                            f"{participant_id} lists {room_id} but is not a member of it"
                        )

