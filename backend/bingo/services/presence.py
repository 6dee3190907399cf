"""Presence registry: who is connected, on which socket, in which rooms.

Process-local routing cache, rebuilt from nothing on restart. It is never the
source of truth for session membership (the session store is); it only answers
"where do I send this". Mutated from Socket.IO handlers only, one at a time.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

# emit(event, payload, to)
Transport = Callable[[str, Any, str], None]


@dataclass(frozen=True)
class Identity:
    user_id: int
    username: str
    role: str = 'user'

    def to_dict(self):
        return {'user_id': self.user_id, 'username': self.username, 'role': self.role}


@dataclass
class PresenceEntry:
    identity: Identity
    sid: str
    rooms: Set[str] = field(default_factory=set)


class PresenceRegistry:

    def __init__(self, transport: Optional[Transport] = None):
        self._transport = transport
        self._by_user: Dict[int, PresenceEntry] = {}
        # Every open connection, including ones superseded by a newer login
        self._by_sid: Dict[str, PresenceEntry] = {}

    def bind(self, transport: Transport) -> None:
        self._transport = transport

    def clear(self) -> None:
        self._by_user.clear()
        self._by_sid.clear()

    def register(self, identity: Identity, sid: str) -> Optional[PresenceEntry]:
        """Make ``sid`` the routing target for ``identity``; returns the entry it replaced."""
        entry = PresenceEntry(identity=identity, sid=sid)
        previous = self._by_user.get(identity.user_id)
        self._by_user[identity.user_id] = entry
        self._by_sid[sid] = entry
        return previous

    def unregister(self, sid: str) -> Optional[PresenceEntry]:
        entry = self._by_sid.pop(sid, None)
        if entry is None:
            return None
        current = self._by_user.get(entry.identity.user_id)
        if current is not None and current.sid == sid:
            del self._by_user[entry.identity.user_id]
        return entry

    def lookup(self, user_id: int) -> Optional[PresenceEntry]:
        return self._by_user.get(int(user_id))

    def identity_for(self, sid: str) -> Optional[Identity]:
        entry = self._by_sid.get(sid)
        return entry.identity if entry else None

    def is_online(self, user_id: int) -> bool:
        return int(user_id) in self._by_user

    def online_user_ids(self) -> List[int]:
        return sorted(self._by_user)

    def join(self, sid: str, room: str) -> bool:
        """Returns False if the connection was already in the room."""
        entry = self._by_sid.get(sid)
        if entry is None or room in entry.rooms:
            return False
        entry.rooms.add(room)
        return True

    def leave(self, sid: str, room: str) -> bool:
        entry = self._by_sid.get(sid)
        if entry is None or room not in entry.rooms:
            return False
        entry.rooms.discard(room)
        return True

    def in_room(self, sid: str, room: str) -> bool:
        entry = self._by_sid.get(sid)
        return bool(entry and room in entry.rooms)

    def rooms_for(self, sid: str) -> Set[str]:
        entry = self._by_sid.get(sid)
        return set(entry.rooms) if entry else set()

    def members_of(self, room: str) -> List[Identity]:
        return [e.identity for e in self._by_sid.values() if room in e.rooms]

    def send_to_user(self, user_id: int, event: str, payload: Any) -> bool:
        """Point-to-point notification; a no-op when the user is not connected."""
        entry = self.lookup(user_id)
        if entry is None or self._transport is None:
            return False
        self._transport(event, payload, entry.sid)
        return True

    def broadcast_to_session(self, room: str, event: str, payload: Any) -> None:
        if self._transport is not None:
            self._transport(event, payload, room)


presence = PresenceRegistry()
