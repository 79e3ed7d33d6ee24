"""
    Single owner of a tracker's persistent tracks.

    Every track id is filed under exactly one role. Moving a track between the
    tracked, lost and removed lists is an explicit transfer, so a track can
    never be reachable from two lists at once.
"""
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional

from .track import STrack, TrackState, TrackStateError

TRACKED = 'tracked'
LOST = 'lost'
REMOVED = 'removed'
ROLES = (TRACKED, LOST, REMOVED)

_ROLE_STATES = {
    TRACKED: {TrackState.Tracked},
    LOST: {TrackState.Lost, TrackState.LongLost},
    REMOVED: {TrackState.Removed},
}


class TrackPool(object):

    def __init__(self, max_removed: int = 1000):
        self.max_removed = max_removed
        self._members: Dict[str, "OrderedDict[int, STrack]"] = {role: OrderedDict() for role in ROLES}
        self._role_of: Dict[int, str] = {}

    def __len__(self):
        return len(self._role_of)

    def __contains__(self, track: STrack):
        return track.track_id in self._role_of

    @property
    def tracked(self) -> List[STrack]:
        return list(self._members[TRACKED].values())

    @property
    def lost(self) -> List[STrack]:
        return list(self._members[LOST].values())

    @property
    def removed(self) -> List[STrack]:
        return list(self._members[REMOVED].values())

    def role_of(self, track: STrack) -> Optional[str]:
        return self._role_of.get(track.track_id)

    def transfer(self, track: STrack, role: str):
        """File ``track`` under ``role``, taking it out of whatever list held it before."""
        if role not in ROLES:
            raise ValueError(f"unknown role {role!r}")
        if track.track_id == 0:
            raise TrackStateError("only activated tracks can be owned by the pool")
        if track.state not in _ROLE_STATES[role]:
            raise TrackStateError(f"track {track.track_id} in state {track.state.name} cannot be {role}")

        previous = self._role_of.get(track.track_id)
        if previous == REMOVED and role != REMOVED:
            raise TrackStateError(f"track {track.track_id} was removed and cannot come back")
        if previous is not None:
            del self._members[previous][track.track_id]
        self._members[role][track.track_id] = track
        self._role_of[track.track_id] = role

        if role == REMOVED:
            self._trim_removed()

    def commit(self, tracked: Iterable[STrack], lost: Iterable[STrack], removed: Iterable[STrack]):
        """
        Replace the live lists with the outcome of a frame.

        Live tracks that are in neither ``tracked`` nor ``lost`` must be listed in
        ``removed``; a track listed under two roles is rejected before anything changes.
        """
        tracked, lost, removed = list(tracked), list(lost), list(removed)

        seen = {}
        for role, tracks in ((TRACKED, tracked), (LOST, lost), (REMOVED, removed)):
            for t in tracks:
                other = seen.get(t.track_id)
                if other is not None and other != role:
                    raise TrackStateError(f"track {t.track_id} listed as both {other} and {role}")
                if t.state not in _ROLE_STATES[role]:
                    raise TrackStateError(f"track {t.track_id} in state {t.state.name} cannot be {role}")
                if role != REMOVED and self._role_of.get(t.track_id) == REMOVED:
                    raise TrackStateError(f"track {t.track_id} was removed and cannot come back")
                seen[t.track_id] = role

        for track_id, role in self._role_of.items():
            if role != REMOVED and track_id not in seen:
                raise TrackStateError(f"live track {track_id} dropped without being removed")

        self._members[TRACKED] = OrderedDict()
        self._members[LOST] = OrderedDict()
        self._role_of = {tid: REMOVED for tid in self._members[REMOVED]}
        for t in tracked:
            self.transfer(t, TRACKED)
        for t in lost:
            self.transfer(t, LOST)
        for t in removed:
            self.transfer(t, REMOVED)

    def _trim_removed(self):
        removed = self._members[REMOVED]
        while len(removed) > self.max_removed:
            track_id, _ = removed.popitem(last=False)
            del self._role_of[track_id]
