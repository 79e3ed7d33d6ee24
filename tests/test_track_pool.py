import pytest

from tracker.botsort.kalmanfilter import KalmanFilter
from tracker.botsort.track import IdAllocator, STrack, TrackState, TrackStateError
from tracker.botsort.track_pool import LOST, REMOVED, TRACKED, TrackPool


@pytest.fixture
def ids():
    return IdAllocator()


def new_track(ids):
    t = STrack((0., 0., 10., 10.), 0.9)
    t.activate(KalmanFilter(), 1, ids)
    return t


def test_transfer_moves_between_roles(ids):
    pool = TrackPool()
    t = new_track(ids)
    pool.transfer(t, TRACKED)
    assert pool.tracked == [t]

    t.mark_lost()
    pool.transfer(t, LOST)
    assert pool.tracked == []
    assert pool.lost == [t]
    assert pool.role_of(t) == LOST
    assert len(pool) == 1


def test_transfer_checks_state(ids):
    pool = TrackPool()
    t = new_track(ids)
    with pytest.raises(TrackStateError):
        pool.transfer(t, LOST)
    with pytest.raises(ValueError):
        pool.transfer(t, 'archived')


def test_unactivated_track_rejected():
    with pytest.raises(TrackStateError):
        TrackPool().transfer(STrack((0., 0., 1., 1.), 0.5), TRACKED)


def test_removed_cannot_come_back(ids):
    pool = TrackPool()
    t = new_track(ids)
    t.mark_removed()
    pool.transfer(t, REMOVED)
    t.state = TrackState.Tracked  # forced, bypassing the state machine
    with pytest.raises(TrackStateError):
        pool.transfer(t, TRACKED)


def test_commit_rejects_double_listing(ids):
    pool = TrackPool()
    a = new_track(ids)
    pool.commit([a], [], [])
    with pytest.raises(TrackStateError):
        pool.commit([a], [a], [])
    assert pool.tracked == [a]


def test_commit_rejects_silent_drop(ids):
    pool = TrackPool()
    a, b = new_track(ids), new_track(ids)
    pool.commit([a, b], [], [])
    with pytest.raises(TrackStateError):
        pool.commit([a], [], [])
    assert pool.tracked == [a, b]


def test_commit_and_removed_cap(ids):
    pool = TrackPool(max_removed=2)
    tracks = [new_track(ids) for _ in range(4)]
    pool.commit(tracks, [], [])

    for t in tracks:
        t.mark_removed()
    pool.commit([], [], tracks)
    assert pool.tracked == []
    assert [t.track_id for t in pool.removed] == [3, 4]
    assert len(pool) == 2
