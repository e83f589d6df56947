import random
from datetime import timedelta

import pytest

from helpers import at
from gps_match import (
    DEFAULT_MAX_GAP,
    Coordinate,
    MatchPolicy,
    PhotoRecord,
    TimeOrderedIndex,
    accept,
    find_nearest,
    match_all,
    match_photo,
)


def gps_photo(name, when):
    return PhotoRecord(identity=name, captured_at=when, coordinate=Coordinate(48.1, 11.5))


def query(name, when):
    return PhotoRecord(identity=name, captured_at=when)


def make_index(*clocks):
    return TimeOrderedIndex(gps_photo(c, at(c)) for c in clocks)


def test_index_is_sorted_by_capture_time():
    index = make_index('09:30', '09:00', '11:15', '09:10', '09:10', '08:59')

    stamps = [r.captured_at for r in index]
    assert all(a <= b for a, b in zip(stamps, stamps[1:]))
    assert list(index.timestamps) == stamps
    assert len(index) == 6


def test_index_rejects_photo_without_gps():
    with pytest.raises(ValueError):
        TimeOrderedIndex([gps_photo('a', at('09:00')), query('b', at('09:05'))])


def test_empty_index_has_no_match():
    result = find_nearest(TimeOrderedIndex(), at('12:00'))

    assert not result.found
    assert result.record is None
    assert result.delta is None
    assert result.accepted is False


def test_single_reference_is_always_returned():
    index = make_index('09:00')

    for clock in ('00:00', '08:59', '09:00', '09:01', '23:59'):
        result = find_nearest(index, at(clock))
        assert result.record.identity == '09:00'
        assert result.delta == abs(at(clock) - at('09:00'))


def test_exact_tie_prefers_later_photo():
    index = make_index('09:00', '09:10', '09:30')

    result = find_nearest(index, at('09:05'))

    assert result.record.identity == '09:10'
    assert result.delta == timedelta(minutes=5)


def test_closer_earlier_photo_wins():
    index = make_index('09:00', '09:10', '09:30')

    result = find_nearest(index, at('09:04:59'))

    assert result.record.identity == '09:00'
    assert result.delta == timedelta(minutes=4, seconds=59)


def test_exact_timestamp_has_zero_delta():
    index = make_index('09:00', '09:10', '09:30')

    result = find_nearest(index, at('09:10'))

    assert result.record.identity == '09:10'
    assert result.delta == timedelta(0)


def test_query_before_all_references():
    index = make_index('09:00', '09:10')

    result = find_nearest(index, at('08:00'))

    assert result.record.identity == '09:00'
    assert result.delta == timedelta(minutes=60)
    assert not MatchPolicy.from_minutes(20).accept(result.delta)


def test_query_after_all_references():
    index = make_index('09:00')

    result = find_nearest(index, at('23:00'))

    assert result.record.identity == '09:00'
    assert result.delta == timedelta(hours=14)


def test_index_find_nearest_shortcut():
    index = make_index('09:00', '10:00')

    assert index.find_nearest(at('09:45')).record.identity == '10:00'


@pytest.mark.parametrize('size', [1, 2, 3, 10, 57])
def test_matches_brute_force(size):
    rng = random.Random(size)
    base = at('00:00')
    index = TimeOrderedIndex(
        gps_photo(i, base + timedelta(seconds=rng.randrange(0, 86400))) for i in range(size)
    )

    for _ in range(200):
        when = base + timedelta(seconds=rng.randrange(-3600, 90000))
        expected = min(abs(r.captured_at - when) for r in index)

        result = find_nearest(index, when)

        assert result.delta == expected
        assert abs(result.record.captured_at - when) == expected


def test_accept_is_inclusive():
    gap = timedelta(minutes=20)

    assert accept(timedelta(minutes=19), gap)
    assert accept(gap, gap)
    assert not accept(gap + timedelta(seconds=1), gap)


def test_policy_defaults_and_validation():
    assert MatchPolicy().max_gap == DEFAULT_MAX_GAP
    assert MatchPolicy.from_minutes(2.5).max_gap == timedelta(minutes=2, seconds=30)
    assert not MatchPolicy().accept(None)
    with pytest.raises(ValueError):
        MatchPolicy(max_gap=timedelta(minutes=-1))


def test_match_photo_applies_policy():
    index = make_index('09:00', '09:10')
    policy = MatchPolicy.from_minutes(20)

    near = match_photo(index, query('near', at('09:25')), policy)
    far = match_photo(index, query('far', at('08:00')), policy)

    assert near.accepted
    assert near.query.identity == 'near'
    assert near.record.identity == '09:10'
    assert not far.accepted
    assert far.record.identity == '09:00'


def test_match_all_with_empty_index_skips_every_query():
    queries = [query('a', at('09:00')), query('b', at('10:00'))]

    results = list(match_all(TimeOrderedIndex(), queries, MatchPolicy()))

    assert [r.query.identity for r in results] == ['a', 'b']
    assert not any(r.found or r.accepted for r in results)


@pytest.mark.parametrize('minutes', [float('nan'), float('inf'), 1e20, -1])
def test_policy_from_minutes_rejects_unusable_windows(minutes):
    with pytest.raises(ValueError):
        MatchPolicy.from_minutes(minutes)
