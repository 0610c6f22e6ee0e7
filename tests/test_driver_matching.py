"""
Tests for driver_matching module.

Run with: pytest tests/test_driver_matching.py -v
"""

import pytest
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from chauffeur.driver_matching import (
    DriverCandidate,
    MatchTier,
    best_driver,
    classify_match,
    describe_match,
    rank_drivers,
    score_driver,
)
from chauffeur.fare_models import Coordinates, RideRequest, ServiceType, VehicleClass
from chauffeur.geo import DriverLocation

NOW = datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)
DALLAS = Coordinates(32.7767, -96.7970)


def ride_from(pickup: Coordinates) -> RideRequest:
    return RideRequest(
        service_type=ServiceType.TRANSFER,
        vehicle_class=VehicleClass.BUSINESS_SEDAN,
        scheduled_at=NOW,
        pickup=pickup,
        estimated_distance_miles=10,
    )


def driver(driver_id: str, **overrides) -> DriverCandidate:
    values = dict(id=driver_id, is_active=True, is_available=True, rating=4.0, total_rides=10)
    values.update(overrides)
    return DriverCandidate(**values)


# ============================================================================
# SCORING TESTS
# ============================================================================

class TestScoreDriver:
    """Tests for the additive score."""

    def test_experienced_driver_beats_new_busy_one(self):
        """A: 20 + 30 + 19.2 + 15 + 5 = 89.2; B: 20 + 30 + 12 + 5ln6 - 10."""
        a = driver("A", rating=4.8, total_rides=120, upcoming_bookings_count=0)
        b = driver("B", rating=3.0, total_rides=5, upcoming_bookings_count=2)

        ranked = rank_drivers([b, a])

        assert [r.id for r in ranked] == ["A", "B"]
        assert ranked[0].match_score == pytest.approx(89.2)
        assert ranked[1].match_score == pytest.approx(60.959, abs=0.01)
        assert ranked[0].match_score > ranked[1].match_score

    def test_reasons_and_warnings(self):
        a = score_driver(driver("A", rating=4.8, total_rides=120))
        b = score_driver(driver("B", rating=3.0, total_rides=5, upcoming_bookings_count=2))

        assert a.match_reasons == (
            "Currently available",
            "Excellent rating (4.8/5)",
            "Experienced (120 rides)",
            "No pending rides",
        )
        assert a.warnings == ()
        assert b.warnings == ("2 upcoming rides",)

    def test_busy_driver(self):
        ranked = score_driver(driver("C", is_available=False))
        assert "Driver marked as busy" in ranked.warnings

    def test_single_upcoming_ride_wording(self):
        ranked = score_driver(driver("C", upcoming_bookings_count=1))
        assert ranked.warnings == ("1 upcoming ride",)

    def test_workload_penalty_capped(self):
        three = score_driver(driver("C", upcoming_bookings_count=3)).match_score
        ten = score_driver(driver("C", upcoming_bookings_count=10)).match_score
        assert three == ten

    def test_conflict_penalty(self):
        clear = score_driver(driver("C")).match_score
        conflicted = score_driver(driver("C", has_conflict=True))
        assert conflicted.match_score == pytest.approx(clear - 30)
        assert "Schedule conflict detected" in conflicted.warnings

    def test_score_is_unclamped(self):
        worst = driver(
            "Z", is_available=False, rating=0, total_rides=0, upcoming_bookings_count=5, has_conflict=True
        )
        assert score_driver(worst).match_score == pytest.approx(20 + 5 - 15 - 30)

    def test_invalid_rating_counts_as_zero(self):
        assert score_driver(driver("C", rating="n/a")).match_score == pytest.approx(
            score_driver(driver("C", rating=0)).match_score
        )


# ============================================================================
# DISTANCE TESTS
# ============================================================================

class TestDistanceScoring:
    """Tests for distance buckets."""

    @pytest.mark.parametrize(
        "lat_offset, bonus, reason",
        [
            (0.01, 20, "Very close"),
            (0.06, 15, "Nearby"),
            (0.15, 10, "Within range"),
            (0.30, 5, None),
        ],
    )
    def test_buckets(self, lat_offset, bonus, reason):
        location = DriverLocation(lat=DALLAS.lat + lat_offset, lng=DALLAS.lng)
        base = score_driver(driver("C")).match_score
        ranked = score_driver(driver("C", current_location=location), ride_from(DALLAS))

        assert ranked.match_score == pytest.approx(base + bonus)
        assert ranked.distance_km is not None
        if reason:
            assert any(r.startswith(reason) for r in ranked.match_reasons)

    def test_far_away(self):
        location = DriverLocation(lat=DALLAS.lat + 1, lng=DALLAS.lng)
        base = score_driver(driver("C")).match_score
        ranked = score_driver(driver("C", current_location=location), ride_from(DALLAS))

        assert ranked.match_score == pytest.approx(base)
        assert ranked.warnings[-1].startswith("Far away (")
        assert ranked.distance_miles == pytest.approx(ranked.distance_km * 0.621371)

    def test_no_request_no_distance(self):
        location = DriverLocation(lat=DALLAS.lat, lng=DALLAS.lng)
        ranked = score_driver(driver("C", current_location=location))
        assert ranked.distance_km is None

    def test_stale_location_ignored(self):
        stale = DriverLocation(lat=DALLAS.lat, lng=DALLAS.lng, timestamp=NOW - timedelta(hours=2))
        candidate = driver("C", current_location=stale)
        request = ride_from(DALLAS)

        fresh_score = score_driver(candidate, request)
        stale_score = score_driver(candidate, request, now=NOW, max_location_age=timedelta(minutes=30))

        assert fresh_score.distance_km == pytest.approx(0)
        assert stale_score.distance_km is None
        assert stale_score.match_score == pytest.approx(fresh_score.match_score - 20)


# ============================================================================
# RANKING TESTS
# ============================================================================

class TestRankDrivers:
    """Tests for rank_drivers and best_driver."""

    def test_inactive_never_ranked(self):
        candidates = [driver("A"), driver("B", is_active=False), driver("C", rating=5.0)]
        ranked = rank_drivers(candidates)
        assert "B" not in [r.id for r in ranked]
        assert len(ranked) == 2

    def test_ties_broken_by_id(self):
        ranked = rank_drivers([driver("c"), driver("a"), driver("b")])
        assert [r.id for r in ranked] == ["a", "b", "c"]

    def test_sorted_descending(self):
        candidates = [driver(str(i), rating=i % 5, total_rides=i * 7, upcoming_bookings_count=i % 3) for i in range(20)]
        scores = [r.match_score for r in rank_drivers(candidates)]
        assert scores == sorted(scores, reverse=True)

    def test_inputs_untouched(self):
        candidates = [driver("b"), driver("a", rating=5.0)]
        before = list(candidates)
        rank_drivers(candidates)
        assert candidates == before

    def test_best_driver(self):
        assert best_driver([driver("A"), driver("B", rating=5.0)]).id == "B"

    def test_best_driver_empty(self):
        assert best_driver([driver("A", is_active=False)]) is None


# ============================================================================
# PRESENTATION TESTS
# ============================================================================

class TestDescribeMatch:
    """Tests for classify_match and describe_match."""

    @pytest.mark.parametrize(
        "score, tier",
        [(95, MatchTier.BEST), (80, MatchTier.BEST), (79.9, MatchTier.GOOD), (60, MatchTier.GOOD),
         (45, MatchTier.FAIR), (39, MatchTier.LOW), (-20, MatchTier.LOW)],
    )
    def test_classify(self, score, tier):
        assert classify_match(score) == tier

    def test_describe_uses_reasons(self):
        ranked = score_driver(driver("A", rating=4.8, total_rides=120))
        summary = describe_match(ranked)

        assert summary.badge == MatchTier.BEST
        assert summary.description.startswith("Currently available • Excellent rating")

    def test_describe_low_match_uses_warnings(self):
        ranked = score_driver(driver("Z", is_available=False, rating=0, total_rides=0, has_conflict=True))
        summary = describe_match(ranked)

        assert summary.badge == MatchTier.LOW
        assert summary.description == "Driver marked as busy • Schedule conflict detected"

    def test_to_dict(self):
        data = score_driver(driver("A", rating=4.8, total_rides=120)).to_dict()
        assert data["driver_id"] == "A"
        assert data["match_score"] == 89.2
        assert data["match_tier"] == "Best Match"

    def test_replace_keeps_candidate_frozen(self):
        candidate = driver("A")
        with pytest.raises(Exception):
            candidate.rating = 1.0
        assert replace(candidate, rating=1.0).rating == 1.0
