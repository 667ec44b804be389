from campus_points.observability.points import PointsObservabilityStore


def test_points_store_aggregates_outcomes() -> None:
    store = PointsObservabilityStore()
    store.record_checkin("awarded", 20)
    store.record_checkin("daily_limit", 0)
    store.record_checkin_rejected("outside_window")
    store.record_redemption(50)
    store.record_redemption_rejected("insufficient_balance")
    store.record_code_collision()

    snapshot = store.snapshot().as_dict()

    assert snapshot["checkins"] == {
        "recorded": 2,
        "reward:awarded": 1,
        "reward:daily_limit": 1,
        "rejected:outside_window": 1,
    }
    assert snapshot["redemptions"] == {
        "issued": 1,
        "rejected:insufficient_balance": 1,
        "code_collisions": 1,
    }
    assert snapshot["points"] == {"awarded": 20, "spent": 50}

    store.reset()
    assert store.snapshot().as_dict() == {"checkins": {}, "redemptions": {}, "points": {}}
