"""Unit tests for watchlist and alert management."""

import pytest
from sqlalchemy import func, select

from pm_indexer.models import Alert, AlertEvent, WatchlistItem
from pm_indexer.watchlists import store
from pm_indexer.watchlists.store import ConflictError, InvalidAlertError, NotFoundError
from tests.conftest import kalshi_raw, seed_market

OWNER = "user-1"


@pytest.mark.unit
class TestWatchlists:
    """Test watchlist CRUD."""

    def test_create_and_list(self, db_session):
        """Test item counts in the listing."""
        first = store.create_watchlist(db_session, OWNER, "Macro")
        store.create_watchlist(db_session, OWNER, "Crypto")
        market = seed_market(db_session, kalshi_raw("A"))
        store.add_item(db_session, OWNER, first.id, market.id)

        listed = {w["name"]: w["item_count"] for w in store.list_watchlists(db_session, OWNER)}

        assert listed == {"Macro": 1, "Crypto": 0}

    def test_duplicate_name_conflicts(self, db_session):
        """Test names are unique per owner only."""
        store.create_watchlist(db_session, OWNER, "Macro")

        with pytest.raises(ConflictError):
            store.create_watchlist(db_session, OWNER, "Macro")
        assert store.create_watchlist(db_session, "user-2", "Macro").name == "Macro"

    def test_other_owners_cannot_see(self, db_session):
        """Test a foreign watchlist is reported as missing."""
        watchlist = store.create_watchlist(db_session, OWNER, "Macro")

        assert store.list_watchlists(db_session, "user-2") == []
        with pytest.raises(NotFoundError):
            store.watchlist_detail(db_session, "user-2", watchlist.id)

    def test_add_item_is_idempotent(self, db_session):
        """Test adding the same market twice keeps one row."""
        watchlist = store.create_watchlist(db_session, OWNER, "Macro")
        market = seed_market(db_session, kalshi_raw("A"))

        assert store.add_item(db_session, OWNER, watchlist.id, market.id) is True
        assert store.add_item(db_session, OWNER, watchlist.id, market.id) is False

        detail = store.watchlist_detail(db_session, OWNER, watchlist.id)
        assert [item["id"] for item in detail["items"]] == [market.id]

    def test_add_unknown_market(self, db_session):
        """Test markets must exist."""
        watchlist = store.create_watchlist(db_session, OWNER, "Macro")

        with pytest.raises(NotFoundError):
            store.add_item(db_session, OWNER, watchlist.id, "missing")

    def test_remove_item(self, db_session):
        """Test removal reports whether anything was removed."""
        watchlist = store.create_watchlist(db_session, OWNER, "Macro")
        market = seed_market(db_session, kalshi_raw("A"))
        store.add_item(db_session, OWNER, watchlist.id, market.id)

        assert store.remove_item(db_session, OWNER, watchlist.id, market.id) is True
        assert store.remove_item(db_session, OWNER, watchlist.id, market.id) is False

    def test_delete_removes_items_alerts_and_events(self, db_session, fixed_now):
        """Test deleting a watchlist leaves nothing behind."""
        watchlist = store.create_watchlist(db_session, OWNER, "Macro")
        market = seed_market(db_session, kalshi_raw("A"))
        store.add_item(db_session, OWNER, watchlist.id, market.id)
        alert = store.create_alert(db_session, OWNER, watchlist.id, market.id, "price_move", threshold=0.1)
        db_session.add(AlertEvent(alert_id=alert.id, market_id=market.id, triggered_at=fixed_now, payload={}))
        db_session.commit()

        store.delete_watchlist(db_session, OWNER, watchlist.id)

        for model in (WatchlistItem, Alert, AlertEvent):
            assert db_session.execute(select(func.count()).select_from(model)).scalar() == 0


@pytest.mark.unit
class TestAlertDefinitions:
    """Test alert creation rules."""

    def test_price_move_requires_threshold(self, db_session):
        """Test a price_move alert without a threshold is rejected."""
        watchlist = store.create_watchlist(db_session, OWNER, "Macro")
        market = seed_market(db_session, kalshi_raw("A"))

        with pytest.raises(InvalidAlertError):
            store.create_alert(db_session, OWNER, watchlist.id, market.id, "price_move")

    def test_closing_soon_default_window(self, db_session):
        """Test closing_soon defaults to a 60 minute window and ignores threshold."""
        watchlist = store.create_watchlist(db_session, OWNER, "Macro")
        market = seed_market(db_session, kalshi_raw("A"))

        alert = store.create_alert(db_session, OWNER, watchlist.id, market.id, "closing_soon", threshold=0.3)

        assert alert.window_minutes == 60
        assert alert.threshold is None
        assert alert.enabled is True

    def test_unknown_type(self, db_session):
        """Test only the two alert types exist."""
        watchlist = store.create_watchlist(db_session, OWNER, "Macro")

        with pytest.raises(InvalidAlertError):
            store.create_alert(db_session, OWNER, watchlist.id, "m", "volume_spike")

    def test_delete_alert_checks_owner(self, db_session):
        """Test another owner cannot delete the alert."""
        watchlist = store.create_watchlist(db_session, OWNER, "Macro")
        market = seed_market(db_session, kalshi_raw("A"))
        alert = store.create_alert(db_session, OWNER, watchlist.id, market.id, "price_move", threshold=0.1)

        with pytest.raises(NotFoundError):
            store.delete_alert(db_session, "user-2", alert.id)

        store.delete_alert(db_session, OWNER, alert.id)
        assert store.list_alerts(db_session, OWNER, watchlist.id) == []
