"""
Tests for merging partial auto-processing settings updates.

Run with:
    pytest api/tests/routers/test_settings_router.py -v
"""
from decimal import Decimal

from fintrack.routers.auto_processing import merge_settings, settings_changes
from fintrack.schemas.recurring import AutoProcessingSettingsUpdate
from fintrack.services.locks import LocalLockProvider
from fintrack.services.recurring_processor import AutoProcessingSettings
from fintrack.services.stores import SqlSettingsProvider, processor_for_session
from recurring_fakes import RecordingNotifier, utc


# ── settings_changes ─────────────────────────────────────────────────────────

class TestSettingsChanges:
    def test_only_sent_fields(self):
        assert settings_changes(AutoProcessingSettingsUpdate(enabled=True)) == {"enabled": True}

    def test_empty_update(self):
        assert settings_changes(AutoProcessingSettingsUpdate()) == {}

    def test_explicit_null_ignored_for_flags(self):
        assert settings_changes(AutoProcessingSettingsUpdate(enabled=None, weekends_only=None)) == {}

    def test_explicit_null_processing_time_kept(self):
        changes = settings_changes(AutoProcessingSettingsUpdate(processing_time=None, enabled=True))
        assert changes == {"processing_time": None, "enabled": True}


# ── merge_settings ───────────────────────────────────────────────────────────

class TestMergeSettings:
    def test_merge_keeps_unsent_fields(self, db_session):
        SqlSettingsProvider(db_session).save(
            AutoProcessingSettings(max_amount=Decimal("2500"), exclude_categories=["Loans"])
        )
        db_session.commit()

        merged = merge_settings(db_session, {"enabled": True})
        db_session.commit()

        loaded = SqlSettingsProvider(db_session).load()
        assert merged == loaded
        assert loaded.enabled
        assert loaded.max_amount == Decimal("2500")
        assert loaded.exclude_categories == ["Loans"]
        assert loaded.processing_time == "09:00"

    def test_null_processing_time_disables_time_gate(self, db_session, rent_row):
        SqlSettingsProvider(db_session).save(AutoProcessingSettings(processing_time="09:00"))
        db_session.commit()

        update = AutoProcessingSettingsUpdate(
            processing_time=None,
            enabled=True,
            auto_process_expenses=True,
            require_confirmation=False,
        )
        merge_settings(db_session, settings_changes(update))
        db_session.commit()
        assert SqlSettingsProvider(db_session).load().processing_time is None

        processor = processor_for_session(db_session, notifier=RecordingNotifier(), locks=LocalLockProvider())
        # 03:00 UTC is far outside the old 09:00 window
        assert len(processor.run_auto_processing(now=utc(2024, 1, 5, 3, 0))) == 1
