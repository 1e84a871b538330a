from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from conftest import make_contest
from config.config import Config
from review_engine.database import DatabaseManager
from review_engine.errors import NotFoundError, ValidationError
from review_engine.models import Contest
from review_engine.services.settings_provider import ContestSettings, ContestSettingsProvider


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestContestSettings:

    def test_defaults_come_from_config(self, db_setup):
        contest = make_contest()
        settings = ContestSettingsProvider().get(contest.id)

        assert settings.deadline_days == Config.DEFAULT_DEADLINE_DAYS
        assert settings.reviewers_per_verification == Config.REVIEWERS_PER_VERIFICATION
        assert settings.finalist_count == Config.FINALIST_COUNT

    def test_voting_rules_override_defaults(self, db_setup):
        contest = make_contest(voting_rules={'deadline_days': 3, 'results_visible': False, 'unknown': 1})
        settings = ContestSettingsProvider().get(contest.id)

        assert settings.deadline_days == 3
        assert settings.results_visible is False
        assert settings.trim_threshold == Config.TRIM_THRESHOLD

    def test_missing_contest(self, db_setup):
        with pytest.raises(NotFoundError):
            ContestSettingsProvider().get(999)

    def test_cached_until_ttl_passes(self, db_setup):
        contest = make_contest(voting_rules={'deadline_days': 3})
        clock = FakeClock()
        provider = ContestSettingsProvider(ttl_seconds=10, clock=clock)
        assert provider.get(contest.id).deadline_days == 3

        DatabaseManager(Contest).update(contest.id, voting_rules={'deadline_days': 5})
        clock.now = 9
        assert provider.get(contest.id).deadline_days == 3

        clock.now = 11
        assert provider.get(contest.id).deadline_days == 5

    def test_database_error_falls_back_to_defaults(self, db_setup):
        provider = ContestSettingsProvider()
        error = OperationalError('SELECT', {}, Exception('database is locked'))

        with patch('review_engine.services.settings_provider.get_db', side_effect=error):
            settings = provider.get(1)

        assert settings == ContestSettings.defaults()


class TestUpdateVotingRules:

    def test_update_merges_and_invalidates(self, db_setup):
        contest = make_contest(voting_rules={'deadline_days': 3})
        clock = FakeClock()
        provider = ContestSettingsProvider(ttl_seconds=10, clock=clock)
        provider.get(contest.id)

        settings = provider.update_voting_rules(contest.id, {'finalist_count': 25})

        assert settings.finalist_count == 25
        assert settings.deadline_days == 3
        assert DatabaseManager(Contest).get(contest.id).voting_rules == {'deadline_days': 3, 'finalist_count': 25}

    def test_unknown_rule_is_rejected(self, db_setup):
        contest = make_contest()
        with pytest.raises(ValidationError):
            ContestSettingsProvider().update_voting_rules(contest.id, {'quorum': 3})

    def test_values_are_type_checked(self, db_setup):
        contest = make_contest()
        provider = ContestSettingsProvider()
        with pytest.raises(ValidationError):
            provider.update_voting_rules(contest.id, {'deadline_days': 0})
        with pytest.raises(ValidationError):
            provider.update_voting_rules(contest.id, {'results_visible': 'yes'})
        with pytest.raises(ValidationError):
            provider.update_voting_rules(contest.id, {'finalist_count': True})
