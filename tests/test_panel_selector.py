import random
from unittest.mock import patch

from conftest import make_contest, make_population
from review_engine.database import get_db
from review_engine.models.contest import ContestPhase
from review_engine.services.panel_selector import ControlPools, PanelItem, PanelSelector


class TestPanelSelector:
    """Random reviewer and control selection"""

    def test_shuffle_keeps_every_item(self):
        selector = PanelSelector(random.Random(7))
        items = list(range(20))

        shuffled = selector.shuffle(items)

        assert sorted(shuffled) == items
        assert items == list(range(20))

    def test_seeded_selection_is_reproducible(self):
        pool = list(range(30))

        first = PanelSelector(random.Random(99)).select_reviewers(pool, 10)
        second = PanelSelector(random.Random(99)).select_reviewers(pool, 10)

        assert first == second
        assert len(set(first)) == 10

    def test_small_pool_returns_everyone(self):
        selector = PanelSelector(random.Random(1))
        assert selector.select_reviewers([1, 2, 3], 10) == [1, 2, 3]

    def test_zero_target_returns_nobody(self):
        selector = PanelSelector(random.Random(1))
        assert selector.select_reviewers([1, 2, 3], 0) == []

    def test_pick_one_from_empty_pool(self):
        assert PanelSelector(random.Random(1)).pick_one([]) is None

    def test_draw_controls_skips_held_submissions(self):
        selector = PanelSelector(random.Random(3))
        pools = ControlPools(positive=[10, 11], negative=[20])

        controls = selector.draw_controls(pools, reviewer_id=5, held_submission_ids={10})

        assert PanelItem(submission_id=11, is_control=True) in controls
        assert PanelItem(submission_id=20, is_control=True) in controls
        assert len(controls) == 2

    def test_draw_controls_with_empty_pools(self):
        selector = PanelSelector(random.Random(3))
        assert selector.draw_controls(ControlPools(), reviewer_id=5) == []

    def test_blind_panel_contains_target_once(self):
        selector = PanelSelector(random.Random(5))
        controls = [PanelItem(11, True), PanelItem(20, True)]

        panel = selector.build_blind_panel(4, controls)

        assert len(panel) == 3
        targets = [item for item in panel if not item.is_control]
        assert targets == [PanelItem(4, False)]

    def test_target_position_varies(self):
        selector = PanelSelector(random.Random(11))
        controls = [PanelItem(11, True), PanelItem(20, True)]

        positions = {
            [item.is_control for item in selector.build_blind_panel(4, controls)].index(False)
            for _ in range(50)
        }

        assert len(positions) > 1


class TestControlPools:

    def test_large_pool_is_sampled_beyond_the_oldest(self, db_setup):
        contest = make_contest(ContestPhase.AI_FILTERING)
        _, submissions = make_population(contest, 8)

        drawn = set()
        with patch('review_engine.services.panel_selector.CONTROL_POOL_LIMIT', 3):
            with get_db() as db:
                for seed in range(20):
                    pools = PanelSelector(random.Random(seed)).select_control_submissions(db, contest.id)
                    assert len(pools.positive) == 3
                    drawn.update(pools.positive)

        assert drawn - {s.id for s in submissions[:3]}

    def test_excluded_submissions_never_become_controls(self, db_setup):
        contest = make_contest(ContestPhase.AI_FILTERING)
        _, submissions = make_population(contest, 4)
        excluded = {submissions[0].id, submissions[2].id}

        with get_db() as db:
            pools = PanelSelector(random.Random(3)).select_control_submissions(db, contest.id, excluded)

        assert sorted(pools.positive) == [submissions[1].id, submissions[3].id]
        assert pools.negative == []
