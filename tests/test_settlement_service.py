import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from pickem import db
from pickem.exceptions import (
    ConcurrencyConflict,
    GameNotFound,
    InvalidInput,
    PersistenceFailure,
)
from pickem.models import AdminAction, AnonymousPick, Game, Pick
from pickem.services.settlement_service import SettlementService


def pick_rows(game_id):
    db.session.expire_all()
    picks = Pick.query.filter_by(game_id=game_id).order_by(Pick.id).all()
    anon = AnonymousPick.query.filter_by(game_id=game_id).order_by(AnonymousPick.id).all()
    return [(p.id, p.result, p.points_earned, p.updated_at) for p in picks + anon]


@pytest.fixture
def final_game(make_game, make_user, make_pick, make_anonymous_pick):
    """Georgia 34, Clemson 3, Georgia -13.5, with three picks"""
    game = make_game(spread="-13.5")
    alice = make_user("alice")
    bob = make_user("bob")
    make_pick(alice, game, "Georgia")
    make_pick(bob, game, "Clemson", is_lock=True)
    make_anonymous_pick("guest@example.com", game, "Georgia", is_lock=True)

    game.record_score(34, 3, "completed")
    db.session.commit()
    return game


class TestSettleGame:
    def test_settles_game_and_all_picks(self, service, final_game):
        report = service.settle_game(final_game.id)

        assert report.outcome == "settled"
        assert report.picks_updated == 2
        assert report.anonymous_picks_updated == 1

        game = db.session.get(Game, final_game.id)
        assert game.covering_side == "home"
        assert game.winner_against_spread == "Georgia"
        assert game.margin_bonus == 1
        assert game.base_points == 20
        assert game.settled_at is not None

        by_team = {
            (p.selected_team, p.is_lock): (p.result, p.points_earned)
            for p in game.picks.all() + game.anonymous_picks.all()
        }
        assert by_team[("Georgia", False)] == ("win", 21)
        assert by_team[("Clemson", True)] == ("loss", 0)
        assert by_team[("Georgia", True)] == ("win", 22)

    def test_second_run_is_a_no_op(self, service, final_game):
        service.settle_game(final_game.id)
        before = pick_rows(final_game.id)
        version = db.session.get(Game, final_game.id).version_id

        report = service.settle_game(final_game.id)

        assert report.outcome == "unchanged"
        assert report.total_picks_updated == 0
        assert pick_rows(final_game.id) == before
        assert db.session.get(Game, final_game.id).version_id == version

    def test_completed_without_away_score_is_skipped(self, service, make_game, make_user, make_pick):
        game = make_game(status="completed", home_score=34, away_score=None)
        make_pick(make_user("alice"), game, "Georgia")

        report = service.settle_game(game.id)

        assert report.outcome == "skipped"
        game = db.session.get(Game, game.id)
        assert not game.is_settled
        assert game.winner_against_spread is None
        assert all(result is None for _, result, _, _ in pick_rows(game.id))

    def test_scheduled_game_is_skipped(self, service, make_game):
        game = make_game()
        assert service.settle_game(game.id).outcome == "skipped"

    def test_unknown_game(self, service):
        with pytest.raises(GameNotFound):
            service.settle_game(9999)

    def test_push_scores_every_pick_ten(self, service, make_game, make_user, make_pick):
        game = make_game(spread="-3")
        make_pick(make_user("alice"), game, "Georgia", is_lock=True)
        make_pick(make_user("bob"), game, "Clemson")
        game.record_score(24, 21, "completed")
        db.session.commit()

        service.settle_game(game.id)

        game = db.session.get(Game, game.id)
        assert game.covering_side == "push"
        assert game.winner_against_spread == "push"
        assert [(r, p) for _, r, p, _ in pick_rows(game.id)] == [("push", 10), ("push", 10)]

    def test_bad_pick_leaves_every_pick_unsettled(self, service, final_game, make_user, make_pick):
        make_pick(make_user("carol"), final_game, "Alabama")

        with pytest.raises(InvalidInput):
            service.settle_game(final_game.id)

        assert not db.session.get(Game, final_game.id).is_settled
        assert all(result is None for _, result, _, _ in pick_rows(final_game.id))

    def test_commit_failure_is_rolled_back(self, service, final_game, monkeypatch):
        def failing_commit():
            raise OperationalError("UPDATE picks", {}, Exception("disk I/O error"))

        monkeypatch.setattr(db.session, "commit", failing_commit)

        with pytest.raises(PersistenceFailure):
            service.settle_game(final_game.id)

        monkeypatch.undo()
        assert not db.session.get(Game, final_game.id).is_settled
        assert all(result is None for _, result, _, _ in pick_rows(final_game.id))

    def test_conflict_is_retried(self, service, final_game, monkeypatch):
        real_commit = db.session.commit
        calls = []

        def flaky_commit():
            calls.append(1)
            if len(calls) == 1:
                raise StaleDataError("games row was updated concurrently")
            real_commit()

        monkeypatch.setattr(db.session, "commit", flaky_commit)

        report = service.settle_game(final_game.id)

        assert report.outcome == "settled"
        assert len(calls) == 2

    def test_concurrent_version_bump_is_retried(self, service, final_game, monkeypatch):
        real_apply = service._apply_settlement
        attempts = []

        def apply_with_rival_writer(game, settlement):
            attempts.append(game.version_id)
            if len(attempts) == 1:
                # Another writer commits on its own connection mid-transaction
                with db.engine.begin() as conn:
                    conn.execute(
                        text("UPDATE games SET version_id = version_id + 1 WHERE id = :id"),
                        {"id": game.id},
                    )
            return real_apply(game, settlement)

        monkeypatch.setattr(service, "_apply_settlement", apply_with_rival_writer)

        report = service.settle_game(final_game.id)

        assert report.outcome == "settled"
        assert len(attempts) == 2
        assert attempts[1] == attempts[0] + 1
        assert service.verify() == []

    def test_conflict_gives_up_after_retry_limit(self, final_game, monkeypatch):
        service = SettlementService(max_retries=3, notify=False)

        def stale_commit():
            raise StaleDataError("games row was updated concurrently")

        monkeypatch.setattr(db.session, "commit", stale_commit)

        with pytest.raises(ConcurrencyConflict) as excinfo:
            service.settle_game(final_game.id)
        assert excinfo.value.attempts == 3

    def test_pick_only_fix_bumps_game_version(self, service, final_game):
        service.settle_game(final_game.id)
        pick = Pick.query.filter_by(game_id=final_game.id, selected_team="Georgia").one()
        pick.points_earned = 99
        db.session.commit()
        version = db.session.get(Game, final_game.id).version_id

        report = service.settle_game(final_game.id)

        assert report.outcome == "settled"
        assert report.picks_updated == 1
        assert db.session.get(Pick, pick.id).points_earned == 21
        assert db.session.get(Game, final_game.id).version_id > version


class TestRecordGameState:
    def test_completion_settles_in_same_call(self, service, make_game, make_user, make_pick):
        game = make_game()
        make_pick(make_user("alice"), game, "Georgia")

        report = service.record_game_state(game.id, 34, 3, "completed")

        assert report.outcome == "settled"
        assert report.picks_updated == 1
        assert db.session.get(Game, game.id).is_settled

    def test_live_update_only_records(self, service, make_game):
        game = make_game()

        report = service.record_game_state(game.id, 7, 0, "in_progress")

        assert report.outcome == "recorded"
        game = db.session.get(Game, game.id)
        assert (game.home_score, game.away_score, game.status) == (7, 0, "in_progress")
        assert not game.is_settled

    def test_score_correction_resettles(self, service, final_game):
        service.settle_game(final_game.id)

        # Clemson actually lost by 10: Clemson covers +13.5
        report = service.record_game_state(final_game.id, 13, 3, "completed")

        assert report.outcome == "settled"
        game = db.session.get(Game, final_game.id)
        assert game.covering_side == "away"
        assert game.winner_against_spread == "Clemson"
        results = {p.selected_team: (p.result, p.points_earned) for p in game.picks.all()}
        assert results == {"Georgia": ("loss", 0), "Clemson": ("win", 20)}

    def test_revert_clears_settlement_and_picks(self, service, final_game):
        service.settle_game(final_game.id)

        report = service.record_game_state(final_game.id, 34, 3, "in_progress")

        assert report.outcome == "cleared"
        assert report.total_picks_updated == 3
        game = db.session.get(Game, final_game.id)
        assert not game.is_settled
        assert game.margin_bonus is None
        assert all(result is None for _, result, _, _ in pick_rows(game.id))

    def test_repeated_update_is_unchanged(self, service, final_game):
        service.record_game_state(final_game.id, 34, 3, "completed")
        before = pick_rows(final_game.id)

        report = service.record_game_state(final_game.id, 34, 3, "completed")

        assert report.outcome == "unchanged"
        assert pick_rows(final_game.id) == before

    def test_invalid_status_changes_nothing(self, service, final_game):
        with pytest.raises(ValueError):
            service.record_game_state(final_game.id, 34, 3, "final")

        game = db.session.get(Game, final_game.id)
        assert game.status == "completed"
        assert not game.is_settled

    def test_admin_entry_is_audited(self, service, final_game, admin):
        service.record_game_state(final_game.id, 35, 3, "completed", admin_user=admin)

        action = AdminAction.query.filter_by(game_id=final_game.id).one()
        assert action.action_type == "record_score"
        assert action.admin_user_id == admin.id
        assert action.action_metadata["old"]["home_score"] == 34
        assert action.action_metadata["new"]["home_score"] == 35


class TestForceResettle:
    def test_audits_even_when_nothing_changes(self, service, final_game, admin):
        service.settle_game(final_game.id)

        report = service.force_resettle(final_game.id, admin_user=admin, reason="recheck")

        assert report.outcome == "unchanged"
        action = AdminAction.query.filter_by(action_type="force_resettle").one()
        assert action.action_metadata["reason"] == "recheck"
        assert action.action_metadata["previous_winner"] == "Georgia"

    def test_unknown_game(self, service):
        with pytest.raises(GameNotFound):
            service.force_resettle(9999)


class TestSettlePending:
    def test_settles_only_completed_games(self, service, final_game, make_game):
        make_game(home_team="Texas", away_team="Oklahoma", spread="-3")
        other = make_game(
            home_team="Ohio State",
            away_team="Michigan",
            spread="2.5",
            status="completed",
            home_score=20,
            away_score=24,
        )

        summary = service.settle_pending()

        assert summary["games_processed"] == 2
        assert summary["games_settled"] == 2
        assert summary["picks_updated"] == 2
        assert summary["anonymous_picks_updated"] == 1
        assert summary["errors"] == []
        assert db.session.get(Game, other.id).winner_against_spread == "Michigan"

    def test_skips_settled_games_unless_asked(self, service, final_game):
        service.settle_game(final_game.id)

        assert service.settle_pending()["games_processed"] == 0

        summary = service.settle_pending(include_settled=True)
        assert summary["games_processed"] == 1
        assert summary["games_settled"] == 0

    def test_filters_by_week(self, service, final_game):
        assert service.settle_pending(season=2024, week=2)["games_processed"] == 0
        assert service.settle_pending(season=2024, week=1)["games_processed"] == 1

    def test_one_failing_game_does_not_block_others(self, service, final_game, make_game, monkeypatch):
        other = make_game(
            home_team="Ohio State",
            away_team="Michigan",
            spread="2.5",
            status="completed",
            home_score=20,
            away_score=24,
        )
        real_settle = service.settle_game

        def settle_game(game_id):
            if game_id == final_game.id:
                raise PersistenceFailure(game_id, "connection reset")
            return real_settle(game_id)

        monkeypatch.setattr(service, "settle_game", settle_game)

        summary = service.settle_pending()

        assert summary["games_settled"] == 1
        assert summary["errors"][0]["game_id"] == final_game.id
        assert db.session.get(Game, other.id).is_settled

    def test_pick_on_absent_team_does_not_block_others(
        self, service, final_game, make_game, make_user, make_pick
    ):
        make_pick(make_user("carol"), final_game, "Alabama")
        other = make_game(
            home_team="Ohio State",
            away_team="Michigan",
            spread="2.5",
            status="completed",
            home_score=20,
            away_score=24,
        )

        summary = service.settle_pending()

        assert summary["games_processed"] == 2
        assert summary["games_settled"] == 1
        assert [e["game_id"] for e in summary["errors"]] == [final_game.id]
        assert "Alabama" in summary["errors"][0]["error"]
        assert db.session.get(Game, other.id).winner_against_spread == "Michigan"
        assert not db.session.get(Game, final_game.id).is_settled


class TestVerifyAndRepair:
    def test_clean_after_settlement(self, service, final_game):
        service.settle_game(final_game.id)
        assert service.verify() == []

    def test_flags_unsettled_completed_game(self, service, final_game):
        issues = {issue["issue"] for issue in service.verify()}
        assert {"unsettled_completed_game", "unsettled_pick"} <= issues

    def test_repairs_tampered_pick(self, service, final_game):
        service.settle_game(final_game.id)
        pick = Pick.query.filter_by(game_id=final_game.id, selected_team="Clemson").one()
        pick.result = "win"
        pick.points_earned = 40
        db.session.commit()

        issues = service.verify(season=2024)
        assert [issue["issue"] for issue in issues] == ["incorrect_pick_result"]

        reports, errors = service.repair()

        assert errors == []
        assert [r.outcome for r in reports] == ["settled"]
        assert service.verify() == []
        assert db.session.get(Pick, pick.id).points_earned == 0

    def test_repairs_results_on_unfinished_game(self, service, make_game, make_user, make_pick):
        game = make_game(status="in_progress", home_score=7, away_score=0)
        pick = make_pick(make_user("alice"), game, "Georgia")
        pick.result = "win"
        pick.points_earned = 20
        db.session.commit()

        assert [i["issue"] for i in service.verify()] == ["picks_settled_before_completion"]

        reports, _ = service.repair()

        assert reports[0].outcome == "cleared"
        assert db.session.get(Pick, pick.id).result is None

    def test_bad_selected_team_is_reported_not_repaired(self, service, final_game, make_user, make_pick):
        make_pick(make_user("carol"), final_game, "Alabama")

        issues = {issue["issue"] for issue in service.verify()}
        assert "invalid_selected_team" in issues

        reports, errors = service.repair()
        assert reports == []
        assert errors[0]["game_id"] == final_game.id
