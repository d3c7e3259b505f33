from pickem import db
from pickem.models import Game, Pick, User


def test_create_game_and_set_score(runner, make_user):
    result = runner.invoke(
        args=["game", "create", "2024", "1", "Clemson", "Georgia", "--spread", "-13.5"]
    )
    assert result.exit_code == 0
    assert "Created game" in result.output

    game = Game.query.one()
    db.session.add(
        Pick(
            user_id=make_user("alice").id,
            game_id=game.id,
            season=2024,
            week=1,
            selected_team="Georgia",
        )
    )
    db.session.commit()

    result = runner.invoke(args=["game", "set-score", str(game.id), "34", "3"])

    assert result.exit_code == 0
    assert "settled" in result.output
    assert "winner Georgia" in result.output
    assert Pick.query.one().points_earned == 21


def test_set_score_for_missing_game(runner):
    result = runner.invoke(args=["game", "set-score", "9999", "1", "0"])

    assert "not found" in result.output


def test_show_game(runner, make_game, make_anonymous_pick):
    game = make_game()
    make_anonymous_pick("guest@example.com", game, "Clemson", is_lock=True)

    result = runner.invoke(args=["game", "show", str(game.id)])

    assert "Clemson @ Georgia" in result.output
    assert "anon guest@example.com: Clemson" in result.output
    assert "Not settled" in result.output


def test_settle_pending_then_verify(runner, make_game):
    make_game(status="completed", home_score=34, away_score=3)

    result = runner.invoke(args=["settle", "verify"])
    assert result.exit_code == 1
    assert "unsettled_completed_game" in result.output

    result = runner.invoke(args=["settle", "pending", "--season", "2024"])
    assert "1 settled" in result.output

    result = runner.invoke(args=["settle", "verify"])
    assert result.exit_code == 0
    assert "consistent" in result.output


def test_settle_game_forces_resettlement(runner, make_game):
    game = make_game(status="completed", home_score=24, away_score=21, spread="-3")

    result = runner.invoke(args=["settle", "game", str(game.id), "--reason", "manual"])

    assert "settled" in result.output
    assert "winner push" in result.output


def test_repair_with_nothing_to_do(runner):
    result = runner.invoke(args=["settle", "repair"])
    assert "Nothing to repair" in result.output


def test_create_admin_prints_token(runner):
    result = runner.invoke(args=["user", "create-admin", "commish", "commish@example.com"])

    assert result.exit_code == 0
    user = User.query.filter_by(username="commish").one()
    assert user.is_admin
    assert user.api_token in result.output

    result = runner.invoke(args=["user", "create-admin", "commish", "other@example.com"])
    assert "already exists" in result.output


def test_assign_anonymous(runner, make_game, make_user, make_anonymous_pick):
    alice = make_user("alice")
    make_anonymous_pick("a@example.com", make_game(), "Georgia")

    result = runner.invoke(args=["user", "assign-anonymous", "a@example.com", "alice"])

    assert "Assigned 1 anonymous picks" in result.output
    assert alice.anonymous_picks.one().is_validated


def test_leaderboard_weekly(runner, service, make_game, make_user, make_pick):
    game = make_game()
    make_pick(make_user("alice"), game, "Georgia")
    service.record_game_state(game.id, 34, 3, "completed")

    result = runner.invoke(args=["leaderboard", "weekly", "2024", "1"])

    assert "alice" in result.output
    assert "21 pts" in result.output


def test_status(runner, make_game):
    make_game(status="completed", home_score=34, away_score=3)

    result = runner.invoke(args=["status"])

    assert "Games: 1 (1 completed, 0 settled)" in result.output
