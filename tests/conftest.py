from decimal import Decimal

import pytest

from pickem import create_app, db
from pickem.models import AnonymousPick, Game, Pick, User
from pickem.services.settlement_service import SettlementService


@pytest.fixture
def app():
    app = create_app("testing")

    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


@pytest.fixture
def service(app):
    """Settlement service without socket broadcasts"""
    return SettlementService(notify=False)


@pytest.fixture
def make_user(app):
    def _make_user(username, is_admin=False, display_name=None):
        user = User(
            username=username,
            email=f"{username}@example.com",
            display_name=display_name,
            is_admin=is_admin,
        )
        user.generate_api_token()
        db.session.add(user)
        db.session.commit()
        return user

    return _make_user


@pytest.fixture
def admin(make_user):
    return make_user("commissioner", is_admin=True)


@pytest.fixture
def admin_headers(admin):
    return {"Authorization": f"Bearer {admin.api_token}"}


@pytest.fixture
def make_game(app):
    def _make_game(
        home_team="Georgia",
        away_team="Clemson",
        spread="-13.5",
        season=2024,
        week=1,
        status="scheduled",
        home_score=None,
        away_score=None,
    ):
        game = Game(
            season=season,
            week=week,
            home_team=home_team,
            away_team=away_team,
            spread=Decimal(spread),
            status=status,
            home_score=home_score,
            away_score=away_score,
        )
        db.session.add(game)
        db.session.commit()
        return game

    return _make_game


@pytest.fixture
def make_pick(app):
    def _make_pick(user, game, team, is_lock=False):
        pick = Pick(
            user_id=user.id,
            game_id=game.id,
            season=game.season,
            week=game.week,
            selected_team=team,
            is_lock=is_lock,
        )
        db.session.add(pick)
        db.session.commit()
        return pick

    return _make_pick


@pytest.fixture
def make_anonymous_pick(app):
    def _make_anonymous_pick(email, game, team, is_lock=False, assigned_user=None):
        pick = AnonymousPick(
            email=email,
            name=email.split("@")[0],
            game_id=game.id,
            season=game.season,
            week=game.week,
            selected_team=team,
            is_lock=is_lock,
        )
        if assigned_user is not None:
            pick.assign_to_user(assigned_user)
        db.session.add(pick)
        db.session.commit()
        return pick

    return _make_anonymous_pick
