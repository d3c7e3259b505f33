from pickem.models import AdminAction


class TestPublicEndpoints:
    def test_games_filtered_by_week(self, client, make_game):
        make_game(week=1)
        make_game(home_team="Texas", away_team="Oklahoma", week=2)

        response = client.get("/api/games?season=2024&week=2")

        assert response.status_code == 200
        games = response.get_json()["games"]
        assert [g["home_team"] for g in games] == ["Texas"]

        # Query string is part of the cache key
        response = client.get("/api/games?season=2024&week=1")
        assert [g["home_team"] for g in response.get_json()["games"]] == ["Georgia"]

    def test_game_detail_includes_pick_distribution(self, client, make_game, make_user, make_pick):
        game = make_game()
        make_pick(make_user("alice"), game, "Clemson")

        data = client.get(f"/api/games/{game.id}").get_json()

        assert data["picks_count"]["away_team"] == 1
        assert data["picks_count"]["total"] == 1

    def test_missing_game_is_404(self, client):
        response = client.get("/api/games/9999")

        assert response.status_code == 404
        assert "not found" in response.get_json()["error"]

    def test_weekly_leaderboard(self, client, service, make_game, make_user, make_pick):
        game = make_game()
        make_pick(make_user("alice"), game, "Georgia")
        service.record_game_state(game.id, 34, 3, "completed")

        data = client.get("/api/leaderboard/weekly/2024/1").get_json()

        assert data["standings"][0]["total_points"] == 21
        assert data["winners"][0]["display_name"] == "alice"


class TestAdminAuth:
    def test_requires_token(self, client, make_game):
        game = make_game()
        response = client.post(f"/api/admin/games/{game.id}/score", json={})
        assert response.status_code == 401

    def test_rejects_unknown_token(self, client, make_game):
        game = make_game()
        response = client.post(
            f"/api/admin/games/{game.id}/score",
            json={},
            headers={"Authorization": "Bearer not-a-token"},
        )
        assert response.status_code == 401

    def test_requires_admin(self, client, make_game, make_user):
        game = make_game()
        player = make_user("alice")

        response = client.get(
            f"/api/admin/games/{game.id}/picks",
            headers={"Authorization": f"Bearer {player.api_token}"},
        )
        assert response.status_code == 403


class TestAdminEndpoints:
    def test_final_score_settles_game(self, client, admin_headers, make_game, make_user, make_pick):
        game = make_game()
        make_pick(make_user("alice"), game, "Georgia")

        response = client.post(
            f"/api/admin/games/{game.id}/score",
            json={"home_score": 34, "away_score": 3, "status": "completed"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        report = response.get_json()
        assert report["outcome"] == "settled"
        assert report["settlement"]["winner_against_spread"] == "Georgia"
        assert report["settlement"]["margin_bonus"] == 1
        assert report["picks_updated"] == 1

        actions = client.get(
            f"/api/admin/games/{game.id}/actions", headers=admin_headers
        ).get_json()
        assert [a["action_type"] for a in actions] == ["record_score"]

    def test_score_requires_status(self, client, admin_headers, make_game):
        game = make_game()

        response = client.post(
            f"/api/admin/games/{game.id}/score",
            json={"home_score": 34, "away_score": 3},
            headers=admin_headers,
        )
        assert response.status_code == 400

    def test_invalid_score_is_400(self, client, admin_headers, make_game):
        game = make_game()

        response = client.post(
            f"/api/admin/games/{game.id}/score",
            json={"home_score": "34", "away_score": 3, "status": "completed"},
            headers=admin_headers,
        )
        assert response.status_code == 400

        response = client.post(
            f"/api/admin/games/{game.id}/score",
            json={"home_score": 34, "away_score": 3, "status": "final"},
            headers=admin_headers,
        )
        assert response.status_code == 400

    def test_score_for_missing_game_is_404(self, client, admin_headers):
        response = client.post(
            "/api/admin/games/9999/score",
            json={"home_score": 1, "away_score": 0, "status": "completed"},
            headers=admin_headers,
        )
        assert response.status_code == 404

    def test_force_settle_is_audited(self, client, admin_headers, make_game):
        game = make_game(status="completed", home_score=24, away_score=21, spread="-3")

        response = client.post(
            f"/api/admin/games/{game.id}/settle",
            json={"reason": "feed missed the final"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.get_json()["settlement"]["covering_side"] == "push"
        action = AdminAction.query.filter_by(game_id=game.id).one()
        assert "feed missed the final" in action.action_description

    def test_sweep_and_verify(self, client, admin_headers, make_game):
        make_game(status="completed", home_score=34, away_score=3)

        verify = client.get("/api/admin/settlements/verify", headers=admin_headers).get_json()
        assert verify["ok"] is False

        summary = client.post(
            "/api/admin/settlements/sweep", json={}, headers=admin_headers
        ).get_json()
        assert summary["games_settled"] == 1

        verify = client.get(
            "/api/admin/settlements/verify?season=2024", headers=admin_headers
        ).get_json()
        assert verify == {"ok": True, "issues": []}

    def test_sweep_rejects_non_integer_filters(self, client, admin_headers, make_game):
        make_game(status="completed", home_score=34, away_score=3)

        for body in ({"season": "2024"}, {"week": 1.5}, {"season": True}):
            response = client.post(
                "/api/admin/settlements/sweep", json=body, headers=admin_headers
            )
            assert response.status_code == 400
            assert "must be an integer" in response.get_json()["error"]

        summary = client.post(
            "/api/admin/settlements/sweep",
            json={"season": 2024, "week": 1},
            headers=admin_headers,
        ).get_json()
        assert summary["games_settled"] == 1

    def test_game_picks_lists_both_sources(
        self, client, admin_headers, make_game, make_user, make_pick, make_anonymous_pick
    ):
        game = make_game()
        make_pick(make_user("alice"), game, "Georgia")
        make_anonymous_pick("guest@example.com", game, "Clemson")

        data = client.get(
            f"/api/admin/games/{game.id}/picks", headers=admin_headers
        ).get_json()

        assert [p["source"] for p in data["picks"]] == ["authenticated"]
        assert [p["source"] for p in data["anonymous_picks"]] == ["anonymous"]
        assert "no-store" in client.get(
            f"/api/admin/games/{game.id}/picks", headers=admin_headers
        ).headers["Cache-Control"]

    def test_scheduler_status(self, client, admin_headers):
        data = client.get("/api/admin/scheduler/status", headers=admin_headers).get_json()

        assert data["is_running"] is False
        assert "stats" in data


def test_cached_games_refresh_after_settlement(client, service, make_game):
    game = make_game(status="completed", home_score=34, away_score=3)

    before = client.get("/api/games?season=2024").get_json()["games"]
    assert before[0]["is_settled"] is False

    service.settle_game(game.id)

    after = client.get("/api/games?season=2024").get_json()["games"]
    assert after[0]["winner_against_spread"] == "Georgia"
