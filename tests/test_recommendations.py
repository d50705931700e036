from datetime import datetime, timedelta, timezone

import pandas as pd
import pytest

import models
import recommender
from conftest import add_user
from recommender import Activity, PersonalizedScorer


def activity(watches, ratings):
    return Activity(
        movies=pd.DataFrame({"mov_uid": [1, 2, 3, 4], "age_rating": ["PG", "PG", "R", "PG"]}),
        movie_genres=pd.DataFrame({"mov_uid": [1, 2, 3, 4, 4], "genre_uid": [10, 10, 20, 10, 20]}),
        movie_cast=pd.DataFrame({"mov_uid": [1, 2, 2, 3], "fc_uid": [100, 100, 101, 102]}),
        watches=pd.DataFrame(watches, columns=["user_id", "mov_uid"]).astype("int64"),
        ratings=pd.DataFrame(ratings, columns=["user_id", "mov_uid", "rating_value"]).astype("int64"),
    )


def test_personal_score_components():
    scorer = PersonalizedScorer(activity([(1, 1)], [(1, 1, 5)]), similarity="agreement", neighbours=20, boost=0.1)

    # genre 1.0, cast 0.5, age rating 1.0
    assert scorer.score(1, 2) == pytest.approx(2.5 / 3)
    # genre 1.0 (unwatched genre 20 left out), no cast, age rating 1.0
    assert scorer.score(1, 4) == pytest.approx(2 / 3)
    assert scorer.score(1, 3) == pytest.approx(0.0)


def test_watched_movies_and_unknown_users_are_not_scored():
    scorer = PersonalizedScorer(activity([(1, 1)], [(1, 1, 5)]), boost=0.1)
    assert 1 not in scorer.scores_for(1).index
    assert scorer.rank(99) == []


def test_rank_orders_by_score_then_id():
    scorer = PersonalizedScorer(activity([(1, 1)], [(1, 1, 5)]), boost=0.1)
    assert [mov_uid for mov_uid, _ in scorer.rank(1)] == [2, 4, 3]
    assert len(scorer.rank(1, limit=1)) == 1


@pytest.mark.parametrize("metric", ["agreement", "cosine"])
def test_similar_users_boost_scores(metric):
    data = activity(
        watches=[(1, 1), (2, 1), (2, 4)],
        ratings=[(1, 1, 5), (2, 1, 5), (2, 4, 4)],
    )
    scorer = PersonalizedScorer(data, similarity=metric, neighbours=20, boost=0.1)
    assert scorer.score(1, 4) == pytest.approx(2 / 3 * 1.1)
    assert scorer.score(1, 2) == pytest.approx(2.5 / 3)


def test_low_peer_ratings_do_not_boost():
    data = activity(watches=[(1, 1), (2, 4)], ratings=[(1, 1, 5), (2, 4, 2)])
    scorer = PersonalizedScorer(data, neighbours=20, boost=0.1)
    assert scorer.score(1, 4) == pytest.approx(2 / 3)


def test_agreement_similarity_points():
    data = activity(
        watches=[(1, 1), (1, 2), (2, 1), (2, 2), (2, 3), (3, 1)],
        ratings=[(1, 1, 5), (1, 2, 3), (2, 1, 4), (2, 2, 1), (3, 1, 5)],
    )
    sims = recommender.agreement_similarity(data, 1)
    # user 2: off by one (0.75) + off by two (0.25) + unrated by either (0.5)
    assert sims[2] == pytest.approx(1.5)
    assert sims[3] == pytest.approx(1.0)


def test_unknown_metric_is_rejected():
    with pytest.raises(ValueError):
        PersonalizedScorer(activity([], []), similarity="pearson")


# --- Feed endpoints ---

@pytest.fixture
def people(catalogue):
    add_user(catalogue, 100)
    add_user(catalogue, 101)
    return catalogue


def test_new_releases_this_month(client, people):
    db = people
    today = datetime.now(timezone.utc).date()
    db.add_all([
        models.PlatformRelease(mov_uid=4, platform_uid=2, release_date=today),
        models.PlatformRelease(mov_uid=2, platform_uid=2, release_date=today.replace(day=1)),
        models.Watch(user_id=100, mov_uid=4),
        models.Watch(user_id=100, mov_uid=4),
        models.Watch(user_id=101, mov_uid=4),
        models.Rating(user_id=100, mov_uid=2, rating_value=5),
    ])
    db.commit()

    by_watches = client.get("/api/recommendations/new-releases").json()["movies"]
    assert [m["mov_uid"] for m in by_watches] == [4, 2]
    assert by_watches[0]["watch_count"] == 2

    by_rating = client.get("/api/recommendations/new-releases", params={"sortBy": "rating"}).json()["movies"]
    assert [m["mov_uid"] for m in by_rating] == [2, 4]
    assert by_rating[0]["avg_rating"] == 5.0

    unknown = client.get("/api/recommendations/new-releases", params={"sortBy": "nope"})
    assert unknown.status_code == 200
    assert unknown.json() == {"movies": by_watches}


def test_popular_recent_window(client, people):
    db = people
    now = datetime.now(timezone.utc)
    db.add_all([
        models.Watch(user_id=100, mov_uid=3, date=now - timedelta(days=1)),
        models.Watch(user_id=100, mov_uid=3, date=now - timedelta(days=2)),
        models.Watch(user_id=101, mov_uid=1, date=now - timedelta(days=200)),
    ])
    db.commit()

    feed = client.get("/api/recommendations/popular-recent").json()["movies"]
    assert [(m["mov_uid"], m["watch_count"]) for m in feed] == [(3, 2)]


def test_popular_following(login, people):
    db = people
    db.add_all([
        models.Watch(user_id=100, mov_uid=3),
        models.Watch(user_id=100, mov_uid=3),
        models.Watch(user_id=100, mov_uid=1),
        models.Watch(user_id=101, mov_uid=2),
        models.Rating(user_id=100, mov_uid=3, rating_value=4),
    ])
    db.commit()
    alice, _ = login("alice")
    lonely, _ = login("lonely")
    alice.post("/api/follows", json={"email": "user100@example.com"})

    body = alice.get("/api/recommendations/popular-following").json()
    assert body["hasFollowing"] is True
    assert [m["mov_uid"] for m in body["movies"]] == [3, 1]
    top = body["movies"][0]
    assert (top["friend_count"], top["total_watches"], top["avg_rating"]) == (1, 2, 4.0)

    assert lonely.get("/api/recommendations/popular-following").json() == {"movies": [], "hasFollowing": False}

    ranking = alice.get("/api/rankings/popular-following").json()["movies"]
    assert [(m["mov_uid"], m["watch_count"]) for m in ranking] == [(3, 2), (1, 1)]


def test_personalized_endpoint(login, catalogue):
    client, _ = login("alice")
    assert client.get("/api/recommendations/personalized").json() == {"movies": []}

    client.put("/api/movie/1/watch")
    client.put("/api/movie/1/rate", json={"rating_value": 5})
    recs = client.get("/api/recommendations/personalized").json()["movies"]

    ids = [m["mov_uid"] for m in recs]
    assert 1 not in ids
    assert sorted(ids) == [2, 3, 4, 5]
    assert all("score" in m for m in recs)
    assert recs == sorted(recs, key=lambda m: (-m["score"], m["mov_uid"]))


def test_personalized_requires_session(client):
    assert client.get("/api/recommendations/personalized").status_code == 401


def test_load_activity_skips_tables_for_users_without_watches(people):
    db = people
    db.add(models.Watch(user_id=100, mov_uid=1))
    db.commit()

    cold = recommender.load_activity(db, 101)
    assert cold.movies.empty and cold.watches.empty and cold.ratings.empty
    assert recommender.personalized_ranking(db, 101) == []

    warm = recommender.load_activity(db, 100)
    assert sorted(warm.movies.mov_uid) == [1, 2, 3, 4, 5]
    assert list(warm.watches.itertuples(index=False, name=None)) == [(100, 1)]
