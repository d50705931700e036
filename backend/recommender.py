"""
Personalized movie scoring.

The score for (user, movie) blends three affinities computed from the user's
own history, then boosts movies liked by the user's most similar peers:

    personal = mean(genre affinity, liked-cast overlap, age-rating affinity)
    score    = personal * (1 + boost * similar users who watched and rated >= 3)

Only movies the user has not watched are scored, and users with no watches get
no scores at all. The similarity metric is pluggable (see SIMILARITY_METRICS).
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import pandas as pd
from sklearn.metrics.pairwise import cosine_similarity
from sqlalchemy import exists, select
from sqlalchemy.orm import Session

import models
from config import settings

LIKED_RATING = 4        # cast of movies rated at least this count as liked
PEER_APPROVAL = 3       # a similar user "approves" a movie at this rating or above


@dataclass
class Activity:
    """Snapshot of the tables the scorer reads, one DataFrame per table."""
    movies: pd.DataFrame         # mov_uid, age_rating
    movie_genres: pd.DataFrame   # mov_uid, genre_uid
    movie_cast: pd.DataFrame     # mov_uid, fc_uid
    watches: pd.DataFrame        # user_id, mov_uid
    ratings: pd.DataFrame        # user_id, mov_uid, rating_value


def _frame(db: Session, stmt, columns) -> pd.DataFrame:
    rows = [tuple(row) for row in db.execute(stmt)] if stmt is not None else []
    frame = pd.DataFrame(rows, columns=columns)
    # Id and rating columns stay int64 even when the table is empty, so merges line up
    for col in columns:
        if col != "age_rating":
            frame[col] = frame[col].astype("int64")
    return frame


def load_activity(db: Session, user_id: Optional[int] = None) -> Activity:
    """
    Reads the scoring tables. With `user_id`, a user who has never watched
    anything gets empty frames without touching the activity tables.
    """
    cold = user_id is not None and not db.scalar(
        select(exists().where(models.Watch.user_id == user_id))
    )

    def stmt(query):
        return None if cold else query

    return Activity(
        movies=_frame(db, stmt(select(models.Movie.mov_uid, models.Movie.age_rating)), ["mov_uid", "age_rating"]),
        movie_genres=_frame(
            db, stmt(select(models.MovieGenre.mov_uid, models.MovieGenre.genre_uid)), ["mov_uid", "genre_uid"]
        ),
        movie_cast=_frame(db, stmt(select(models.CastsIn.mov_uid, models.CastsIn.fc_uid)), ["mov_uid", "fc_uid"]),
        watches=_frame(db, stmt(select(models.Watch.user_id, models.Watch.mov_uid)), ["user_id", "mov_uid"]),
        ratings=_frame(
            db,
            stmt(select(models.Rating.user_id, models.Rating.mov_uid, models.Rating.rating_value)),
            ["user_id", "mov_uid", "rating_value"],
        ),
    )


# --- Similarity metrics ---
# Each returns a Series indexed by other user_id; higher means more similar.

def agreement_similarity(activity: Activity, user_id: int) -> pd.Series:
    """
    Walk every movie another user watched: both rated it -> 1 if equal, 0.75 if
    one star apart, 0.25 otherwise; either rating missing -> 0.5. Sum per user.
    """
    others = activity.watches[activity.watches.user_id != user_id][["user_id", "mov_uid"]].drop_duplicates()
    if others.empty:
        return pd.Series(dtype=float)

    their = activity.ratings.rename(columns={"rating_value": "r1"})
    mine = activity.ratings[activity.ratings.user_id == user_id][["mov_uid", "rating_value"]]
    mine = mine.rename(columns={"rating_value": "r2"})

    pairs = others.merge(their, on=["user_id", "mov_uid"], how="left").merge(mine, on="mov_uid", how="left")
    diff = (pairs.r1 - pairs.r2).abs()
    points = pd.Series(0.25, index=pairs.index)
    points[diff == 1] = 0.75
    points[diff == 0] = 1.0
    points[pairs.r1.isna() | pairs.r2.isna()] = 0.5
    return points.groupby(pairs.user_id).sum()


def cosine_rating_similarity(activity: Activity, user_id: int) -> pd.Series:
    """Cosine similarity between rating vectors (unrated = 0)."""
    if activity.ratings.empty:
        return pd.Series(dtype=float)
    matrix = activity.ratings.pivot_table(
        index="user_id", columns="mov_uid", values="rating_value", aggfunc="max", fill_value=0
    )
    if user_id not in matrix.index or len(matrix.index) < 2:
        return pd.Series(dtype=float)
    others = matrix.drop(index=user_id)
    sims = cosine_similarity(matrix.loc[[user_id]].values, others.values)[0]
    result = pd.Series(sims, index=others.index)
    return result[result > 0]


SIMILARITY_METRICS: Dict[str, Callable[[Activity, int], pd.Series]] = {
    "agreement": agreement_similarity,
    "cosine": cosine_rating_similarity,
}


class PersonalizedScorer:
    """
    score(user_id, mov_uid) -> float over one Activity snapshot.
    Per-user score tables are computed on first use and kept for the scorer's lifetime.
    """

    def __init__(self, activity: Activity, similarity: Optional[str] = None,
                 neighbours: Optional[int] = None, boost: Optional[float] = None):
        metric = (similarity or settings.RECOMMENDER_SIMILARITY).lower()
        if metric not in SIMILARITY_METRICS:
            raise ValueError(f"Unknown similarity metric {metric!r}; use one of {sorted(SIMILARITY_METRICS)}")
        self.activity = activity
        self.similarity = SIMILARITY_METRICS[metric]
        self.neighbours = settings.RECOMMENDER_NEIGHBOURS if neighbours is None else neighbours
        self.boost = settings.RECOMMENDER_BOOST if boost is None else boost
        self._scores: Dict[int, pd.Series] = {}

    def score(self, user_id: int, mov_uid: int) -> float:
        return float(self.scores_for(user_id).get(mov_uid, 0.0))

    def rank(self, user_id: int, limit: int = 20) -> List[Tuple[int, float]]:
        scores = self.scores_for(user_id)
        if scores.empty:
            return []
        ordered = pd.DataFrame({"mov_uid": scores.index, "score": scores.values})
        ordered = ordered.sort_values(["score", "mov_uid"], ascending=[False, True])
        return [(int(m), float(s)) for m, s in ordered.head(limit).itertuples(index=False)]

    def scores_for(self, user_id: int) -> pd.Series:
        if user_id not in self._scores:
            self._scores[user_id] = self._compute(user_id)
        return self._scores[user_id]

    # --- components ---
    def _compute(self, user_id: int) -> pd.Series:
        act = self.activity
        my_watches = act.watches[act.watches.user_id == user_id]
        if my_watches.empty or act.movies.empty:
            return pd.Series(dtype=float)

        all_movies = pd.Index(act.movies.mov_uid, name="mov_uid")
        personal = (
            self._genre_affinity(my_watches).reindex(all_movies, fill_value=0.0)
            + self._cast_overlap(user_id).reindex(all_movies, fill_value=0.0)
            + self._age_rating_affinity(my_watches).reindex(all_movies, fill_value=0.0)
        ) / 3.0

        unwatched = personal[~personal.index.isin(my_watches.mov_uid)]
        approvals = self._peer_approvals(user_id).reindex(unwatched.index, fill_value=0)
        return unwatched * (1 + self.boost * approvals)

    def _genre_affinity(self, my_watches: pd.DataFrame) -> pd.Series:
        genres = self.activity.movie_genres
        counts = my_watches.merge(genres, on="mov_uid").groupby("genre_uid").size()
        if counts.empty:
            return pd.Series(dtype=float)
        # Genres the user never watched are left out of the mean, not counted as 0
        weight = genres.genre_uid.map(counts / counts.max())
        return weight.groupby(genres.mov_uid).mean().fillna(0.0)

    def _cast_overlap(self, user_id: int) -> pd.Series:
        act = self.activity
        liked_movies = act.ratings[(act.ratings.user_id == user_id) & (act.ratings.rating_value >= LIKED_RATING)]
        liked_cast = set(act.movie_cast[act.movie_cast.mov_uid.isin(liked_movies.mov_uid)].fc_uid)
        if not liked_cast:
            return pd.Series(dtype=float)
        liked = act.movie_cast.fc_uid.isin(liked_cast).astype(float)
        return liked.groupby(act.movie_cast.mov_uid).mean()

    def _age_rating_affinity(self, my_watches: pd.DataFrame) -> pd.Series:
        movies = self.activity.movies
        counts = my_watches.merge(movies, on="mov_uid").groupby("age_rating").size()
        if counts.empty:
            return pd.Series(dtype=float)
        weight = movies.age_rating.map(counts / counts.max()).fillna(0.0)
        return pd.Series(weight.values, index=movies.mov_uid)

    def _similar_users(self, user_id: int) -> pd.Index:
        sims = self.similarity(self.activity, user_id)
        if sims.empty or self.neighbours <= 0:
            return pd.Index([])
        ranked = sims.rename("sim").rename_axis("user_id").reset_index()
        ranked = ranked.sort_values(["sim", "user_id"], ascending=[False, True]).head(self.neighbours)
        return pd.Index(ranked.user_id)

    def _peer_approvals(self, user_id: int) -> pd.Series:
        """Per movie, how many similar users watched it and rated it PEER_APPROVAL or higher."""
        act = self.activity
        peers = self._similar_users(user_id)
        if peers.empty:
            return pd.Series(dtype=float)
        watched = act.watches[act.watches.user_id.isin(peers)][["user_id", "mov_uid"]].drop_duplicates()
        approved = act.ratings[act.ratings.rating_value >= PEER_APPROVAL][["user_id", "mov_uid"]]
        both = watched.merge(approved, on=["user_id", "mov_uid"])
        return both.groupby("mov_uid").user_id.nunique()


def personalized_ranking(db: Session, user_id: int, limit: int = 20) -> List[Tuple[int, float]]:
    """Top `limit` (mov_uid, score) pairs for the user, best first."""
    scorer = PersonalizedScorer(load_activity(db, user_id))
    return scorer.rank(user_id, limit)
