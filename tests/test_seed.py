import os

import pandas as pd
import pytest
from sqlalchemy import func, select

import models
import seed


def write(tmp_path, name, text):
    path = os.path.join(tmp_path, name)
    with open(path, "w") as f:
        f.write(text)
    return path


@pytest.fixture
def movies_csv(tmp_path):
    return write(tmp_path, "movies.csv", (
        "movieId,title,duration,age_rating,genres,directors,cast,studios,platform,release_date\n"
        "1,Alpha,90,PG,Drama|Comedy|Drama,Dee Rector,Ann Actor|Ben Actor,Big Studio,Theaters,2001-02-03\n"
        "2,Beta,,R,(no genres listed),,Ann Actor,,,\n"
        "x,Broken,1,,,,,,,\n"
        "3,  ,1,,,,,,,\n"
    ))


def test_star_rating_rounds_into_range():
    assert [seed._star_rating(v) for v in (0.5, 1.4, 2.5, 3.6, 5.0)] == [1, 1, 2, 4, 5]


def test_read_movies_drops_invalid_rows(movies_csv):
    df = seed.read_movies(movies_csv)
    assert list(df["movieId"]) == [1, 2]
    assert pd.isna(df.iloc[1]["release_date"])


def test_load_catalogue(db, movies_csv, tmp_path):
    added = seed.load_catalogue(db, seed.read_movies(movies_csv))
    assert added == 2

    assert db.execute(select(func.count()).select_from(models.Genre)).scalar_one() == 2
    assert db.execute(select(func.count()).select_from(models.MovieGenre)).scalar_one() == 2
    assert db.execute(select(func.count()).select_from(models.FilmContributor)).scalar_one() == 4
    assert db.execute(select(func.count()).select_from(models.CastsIn)).scalar_one() == 3
    release = db.execute(select(models.PlatformRelease.release_date)).scalar_one()
    assert release.isoformat() == "2001-02-03"

    ratings_csv = write(tmp_path, "ratings.csv", "userId,movieId,rating,timestamp\n7,1,4.5,964982703\n7,9,3.0,964982703\n")
    assert seed.load_activity(db, seed.read_ratings(ratings_csv, {1, 2})) == 1
    assert db.execute(select(models.Rating.rating_value)).scalar_one() == 4
    assert db.execute(select(func.count()).select_from(models.Watch)).scalar_one() == 1
    assert db.execute(select(models.User.username)).scalar_one() == "user_7"


def test_shipped_sample_data_loads(db):
    movies_df = seed.read_movies(os.path.join(seed.DATA_DIR, "movies.csv"))
    assert seed.load_catalogue(db, movies_df) == 10

    ratings_df = seed.read_ratings(os.path.join(seed.DATA_DIR, "ratings.csv"), set(movies_df["movieId"]))
    assert seed.load_activity(db, ratings_df) == 13

    def count(model):
        return db.execute(select(func.count()).select_from(model)).scalar_one()

    assert count(models.Movie) == 10
    assert count(models.Genre) == 11
    assert count(models.CastsIn) == 30
    assert count(models.DirectsIn) == 10
    assert count(models.PlatformRelease) == 10
    assert count(models.User) == 4
    assert count(models.Rating) == 13
