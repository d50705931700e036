import os
import sys

import sqlalchemy
import uvicorn
from fastapi import Depends, FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

import database
from config import settings
from database import Base, get_db
from errors import hint_for, install_handlers, log_db_error
import models  # registers the tables on Base.metadata
import api_auth
import api_collections
import api_explore
import api_follows
import api_movies
import api_recommendations
import pages

# --- FastAPI App ---
print("--- Initializing FastAPI App ---")
app = FastAPI(
    title="Movie Catalogue",
    description="Catalogue, collections, ratings, follows and recommendations",
    version="1.0.0",
)

if settings.CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

install_handlers(app)

app.include_router(api_auth.router)
app.include_router(api_collections.router)
app.include_router(api_movies.router)
app.include_router(api_explore.router)
app.include_router(api_follows.router)
app.include_router(api_recommendations.router)
app.include_router(pages.router)


# --- Startup / Shutdown Events ---
@app.on_event("startup")
def on_startup():
    """Open the pool (and tunnel), optionally create the schema, report catalogue size."""
    print("Running startup event...")
    try:
        engine = database.get_engine()
        if settings.CREATE_TABLES:
            print("Ensuring database tables exist...")
            Base.metadata.create_all(bind=engine)
            print("Tables checked/created.")

        movie_count = database.query("SELECT count(*) AS n FROM movie").rows[0]["n"]
        print(f"Movie count in database: {movie_count}")
        if movie_count == 0:
            print("WARNING: Database appears to be empty. Load a catalogue with `python seed.py <dir>`.")
    except sqlalchemy.exc.OperationalError as db_conn_err:
        print(f"\n" + "=" * 20 + " DATABASE CONNECTION ERROR DURING STARTUP " + "=" * 20)
        print(f"Could not connect to the database: {db_conn_err}")
        print("Please check DATABASE_URL (or DB_* / SSH_* settings) and ensure the database server is running.")
        print("=" * 70 + "\n")
    except (sqlalchemy.exc.SQLAlchemyError, ValueError, RuntimeError) as e:
        print(f"\n" + "=" * 20 + " ERROR DURING STARTUP " + "=" * 20)
        print(f"{e}")
        print("=" * 60 + "\n")
    finally:
        print("Startup event finished.")
        sys.stdout.flush()


@app.on_event("shutdown")
def on_shutdown():
    print("Running shutdown event...")
    database.shutdown()
    print("Shutdown event finished.")
    sys.stdout.flush()


# --- Health ---
@app.get("/api/health/db", summary="Database health check")
def health_db(db: Session = Depends(get_db)):
    """Round-trips a trivial query and reports the database clock."""
    try:
        now = db.execute(text("SELECT CURRENT_TIMESTAMP")).scalar()
    except sqlalchemy.exc.DBAPIError as e:
        log_db_error("GET /api/health/db", e)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"ok": False, "error": hint_for(e)},
        )
    return {"ok": True, "time": now}


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
