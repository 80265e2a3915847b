"""
tests/conftest.py
"""
from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from typing import Generator

import pytest
from flask.testing import FlaskClient

# The single-file app lives here:
from imagepost.blog import app, get_db, init_db  # noqa: WPS433 (importing from a module)


@pytest.fixture(scope="session")
def _tmp_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """One temp file for the whole test session (faster than per-test)."""
    db_file = tmp_path_factory.mktemp("data") / "test.sqlite3"
    return db_file


@pytest.fixture(scope="session", autouse=True)
def _configure_app(_tmp_db_path: Path, tmp_path_factory: pytest.TempPathFactory) -> None:
    """
    Configure the Flask app *once* before the first test is collected.
    Access logging is off unless a test switches it on.
    """
    app.config.update(
        TESTING=True,
        DATABASE=str(_tmp_db_path),
        ACCESS_LOG_ENABLED=False,
        ACCESS_LOG_DIR=str(tmp_path_factory.mktemp("access")),
        TRUST_ARTICLE_HTML=False,
    )
    with app.app_context():
        init_db()


@pytest.fixture
def client() -> Generator[FlaskClient, None, None]:
    """
    Gives each test an isolated application context *and* test client.

    Yields:
        `flask.testing.FlaskClient`
    """
    with app.test_client() as client:
        with app.app_context():
            yield client


@pytest.fixture
def seed(client) -> SimpleNamespace:
    """
    Empty the content tables and hand back tiny insert helpers:

        seed.badge(3, "Vision")
        seed.article(12, 3, title="X", body="…")
        seed.dangling(7, 999)       # article pointing at a missing badge
    """
    db = get_db()
    db.execute("DELETE FROM article")
    db.execute("DELETE FROM badge")
    db.execute("DELETE FROM settings")
    db.commit()

    def badge(badge_id: int, label: str = "General") -> None:
        db.execute("INSERT INTO badge (id, label) VALUES (?, ?)", (badge_id, label))
        db.commit()

    def article(article_id: int, badge_id: int, **fields) -> None:
        row = {
            "title": f"Article {article_id}",
            "intro": "An intro.",
            "body": "Some body text.",
            "published_on": "2019-05-01",
            "reading_time": "5 min",
            "photo": "article/img/photo.jpg",
            "views": 0,
            **fields,
        }
        db.execute(
            """
            INSERT INTO article (id, badge_id, title, intro, body,
                                 published_on, reading_time, photo, views)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                article_id,
                badge_id,
                row["title"],
                row["intro"],
                row["body"],
                row["published_on"],
                row["reading_time"],
                row["photo"],
                row["views"],
            ),
        )
        db.commit()

    def dangling(article_id: int, badge_id: int, **fields) -> None:
        db.execute("PRAGMA foreign_keys = OFF")
        try:
            article(article_id, badge_id, **fields)
        finally:
            db.execute("PRAGMA foreign_keys = ON")

    return SimpleNamespace(badge=badge, article=article, dangling=dangling, db=db)
