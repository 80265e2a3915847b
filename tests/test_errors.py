"""
tests/test_errors.py
"""
from __future__ import annotations

import logging
import sqlite3

from imagepost import blog
from imagepost.blog import app


def test_404_custom_page(client):
    """
    Any unknown URL yields the themed “Page not found” template.
    """
    resp = client.get("/this/route/does/not/exist")
    assert resp.status_code == 404
    # sanity-check that we really rendered *our* template, not Werkzeug’s
    assert b"Page not found" in resp.data
    assert b"Most popular" in resp.data


def test_unknown_badge_is_404(client, seed):
    seed.badge(1)
    resp = client.get("/badges/77")
    assert resp.status_code == 404
    assert b"Page not found" in resp.data


def test_500_handler_renders_friendly_page(client, monkeypatch):
    """
    Temporarily replace ``index`` with a view that crashes, but disable
    exception propagation so the global 500-handler can render the page.
    """
    def _boom():
        raise RuntimeError("kaboom!")

    monkeypatch.setitem(app.view_functions, "index", _boom)
    monkeypatch.setitem(app.config, "PROPAGATE_EXCEPTIONS", False)

    resp = client.get("/")
    assert resp.status_code == 500
    assert b"Internal Server Error" in resp.data
    assert b"kaboom" not in resp.data


def test_database_error_is_503(client, seed, monkeypatch, caplog):
    def _locked(article_id, *, db):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(blog, "fetch_articles", _locked)

    with caplog.at_level(logging.ERROR, logger=app.logger.name):
        resp = client.get("/image-post?id=1")

    assert resp.status_code == 503
    assert b"Database unavailable" in resp.data
    assert b"database is locked" not in resp.data
    assert any("Database error" in r.getMessage() for r in caplog.records)


def test_error_pages_survive_unopenable_database(client, monkeypatch, tmp_path, caplog):
    """
    With the database file out of reach, a bad id is still a 400 and an
    unknown URL still a 404 – the shell just renders without nav/sidebar data.
    """
    monkeypatch.setitem(app.config, "DATABASE", str(tmp_path / "missing-dir" / "x.sqlite3"))
    monkeypatch.setitem(app.config, "PROPAGATE_EXCEPTIONS", False)

    with caplog.at_level(logging.ERROR, logger=app.logger.name):
        bad = client.get("/image-post?id=abc")
        missing = client.get("/nope")

    assert bad.status_code == 400
    assert b"Bad request" in bad.data
    assert missing.status_code == 404
    assert b"Page not found" in missing.data
    assert b"Nothing here yet." in missing.data          # data-less sidebar
    assert any("Database error" in r.getMessage() for r in caplog.records)


def test_unopenable_database_on_article_is_503(client, monkeypatch, tmp_path):
    monkeypatch.setitem(app.config, "DATABASE", str(tmp_path / "missing-dir" / "x.sqlite3"))
    resp = client.get("/image-post?id=12")
    assert resp.status_code == 503
    assert b"Database unavailable" in resp.data


def test_failed_view_count_still_renders(client, seed, monkeypatch, caplog):
    seed.badge(1)
    seed.article(12, 1, title="Still here")

    def _readonly(article_id, *, db):
        raise sqlite3.OperationalError("attempt to write a readonly database")

    monkeypatch.setattr(blog, "record_view", _readonly)

    with caplog.at_level(logging.WARNING, logger=app.logger.name):
        resp = client.get("/image-post?id=12")

    assert resp.status_code == 200
    assert b"<h2>Still here</h2>" in resp.data
    assert any("not counted" in r.getMessage() for r in caplog.records)
