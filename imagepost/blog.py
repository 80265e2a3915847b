#!/usr/bin/env python3
"""
A single-file personal blog: articles, badges and a “most popular” sidebar.
"""

import json
import math
import os
import re
import sqlite3
import tempfile
from datetime import datetime, timedelta, timezone
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from time import time
from urllib.parse import urlparse

import click
from flask import (
    Flask,
    abort,
    g,
    render_template_string,
    request,
)
from markupsafe import Markup
from werkzeug.middleware.proxy_fix import ProxyFix

################################################################################
# Imports & constants
################################################################################

ROOT = Path(__file__).parent
DB_FILE = Path(os.environ.get("IMAGEPOST_DATABASE", str(ROOT / "blog.sqlite3")))

SITE_NAME_DEFAULT = "Petru Potrimba's Blog"
SETTING_KEYS = ("site_name", "site_description")

INDEX_LIMIT = int(os.environ.get("INDEX_LIMIT", "20"))
POPULAR_LIMIT = int(os.environ.get("POPULAR_LIMIT", "5"))
TRUST_ARTICLE_HTML = os.environ.get("TRUST_ARTICLE_HTML", "0") == "1"
WORDS_PER_MINUTE = 200

ACCESS_LOG_DIR_DEFAULT = Path(
    os.environ.get(
        "ACCESS_LOG_DIR", str(Path(tempfile.gettempdir()) / "imagepost-access")
    )
)
ACCESS_LOG_ENABLED = os.environ.get("ACCESS_LOG_ENABLED", "1") != "0"
ACCESS_LOG_RETENTION_DAYS = int(os.environ.get("ACCESS_LOG_RETENTION_DAYS", "14"))
ACCESS_SKIP_PATHS = {"/favicon.ico", "/robots.txt"}

# SQLite INTEGER is a signed 64-bit value
SQLITE_INT_MAX = 2**63 - 1
# no sign, no leading zero, at most 19 digits
_ARTICLE_ID_RE = re.compile(r"[1-9][0-9]{0,18}")
_PARA_SPLIT_RE = re.compile(r"\n\s*\n")
PHOTO_SCHEMES = {"http", "https"}

LEGACY_BADGE_LABEL_COLUMNS = ("Name", "Label", "Title", "Badge")
LEGACY_ARTICLE_COLUMNS = {
    "IdArticle",
    "IdBadge",
    "Title",
    "Intro",
    "Body",
    "Date",
    "ReadingTime",
    "PhotoArticle",
}

try:
    __version__ = version("imagepost")
except PackageNotFoundError:
    __version__ = "0.1.0-dev"


class InvalidArticleId(ValueError):
    """The ``id`` request parameter is missing or not a positive integer."""


class LegacyImportError(Exception):
    """The legacy database does not have the expected Article/Badge tables."""


################################################################################
# App + template filters
################################################################################
app = Flask(__name__)
app.url_map.strict_slashes = False
app.config.update(
    DATABASE=str(DB_FILE),
    INDEX_LIMIT=INDEX_LIMIT,
    POPULAR_LIMIT=POPULAR_LIMIT,
    TRUST_ARTICLE_HTML=TRUST_ARTICLE_HTML,
    ACCESS_LOG_DIR=str(ACCESS_LOG_DIR_DEFAULT),
    ACCESS_LOG_ENABLED=ACCESS_LOG_ENABLED,
    ACCESS_LOG_RETENTION_DAYS=ACCESS_LOG_RETENTION_DAYS,
)
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)


@app.template_filter("paragraphs")
def paragraphs_filter(text: str | None, trusted: bool = False) -> Markup:
    """
    Escape *text* and turn blank-line separated blocks into <p> elements,
    single newlines into <br>.

    With ``trusted=True`` the stored markup is passed through untouched –
    only for content the operator wrote themselves.
    """
    if not text:
        return Markup("")
    if trusted:
        return Markup(text)

    text = text.replace("\r\n", "\n").strip()
    blocks = [b for b in _PARA_SPLIT_RE.split(text) if b.strip()]
    return Markup("\n").join(
        Markup("<p>%s</p>") % Markup("<br>\n").join(b.split("\n")) for b in blocks
    )


@app.template_filter("date")
def date_filter(iso: str | None) -> str:
    if not iso:
        return ""
    try:
        dt = datetime.fromisoformat(iso)
    except ValueError:
        return iso
    return dt.strftime("%d %B %Y")


def photo_src(path: str | None) -> str:
    """
    Relative paths and http(s) URLs are fine for an <img src>; everything
    else (javascript:, data:, protocol-relative //host) collapses to "".
    """
    if not path:
        return ""
    path = path.strip()
    p = urlparse(path)
    if p.scheme in PHOTO_SCHEMES and p.netloc:
        return path
    if not p.scheme and not p.netloc:
        return path
    return ""


def estimate_reading_time(body: str | None) -> str:
    words = len(Markup(body or "").striptags().split())
    minutes = max(1, math.ceil(words / WORDS_PER_MINUTE))
    return f"{minutes} min"


def reading_label(row) -> str:
    """Stored reading time, or an estimate from the body when it is blank."""
    stored = row["reading_time"]
    if stored is not None and str(stored).strip():
        return str(stored).strip()
    return estimate_reading_time(row["body"])


###############################################################################
# Database helpers
###############################################################################
def get_db():
    if "db" not in g:
        g.db = sqlite3.connect(app.config["DATABASE"])
        g.db.execute("PRAGMA foreign_keys = ON;")
        g.db.row_factory = sqlite3.Row
    return g.db


@app.teardown_appcontext
def close_db(error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db():
    db = get_db()
    db.executescript(
        """
        ------------------------------------------------------------
        -- 1.  Site settings
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS settings (
            key   TEXT PRIMARY KEY,
            value TEXT
        );

        ------------------------------------------------------------
        -- 2.  Badges (categories)
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS badge (
            id    INTEGER PRIMARY KEY,
            label TEXT NOT NULL
        );

        ------------------------------------------------------------
        -- 3.  Articles
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS article (
            id           INTEGER PRIMARY KEY,
            badge_id     INTEGER NOT NULL REFERENCES badge(id),
            title        TEXT NOT NULL,
            intro        TEXT,
            body         TEXT,
            published_on TEXT,
            reading_time TEXT,
            photo        TEXT,
            views        INTEGER NOT NULL DEFAULT 0
        );
        CREATE INDEX IF NOT EXISTS idx_article_badge ON article(badge_id);
        CREATE INDEX IF NOT EXISTS idx_article_published
            ON article(published_on DESC, id DESC);
        CREATE INDEX IF NOT EXISTS idx_article_views ON article(views DESC, id DESC);
        """
    )
    db.commit()
    app.logger.info("Schema ready at %s", app.config["DATABASE"])


# -------------------------------------------------------------------------
# Time helpers
# -------------------------------------------------------------------------
def utc_now() -> datetime:
    """Return an *aware* datetime in UTC."""
    return datetime.now(timezone.utc)


###############################################################################
# CLI – schema, settings, legacy import
###############################################################################
@app.cli.command("init")
def cli_init():
    """Create the database schema (no-op if it already exists)."""
    init_db()
    click.secho("\n✅  Database ready.", fg="green")
    click.echo(f"   {app.config['DATABASE']}\n")


@app.cli.command("setting")
@click.argument("key", type=click.Choice(SETTING_KEYS))
@click.argument("value")
def cli_setting(key: str, value: str):
    """Set a site-wide setting (site name, description)."""
    set_setting(key, value)
    click.echo(f"{key} = {value}")


@app.cli.command("import-legacy")
@click.argument(
    "path", type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
def cli_import_legacy(path: Path):
    """Copy badges + articles from an old Article/Badge database."""
    init_db()
    try:
        counts = import_legacy(path, db=get_db())
    except LegacyImportError as exc:
        raise click.ClickException(str(exc)) from exc

    for tbl, n in counts.items():
        click.echo(f"  {tbl:<8} {n:>6} rows")
    click.secho("\n✅  Legacy import finished.", fg="green")


def _legacy_columns(src, table: str) -> set[str]:
    return {row["name"] for row in src.execute(f"PRAGMA table_info({table})")}


def import_legacy(path: Path, *, db) -> dict[str, int]:
    """
    Upsert every Badge / Article row of the legacy database at *path*.

    • Badge label comes from the first of LEGACY_BADGE_LABEL_COLUMNS present.
    • Articles whose IdBadge has no Badge row are skipped (they were never
      visible through the join anyway).
    • Existing view counters are kept when an article is re-imported.
    """
    src = sqlite3.connect(f"file:{path}?mode=ro", uri=True)
    src.row_factory = sqlite3.Row
    try:
        badge_cols = _legacy_columns(src, "Badge")
        article_cols = _legacy_columns(src, "Article")
        if "IdBadge" not in badge_cols:
            raise LegacyImportError(f"{path}: no Badge table with an IdBadge column")
        missing = LEGACY_ARTICLE_COLUMNS - article_cols
        if missing:
            raise LegacyImportError(
                f"{path}: Article table lacks {', '.join(sorted(missing))}"
            )

        label_col = next(
            (c for c in LEGACY_BADGE_LABEL_COLUMNS if c in badge_cols), None
        )
        label_sql = f'"{label_col}"' if label_col else "NULL"
        badges = [
            (r["IdBadge"], str(r["label"] or "").strip() or f"badge-{r['IdBadge']}")
            for r in src.execute(f"SELECT IdBadge, {label_sql} AS label FROM Badge")
        ]
        articles = src.execute(
            """
            SELECT IdArticle, IdBadge, Title, Intro, Body,
                   Date, ReadingTime, PhotoArticle
              FROM Article
             ORDER BY IdArticle
            """
        ).fetchall()
    finally:
        src.close()

    db.executemany(
        "INSERT INTO badge (id, label) VALUES (?, ?) "
        "ON CONFLICT(id) DO UPDATE SET label=excluded.label",
        badges,
    )

    known = {b[0] for b in badges}
    known.update(r["id"] for r in db.execute("SELECT id FROM badge"))
    keep = [r for r in articles if r["IdBadge"] in known]
    skipped = len(articles) - len(keep)

    db.executemany(
        """
        INSERT INTO article (id, badge_id, title, intro, body,
                             published_on, reading_time, photo)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            badge_id=excluded.badge_id,
            title=excluded.title,
            intro=excluded.intro,
            body=excluded.body,
            published_on=excluded.published_on,
            reading_time=excluded.reading_time,
            photo=excluded.photo
        """,
        [
            (
                r["IdArticle"],
                r["IdBadge"],
                r["Title"] or "",
                r["Intro"],
                r["Body"],
                None if r["Date"] is None else str(r["Date"]),
                None if r["ReadingTime"] is None else str(r["ReadingTime"]),
                r["PhotoArticle"],
            )
            for r in keep
        ],
    )
    db.commit()

    if skipped:
        app.logger.warning("Skipped %d legacy articles with a dangling badge", skipped)
    app.logger.info(
        "Imported %d badges and %d articles from %s", len(badges), len(keep), path
    )
    return {"badge": len(badges), "article": len(keep), "skipped": skipped}


###############################################################################
# Content helpers
###############################################################################
def get_setting(key, default=None, *, db=None):
    db = db if db is not None else get_db()
    row = db.execute("SELECT value FROM settings WHERE key=?", (key,)).fetchone()
    return row["value"] if row else default


def set_setting(key, value):
    db = get_db()
    db.execute(
        "INSERT INTO settings (key,value) VALUES (?,?) "
        "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
        (key, value),
    )
    db.commit()


def parse_article_id(raw: str | None) -> int:
    """
    Accept only the canonical decimal spelling of a positive SQLite integer.
    Signs, leading zeros, whitespace, decimals and unicode digits are all
    rejected.
    """
    if raw is None:
        raise InvalidArticleId("missing article id")
    if not _ARTICLE_ID_RE.fullmatch(raw):
        raise InvalidArticleId(f"malformed article id {raw!r}")
    value = int(raw)
    if not 1 <= value <= SQLITE_INT_MAX:
        raise InvalidArticleId(f"article id out of range: {raw}")
    return value


ARTICLE_COLUMNS = """
    a.id, a.badge_id, a.title, a.intro, a.body,
    a.published_on, a.reading_time, a.photo, a.views,
    b.label AS badge_label
"""


def fetch_articles(article_id: int, *, db) -> list[sqlite3.Row]:
    """
    Every article row with *article_id*, joined with its badge.
    An article whose badge row is missing does not come back.
    """
    return db.execute(
        f"""
        SELECT {ARTICLE_COLUMNS}
          FROM article a
          JOIN badge   b ON b.id = a.badge_id
         WHERE a.id = ?
         ORDER BY a.id
        """,
        (article_id,),
    ).fetchall()


def record_view(article_id: int, *, db) -> None:
    db.execute("UPDATE article SET views = views + 1 WHERE id = ?", (article_id,))
    db.commit()


def latest_articles(*, db, limit: int, badge_id: int | None = None):
    where, params = "", ()
    if badge_id is not None:
        where, params = "WHERE a.badge_id = ?", (badge_id,)
    return db.execute(
        f"""
        SELECT {ARTICLE_COLUMNS}
          FROM article a
          JOIN badge   b ON b.id = a.badge_id
          {where}
         ORDER BY a.published_on DESC, a.id DESC
         LIMIT ?
        """,
        params + (limit,),
    ).fetchall()


def popular_articles(*, db, limit: int):
    """Top *limit* articles by all-time views (ties → newest id first)."""
    return db.execute(
        f"""
        SELECT {ARTICLE_COLUMNS}
          FROM article a
          JOIN badge   b ON b.id = a.badge_id
         ORDER BY a.views DESC, a.id DESC
         LIMIT ?
        """,
        (limit,),
    ).fetchall()


def all_badges(*, db):
    return db.execute("SELECT id, label FROM badge ORDER BY LOWER(label), id").fetchall()


def get_badge(badge_id: int, *, db):
    return db.execute(
        "SELECT id, label FROM badge WHERE id = ?", (badge_id,)
    ).fetchone()


# Expose helpers to templates
app.jinja_env.globals["version"] = __version__
app.jinja_env.globals.update(
    photo_src=photo_src,
    reading_label=reading_label,
)
app.jinja_env.globals["trusted_html"] = lambda: bool(
    app.config.get("TRUST_ARTICLE_HTML")
)


###############################################################################
# Fragments (nav, sidebar, footer)
###############################################################################
TEMPL_NAV = """
<nav class="nav-primary" aria-label="Primary">
    <a class="brand" href="{{ url_for('index') }}">{{ site_name }}</a>
    {% for b in badges %}
        <a href="{{ url_for('badge_detail', badge_id=b['id']) }}"
        {% if b['id'] == active_badge %}
            aria-current="page"
        {% endif %}>{{ b['label'] }}</a>
    {% endfor %}
</nav>
"""

TEMPL_SIDEBAR = """
<div class="popular">
    <h4>Most popular</h4>
    {% if popular %}
    <ol>
        {% for p in popular %}
        {% set src = photo_src(p['photo']) %}
        <li>
            {% if src %}<img src="{{ src }}" alt="" loading="lazy">{% endif %}
            <a href="{{ url_for('image_post', id=p['id']) }}">{{ p['title'] }}</a>
            {% if p['published_on'] %}<small>{{ p['published_on']|date }}</small>{% endif %}
        </li>
        {% endfor %}
    </ol>
    {% else %}
    <p class="empty">Nothing here yet.</p>
    {% endif %}
</div>
"""

TEMPL_FOOTER = """
<footer id="page-bottom">
    <span>&copy; {{ year }} {{ site_name }}</span>
    <span class="version">imagepost v{{ version }}</span>
</footer>
"""


def render_nav(badges, *, site_name: str, active_badge: int | None = None) -> Markup:
    return Markup(
        render_template_string(
            TEMPL_NAV, badges=badges, site_name=site_name, active_badge=active_badge
        )
    )


def render_sidebar(popular) -> Markup:
    return Markup(render_template_string(TEMPL_SIDEBAR, popular=popular))


def render_footer(site_name: str) -> Markup:
    return Markup(
        render_template_string(
            TEMPL_FOOTER, site_name=site_name, year=utc_now().year
        )
    )


def page_context(*, db=None, active_badge: int | None = None) -> dict:
    """
    Everything the page shell needs.  With ``db=None`` the fragments are
    rendered without touching the database (used by the 500/503 pages).
    """
    if db is None:
        site_name, description = SITE_NAME_DEFAULT, ""
        badges, popular = [], []
    else:
        site_name = get_setting("site_name", SITE_NAME_DEFAULT, db=db)
        description = get_setting("site_description", "", db=db)
        badges = all_badges(db=db)
        popular = popular_articles(db=db, limit=int(app.config["POPULAR_LIMIT"]))
    return {
        "site_name": site_name,
        "site_description": description,
        "nav": render_nav(badges, site_name=site_name, active_badge=active_badge),
        "sidebar": render_sidebar(popular),
        "footer": render_footer(site_name),
    }


###############################################################################
# Templates + Views
###############################################################################


def wrap(body: str) -> str:
    """Glue prolog + page-specific body + epilog."""
    return TEMPL_PROLOG + body + TEMPL_EPILOG


TEMPL_PROLOG = """
<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1, shrink-to-fit=no">
<meta name="description" content="{{ site_description }}">
<title>{% if title %}{{ title }} – {% endif %}{{ site_name }}</title>
<style>
body{margin:0;font-family:Poppins,-apple-system,BlinkMacSystemFont,"Segoe UI",Roboto,Arial,sans-serif;color:#222;background:#fff;line-height:1.6}
.container{max-width:1140px;margin:0 auto;padding:0 15px}
.row{display:flex;flex-wrap:wrap;gap:2rem}
.col-main{flex:3 1 36rem;min-width:0}
.col-side{flex:1 1 14rem}
@media (max-width:768px){.row{display:block}}
.nav-primary{display:flex;flex-wrap:wrap;gap:1.25rem;align-items:center;padding:1rem 15px;border-bottom:1px solid #eee;max-width:1140px;margin:0 auto}
.nav-primary a{color:#222;text-decoration:none}
.nav-primary a.brand{font-weight:700;margin-right:auto}
.nav-primary a[aria-current=page],.nav-primary a:hover{color:#bc360a}
.post{padding:2rem 0;border-bottom:1px solid #eee}
.post-head{padding-left:16%}
.post-photo img{width:80%;height:auto}
.post h2{margin:.5rem 0 1rem}
.pill{display:inline-block;padding:.1em .7em;margin-left:.5em;border-radius:1em;background:#f2f2f2;color:#555;font-size:.75em;text-decoration:none}
.post-summary{padding:1rem 0;border-bottom:1px solid #f2f2f2}
.post-summary h3{margin:0 0 .25rem}
.post-summary h3 a{color:#222;text-decoration:none}
.meta{color:#888;font-size:.85em}
.popular ol{padding-left:1.2em}
.popular li{margin-bottom:1rem}
.popular img{display:block;width:100%;height:auto;margin-bottom:.25rem}
.popular small{display:block;color:#888}
.empty{color:#888}
footer{display:flex;justify-content:space-between;margin-top:2rem;padding:1.5rem 0;border-top:1px solid #eee;color:#888;font-size:.8em}
</style>
</head>
<body>
{{ nav }}
<div class="container">
  <div class="row">
    <main class="col-main" id="mydiv">
"""

TEMPL_EPILOG = """
    </main>
    <aside class="col-side">{{ sidebar }}</aside>
  </div>
  {{ footer }}
</div>
</body>
</html>
"""


###############################################################################
# Access logging + security headers
###############################################################################
_access_pruned_once = False


def client_ip() -> str:
    """Return best-effort client IP after ProxyFix."""
    return (
        request.access_route[0] if request.access_route else request.remote_addr
    ) or "unknown"


def access_log_dir() -> Path:
    return Path(app.config.get("ACCESS_LOG_DIR") or ACCESS_LOG_DIR_DEFAULT)


def _first_event_day(path: Path):
    """Day of the first event in a log file, or None if it can't be read."""
    try:
        with path.open(encoding="utf-8") as fh:
            first = fh.readline()
        return datetime.fromisoformat(json.loads(first)["ts"]).date()
    except (OSError, ValueError, KeyError, TypeError):
        return None


def prune_access_logs(log_dir: Path, *, keep_days: int) -> list[Path]:
    """
    Delete day files whose events are older than *keep_days*.  The day is
    taken from the ``ts`` of each file's first event, so renamed or foreign
    files without one are left alone.
    """
    cutoff = (utc_now() - timedelta(days=keep_days)).date()
    removed = []
    for p in sorted(log_dir.glob("access-*.log")):
        day = _first_event_day(p)
        if day is None or day >= cutoff:
            continue
        try:
            p.unlink()
        except OSError as exc:
            app.logger.warning("Could not prune %s: %s", p, exc)
            continue
        removed.append(p)
    if removed:
        app.logger.info("Pruned %d access log file(s)", len(removed))
    return removed


def write_access_event(event: dict, *, log_dir: Path) -> Path | None:
    """Append *event* as one JSON line to that day's file."""
    day = datetime.fromisoformat(event["ts"]).date()
    log_path = log_dir / f"access-{day.isoformat()}.log"
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        with log_path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(event, separators=(",", ":")) + "\n")
    except OSError as exc:
        app.logger.warning("Access log %s not written: %s", log_path, exc)
        return None
    return log_path


@app.before_request
def access_timer():
    g.article_id = None
    g._access_started_at = time()


@app.after_request
def log_access(resp):
    if not app.config.get("ACCESS_LOG_ENABLED", True):
        return resp
    if request.path in ACCESS_SKIP_PATHS:
        return resp

    global _access_pruned_once
    log_dir = access_log_dir()
    started = getattr(g, "_access_started_at", None)
    written = write_access_event(
        {
            "ts": utc_now().isoformat(),
            "ip": client_ip(),
            "path": request.path,
            "m": request.method,
            "st": resp.status_code,
            "dur": int((time() - started) * 1000) if started else None,
            "ua": (request.user_agent.string or "")[:200],
            "aid": getattr(g, "article_id", None),
        },
        log_dir=log_dir,
    )

    keep_days = int(
        app.config.get("ACCESS_LOG_RETENTION_DAYS", ACCESS_LOG_RETENTION_DAYS)
    )
    if written and keep_days > 0 and not _access_pruned_once:
        prune_access_logs(log_dir, keep_days=keep_days)
        _access_pruned_once = True
    return resp


@app.after_request
def sec_headers(resp):
    resp.headers.update(
        {
            "X-Frame-Options": "DENY",
            "X-Content-Type-Options": "nosniff",
            "Referrer-Policy": "strict-origin-when-cross-origin",
            "Content-Security-Policy": (
                "default-src 'self'; img-src 'self' http: https:; "
                "style-src 'self' 'unsafe-inline'; script-src 'none'; "
                "frame-ancestors 'none'"
            ),
        }
    )
    return resp


###############################################################################
# Index + Listings
###############################################################################
@app.route("/")
def index():
    db = get_db()
    rows = latest_articles(db=db, limit=int(app.config["INDEX_LIMIT"]))
    return render_template_string(
        TEMPL_INDEX, articles=rows, heading=None, title=None, **page_context(db=db)
    )


@app.route("/badges/<int:badge_id>")
def badge_detail(badge_id):
    db = get_db()
    badge = get_badge(badge_id, db=db)
    if badge is None:
        abort(404)
    rows = latest_articles(
        db=db, limit=int(app.config["INDEX_LIMIT"]), badge_id=badge_id
    )
    return render_template_string(
        TEMPL_INDEX,
        articles=rows,
        heading=badge["label"],
        title=badge["label"],
        **page_context(db=db, active_badge=badge_id),
    )


TEMPL_INDEX = wrap("""
{% block body %}
    {% if heading %}<h1 class="listing-heading">{{ heading }}</h1>{% endif %}
    {% for a in articles %}
    <section class="post-summary">
        <h3><a href="{{ url_for('image_post', id=a['id']) }}">{{ a['title'] }}</a></h3>
        <p class="meta">
            {% if a['published_on'] %}<time datetime="{{ a['published_on'] }}">{{ a['published_on']|date }}</time> ·{% endif %}
            {{ reading_label(a) }}
            <a class="pill" href="{{ url_for('badge_detail', badge_id=a['badge_id']) }}">{{ a['badge_label'] }}</a>
        </p>
        {{ a['intro']|paragraphs(trusted=trusted_html()) }}
    </section>
    {% else %}
    <p class="empty">No articles yet.</p>
    {% endfor %}
{% endblock %}
""")


###############################################################################
# Articles
###############################################################################
@app.route("/image-post.php")
@app.route("/image-post")
def image_post():
    try:
        article_id = parse_article_id(request.args.get("id"))
    except InvalidArticleId as exc:
        app.logger.warning("Rejected article request: %s", exc)
        abort(400)
    g.article_id = article_id

    db = get_db()
    rows = fetch_articles(article_id, db=db)
    if not rows:
        app.logger.warning("Article %d not found", article_id)
        abort(404)

    # a failed counter update never blocks the read
    try:
        record_view(article_id, db=db)
    except sqlite3.OperationalError as exc:
        db.rollback()
        app.logger.warning("View of article %d not counted: %s", article_id, exc)
    return render_template_string(
        TEMPL_ARTICLE,
        articles=rows,
        title=rows[0]["title"],
        **page_context(db=db),
    )


TEMPL_ARTICLE = wrap("""
{% block body %}
    {% for a in articles %}
    <article class="post" id="article-{{ a['id'] }}">
        <div class="post-head">
            {% set src = photo_src(a['photo']) %}
            {% if src %}
            <div class="post-photo"><img src="{{ src }}" alt="{{ a['title'] }}"></div>
            {% endif %}
            <p class="reading"><b>Reading time</b>: {{ reading_label(a) }}</p>
            {% if a['published_on'] %}
            <time datetime="{{ a['published_on'] }}">{{ a['published_on']|date }}</time>
            {% endif %}
            <a class="pill" href="{{ url_for('badge_detail', badge_id=a['badge_id']) }}">{{ a['badge_label'] }}</a>
            <h2>{{ a['title'] }}</h2>
            <div class="post-intro">{{ a['intro']|paragraphs(trusted=trusted_html()) }}</div>
        </div>
        <div class="post-body">{{ a['body']|paragraphs(trusted=trusted_html()) }}</div>
    </article>
    {% endfor %}
{% endblock %}
""")


###############################################################################
# Error pages
###############################################################################
def _error_page_context() -> dict:
    """
    Shell for the 400/404 pages.  Their status must not turn into a 500
    when the database is down, so fall back to the data-less fragments.
    """
    try:
        return page_context(db=get_db())
    except sqlite3.Error as exc:
        app.logger.error("Database error while rendering %s", request.path, exc_info=exc)
        return page_context()


@app.errorhandler(400)
def bad_request(exc):
    return render_template_string(
        TEMPL_400, title="Bad request", **_error_page_context()
    ), 400


@app.errorhandler(404)
def not_found(exc):
    """Site-wide “Not Found” page (unknown URL, article or badge)."""
    missing_article = getattr(g, "article_id", None) is not None
    return render_template_string(
        TEMPL_404,
        title="Not found",
        missing_article=missing_article,
        **_error_page_context(),
    ), 404


@app.errorhandler(sqlite3.Error)
def database_error(exc):
    app.logger.error("Database error on %s", request.path, exc_info=exc)
    return render_template_string(
        TEMPL_503, title="Database unavailable", **page_context()
    ), 503


@app.errorhandler(500)
def internal_error(exc):
    """
    Generic 500 page for production.  Flask has already logged the
    traceback; the page itself stays away from the database.
    """
    return render_template_string(
        TEMPL_500, title="Internal Server Error", **page_context()
    ), 500


TEMPL_400 = wrap("""
{% block body %}
  <h2>Bad request</h2>
  <p>That link is not quite right – an article id is a whole number like
     <code>?id=12</code>.
     <a href="{{ url_for('index') }}">Back to the front page</a>.</p>
{% endblock %}
""")

TEMPL_404 = wrap("""
{% block body %}
  {% if missing_article %}
  <h2>Article not found</h2>
  <p>There is no article with that id (any more).</p>
  {% else %}
  <h2>Page not found</h2>
  <p>The URL you asked for doesn’t exist.</p>
  {% endif %}
  <p><a href="{{ url_for('index') }}">Back to the front page</a></p>
{% endblock %}
""")

TEMPL_500 = wrap("""
{% block body %}
  <h2>Internal Server Error</h2>
  <p>Our fault, not yours. Please try again in a minute.</p>
{% endblock %}
""")

TEMPL_503 = wrap("""
{% block body %}
  <h2>Database unavailable</h2>
  <p>The articles can’t be loaded right now. Please try again in a minute.</p>
{% endblock %}
""")


###############################################################################
# main
###############################################################################
if __name__ == "__main__":
    import sys

    if len(sys.argv) > 1 and sys.argv[1] == "init":
        with app.app_context():
            init_db()
    else:
        app.run(debug=True)
