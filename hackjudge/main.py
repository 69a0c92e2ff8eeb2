from __future__ import annotations

import hashlib
import logging
import secrets
from contextlib import asynccontextmanager
from html import escape
from io import StringIO
from typing import Dict, List, Optional
from urllib.parse import quote

from fastapi import FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from pydantic import BaseModel

from hackjudge import __version__
from hackjudge.config import Settings, configure_logging, load_settings
from hackjudge.db import MemoryStorage, SqliteStorage
from hackjudge.errors import JudgingError, NotFoundError, StorageError, ValidationError
from hackjudge.membership import (
    assigned_teams,
    evaluation_status,
    judge_history,
    judge_workload,
    overall_progress,
)
from hackjudge.models import (
    MAX_TOTAL_SCORE,
    Judge,
    Principal,
    Team,
    load_json_payload,
    parse_judges_payload,
    parse_teams_payload,
)
from hackjudge.scoring import (
    SCORE_FIELD_PREFIX,
    calculate_final_scores,
    parse_score_form,
    rank_teams,
    results_frame,
    submit_evaluation,
)
from hackjudge.store import EntityStore

logger = logging.getLogger(__name__)

DEMO_TEAMS = [
    {"id": "1", "name": "Team Alpha", "members": ["John Doe", "Jane Smith", "Alex Johnson"],
     "project_name": "EcoTrack", "project_description": "An app to track and reduce carbon footprint"},
    {"id": "2", "name": "Team Beta", "members": ["Mike Brown", "Sarah Lee", "David Wang"],
     "project_name": "MedConnect", "project_description": "A telemedicine platform for rural communities"},
    {"id": "3", "name": "Team Gamma", "members": ["Lisa Chen", "Tom Wilson", "Rajiv Patel"],
     "project_name": "StudyBuddy", "project_description": "AI-powered study assistant for students"},
]

DEMO_JUDGES = [
    {"id": "1", "name": "Dr. Emily Rodriguez", "email": "emily.r@example.com", "assigned_teams": ["1", "2", "3"]},
    {"id": "2", "name": "Prof. Robert Kim", "email": "robert.k@example.com", "assigned_teams": ["1", "2", "3"]},
]


def sha256(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def build_store(settings: Settings, storage=None) -> EntityStore:
    if storage is None:
        if settings.storage == "memory":
            storage = MemoryStorage()
        else:
            storage = SqliteStorage(settings.db_path, timeout=settings.db_timeout)
            storage.init_db()
    store = EntityStore(storage)
    store.load()
    if settings.seed_demo and not store.teams and not store.judges:
        store.replace_teams(parse_teams_payload(DEMO_TEAMS))
        store.replace_judges(parse_judges_payload(DEMO_JUDGES))
        logger.info("Seeded demo teams and judges")
    return store


def create_app(settings: Optional[Settings] = None, storage=None) -> FastAPI:
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        app.state.store = build_store(settings, storage)
        yield
        app.state.store.flush()

    app = FastAPI(title="Hackathon Judging", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.admin_pw_hash = sha256(settings.admin_password)
    register_routes(app)
    return app


# -----------------------
# Principal helpers
# -----------------------
def get_store(request: Request) -> EntityStore:
    return request.app.state.store


def require_admin(request: Request, admin_password: str) -> Principal:
    if not secrets.compare_digest(sha256(admin_password), request.app.state.admin_pw_hash):
        raise HTTPException(status_code=403, detail="Invalid admin password.")
    return Principal(id="admin", role="admin", name="Admin")


def require_judge(request: Request, judge_id: str, email: str) -> Principal:
    judge = get_store(request).get_judge(judge_id)
    if not judge or judge.email.lower() != email.strip().lower():
        raise HTTPException(403, "Invalid judge session.")
    return Principal(id=judge.id, role="judge", name=judge.name, email=judge.email)


# -----------------------
# UI helpers
# -----------------------
def page(title: str, body: str, status_code: int = 200) -> HTMLResponse:
    html = f"""
    <html>
      <head>
        <title>{escape(title)}</title>
        <meta name="viewport" content="width=device-width, initial-scale=1.0">
        <style>
          body {{ font-family: system-ui, Arial; max-width: 980px; margin: 0 auto; padding: 22px; }}
          input, textarea, button, select {{ font-size: 16px; padding: 10px; }}
          textarea {{ width: 100%; }}
          .card {{ border: 1px solid #ddd; border-radius: 12px; padding: 16px; margin: 16px 0; }}
          .row {{ display: flex; gap: 12px; flex-wrap: wrap; align-items: center; }}
          .row > * {{ flex: 1; min-width: 220px; }}
          table {{ border-collapse: collapse; width: 100%; }}
          th, td {{ border: 1px solid #ddd; padding: 8px; }}
          th {{ text-align: left; background: #f7f7f7; }}
          .muted {{ color: #666; }}
          .pill {{ display:inline-block; padding:4px 10px; border:1px solid #ddd; border-radius:999px; }}
          a {{ text-decoration: none; }}
          .danger {{ color: #b00020; }}
          .ok {{ color: #2e7d32; }}
        </style>
      </head>
      <body>
        <h1>{escape(title)}</h1>
        {body}
      </body>
    </html>
    """
    return HTMLResponse(html, status_code=status_code)


def error_page(title: str, err: JudgingError, back: str) -> HTMLResponse:
    status = 404 if isinstance(err, NotFoundError) else 503 if isinstance(err, StorageError) else 400
    return page(
        title,
        f'<div class="card"><p><a href="{back}">&larr; Back</a></p>'
        f'<p class="danger">{escape(str(err))}</p></div>',
        status_code=status,
    )


class EvaluationIn(BaseModel):
    judge_id: str
    team_id: str
    scores: Dict[str, float]
    comments: Optional[str] = None


def password_field() -> str:
    return '<input name="admin_password" placeholder="Admin password" type="password" required />'


def register_routes(app: FastAPI) -> None:
    # -----------------------
    # Error mapping (JSON API)
    # -----------------------
    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"error": str(exc)})

    @app.exception_handler(StorageError)
    async def _storage_error(request: Request, exc: StorageError):
        return JSONResponse(status_code=503, content={"error": str(exc)})

    # -----------------------
    # Routes: Home
    # -----------------------
    @app.get("/", response_class=HTMLResponse)
    def home():
        return page(
            "Hackathon Judging",
            f"""
            <div class="card">
              <p><a href="/admin">Admin</a> | <a href="/judge">Judge</a></p>
              <p class="muted">
                Judges score each assigned team on five criteria (0-20 each, {MAX_TOTAL_SCORE:g} points total).
                A team's final score is the sum of every judge's total.
              </p>
            </div>
            """,
        )

    # -----------------------
    # Routes: Admin
    # -----------------------
    @app.get("/admin", response_class=HTMLResponse)
    def admin_home(request: Request):
        store = get_store(request)
        progress = overall_progress(store.teams, store.judges, store.evaluations)

        team_rows = ""
        for t in store.teams:
            team_rows += f"""
            <tr>
              <td>{escape(t.name)}</td>
              <td>{escape(t.project_name)}</td>
              <td>{escape(", ".join(t.members))}</td>
              <td>
                <form method="post" action="/admin/teams/{escape(t.id)}/delete">
                  {password_field()}<button type="submit">Remove</button>
                </form>
              </td>
            </tr>
            """

        judge_rows = ""
        for j in store.judges:
            count = len(assigned_teams(j, store.teams))
            label = "All teams" if not j.assigned_teams else f"{count} teams assigned"
            judge_rows += f"""
            <tr>
              <td>{escape(j.name)}</td>
              <td>{escape(j.email)}</td>
              <td>{label}</td>
              <td>
                <form method="post" action="/admin/judges/{escape(j.id)}/delete">
                  {password_field()}<button type="submit">Remove</button>
                </form>
              </td>
            </tr>
            """

        team_checks = "".join(
            f'<label><input type="checkbox" name="team_ids" value="{escape(t.id)}" /> {escape(t.name)}</label> '
            for t in store.teams
        )

        body = f"""
        <div class="card">
          <p>Teams: <span class="pill">{len(store.teams)}</span>
             Judges: <span class="pill">{len(store.judges)}</span>
             Evaluations: <span class="pill">{progress["submitted"]} / {progress["expected"]}</span></p>
        </div>

        <div class="card">
          <h2>Teams</h2>
          <table>
            <thead><tr><th>Team</th><th>Project</th><th>Members</th><th></th></tr></thead>
            <tbody>{team_rows or '<tr><td colspan="4" class="muted">No teams yet.</td></tr>'}</tbody>
          </table>
          <h3>Add Team</h3>
          <form method="post" action="/admin/teams/add">
            <div class="row">
              <input name="name" placeholder="Team name" required />
              <input name="project_name" placeholder="Project name" required />
            </div>
            <textarea name="project_description" rows="2" placeholder="Project description"></textarea>
            <textarea name="members" rows="3" placeholder="One member per line"></textarea>
            <div class="row">{password_field()}</div>
            <button type="submit">Add Team</button>
          </form>
          <h3>Upload Teams (JSON)</h3>
          <form method="post" action="/admin/teams/upload" enctype="multipart/form-data">
            <div class="row"><input type="file" name="file" accept=".json" required />{password_field()}</div>
            <p class="muted">Replaces every team. Evaluations of teams missing from the file are removed.</p>
            <button type="submit">Upload</button>
          </form>
        </div>

        <div class="card">
          <h2>Judges</h2>
          <table>
            <thead><tr><th>Name</th><th>Email</th><th>Assigned</th><th></th></tr></thead>
            <tbody>{judge_rows or '<tr><td colspan="4" class="muted">No judges yet.</td></tr>'}</tbody>
          </table>
          <h3>Add Judge</h3>
          <form method="post" action="/admin/judges/add">
            <div class="row">
              <input name="name" placeholder="Judge name" required />
              <input name="email" placeholder="Email" type="email" required />
            </div>
            <p>{team_checks or '<span class="muted">No teams to assign.</span>'}</p>
            <p class="muted">Leave every box unchecked to assign all teams.</p>
            <div class="row">{password_field()}</div>
            <button type="submit">Add Judge</button>
          </form>
          <h3>Upload Judges (JSON)</h3>
          <form method="post" action="/admin/judges/upload" enctype="multipart/form-data">
            <div class="row"><input type="file" name="file" accept=".json" required />{password_field()}</div>
            <button type="submit">Upload</button>
          </form>
        </div>

        <div class="card">
          <h2>Results</h2>
          <form method="post" action="/admin/results">
            <div class="row">
              {password_field()}
              <select name="order"><option value="highest">Highest Score</option><option value="lowest">Lowest Score</option></select>
            </div>
            <button type="submit">View Results</button>
          </form>
          <form method="post" action="/admin/evaluations/reset" style="margin-top:12px;">
            <div class="row">{password_field()}</div>
            <button type="submit" class="danger">Reset Evaluations</button>
          </form>
        </div>
        """
        return page("Admin", body)

    @app.post("/admin/teams/add")
    def admin_add_team(
        request: Request,
        admin_password: str = Form(...),
        name: str = Form(...),
        project_name: str = Form(...),
        project_description: str = Form(""),
        members: str = Form(""),
    ):
        require_admin(request, admin_password)
        try:
            team = Team(
                name=name,
                project_name=project_name,
                project_description=project_description,
                members=members.splitlines(),
            )
        except ValueError:
            return error_page("Add Team", ValidationError("Please fill in all required fields."), "/admin")
        try:
            get_store(request).add_team(team)
        except JudgingError as e:
            return error_page("Add Team", e, "/admin")
        return RedirectResponse(url="/admin", status_code=303)

    @app.post("/admin/teams/{team_id}/delete")
    def admin_remove_team(request: Request, team_id: str, admin_password: str = Form(...)):
        require_admin(request, admin_password)
        try:
            get_store(request).remove_team(team_id)
        except JudgingError as e:
            return error_page("Remove Team", e, "/admin")
        return RedirectResponse(url="/admin", status_code=303)

    @app.post("/admin/teams/upload")
    async def admin_upload_teams(request: Request, admin_password: str = Form(...), file: UploadFile = File(...)):
        require_admin(request, admin_password)
        try:
            teams = parse_teams_payload(load_json_payload(await file.read()))
            get_store(request).replace_teams(teams)
        except JudgingError as e:
            return error_page("Upload Error", e, "/admin")
        return RedirectResponse(url="/admin", status_code=303)

    @app.post("/admin/judges/add")
    def admin_add_judge(
        request: Request,
        admin_password: str = Form(...),
        name: str = Form(...),
        email: str = Form(...),
        team_ids: List[str] = Form([]),
    ):
        require_admin(request, admin_password)
        try:
            judge = Judge(name=name, email=email, assigned_teams=team_ids or None)
        except ValueError:
            return error_page("Add Judge", ValidationError("Please fill in all required fields."), "/admin")
        try:
            get_store(request).add_judge(judge)
        except JudgingError as e:
            return error_page("Add Judge", e, "/admin")
        return RedirectResponse(url="/admin", status_code=303)

    @app.post("/admin/judges/{judge_id}/delete")
    def admin_remove_judge(request: Request, judge_id: str, admin_password: str = Form(...)):
        require_admin(request, admin_password)
        try:
            get_store(request).remove_judge(judge_id)
        except JudgingError as e:
            return error_page("Remove Judge", e, "/admin")
        return RedirectResponse(url="/admin", status_code=303)

    @app.post("/admin/judges/upload")
    async def admin_upload_judges(request: Request, admin_password: str = Form(...), file: UploadFile = File(...)):
        require_admin(request, admin_password)
        try:
            judges = parse_judges_payload(load_json_payload(await file.read()))
            get_store(request).replace_judges(judges)
        except JudgingError as e:
            return error_page("Upload Error", e, "/admin")
        return RedirectResponse(url="/admin", status_code=303)

    @app.post("/admin/evaluations/reset")
    def admin_reset_evaluations(request: Request, admin_password: str = Form(...)):
        require_admin(request, admin_password)
        try:
            get_store(request).reset_evaluations()
        except JudgingError as e:
            return error_page("Reset Evaluations", e, "/admin")
        return RedirectResponse(url="/admin", status_code=303)

    @app.post("/admin/results", response_class=HTMLResponse)
    def admin_results(request: Request, admin_password: str = Form(...), order: str = Form("highest")):
        require_admin(request, admin_password)
        store = get_store(request)
        ranked = rank_teams(calculate_final_scores(store.teams, store.evaluations), descending=order != "lowest")

        if not store.evaluations:
            return page(
                "Results",
                '<div class="card"><p><a href="/admin">&larr; Back to Admin</a></p>'
                '<h2>No Evaluations Yet</h2><p class="muted">No evaluations have been submitted by the judges.</p></div>',
            )

        judge_names: Dict[str, str] = {j.id: j.name for j in store.judges}
        rows = ""
        for r in ranked:
            status = evaluation_status(r.team.id, store.judges, store.evaluations)
            detail = "".join(
                f"<li>{escape(judge_names.get(e.judge_id, e.judge_id))}: {e.total_score:g}"
                f"{' - ' + escape(e.comments) if e.comments else ''}</li>"
                for e in r.evaluations
            )
            rows += f"""
            <tr>
              <td>{r.rank}</td>
              <td>{escape(r.team.name)}</td>
              <td>{escape(r.team.project_name)}</td>
              <td>{r.total_score:g}</td>
              <td>{status.completed}/{status.total} ({status.percentage}%)</td>
              <td><ul>{detail}</ul></td>
            </tr>
            """

        body = f"""
        <div class="card">
          <p><a href="/admin">&larr; Back to Admin</a></p>
          <h2>Final Rankings</h2>
          <p>
            <a href="/admin/download/results?admin_password={escape(admin_password)}&order={escape(order)}">Download Results CSV</a>
          </p>
          <table>
            <thead><tr><th>Rank</th><th>Team</th><th>Project</th><th>Score</th><th>Evaluation Status</th><th>Breakdown</th></tr></thead>
            <tbody>{rows}</tbody>
          </table>
        </div>
        """
        return page("Results", body)

    @app.get("/admin/download/results")
    def download_results(request: Request, admin_password: str, order: str = "highest"):
        require_admin(request, admin_password)
        store = get_store(request)
        ranked = rank_teams(calculate_final_scores(store.teams, store.evaluations), descending=order != "lowest")

        buf = StringIO()
        results_frame(ranked, store.judges, store.evaluations).to_csv(buf, index=False)
        return Response(
            content=buf.getvalue(),
            media_type="text/csv",
            headers={"Content-Disposition": 'attachment; filename="hackathon_results.csv"'},
        )

    # -----------------------
    # Routes: Judge
    # -----------------------
    @app.get("/judge", response_class=HTMLResponse)
    def judge_home():
        body = """
        <div class="card">
          <form method="post" action="/judge/login">
            <div class="row">
              <input name="email" placeholder="Your email" type="email" required />
            </div>
            <button type="submit">Start Judging</button>
          </form>
          <p class="muted">Use the email the organizers registered for you.</p>
        </div>
        """
        return page("Judge", body)

    @app.post("/judge/login")
    def judge_login(request: Request, email: str = Form(...)):
        judge = get_store(request).find_judge_by_email(email)
        if not judge:
            return page("Judge", '<div class="card"><p class="danger">No judge is registered with that email.</p></div>', 403)
        return RedirectResponse(url=f"/judge/{quote(judge.id)}?email={quote(judge.email)}", status_code=303)

    @app.get("/judge/{judge_id}", response_class=HTMLResponse)
    def judge_dashboard(request: Request, judge_id: str, email: str):
        principal = require_judge(request, judge_id, email)
        store = get_store(request)
        judge = store.get_judge(judge_id)
        teams = assigned_teams(judge, store.teams)
        workload = judge_workload(judge, store.teams, store.evaluations)

        cards = ""
        for t in teams:
            existing = store.get_evaluation(judge_id, t.id)
            inputs = ""
            for c in store.criteria:
                val = existing.scores.get(c.key, 0) if existing else 0
                inputs += f"""
                <tr>
                  <td title="{escape(c.description)}">{escape(c.name)}</td>
                  <td><input type="number" min="0" max="{c.max_score:g}" step="any"
                       name="{SCORE_FIELD_PREFIX}{c.key}" value="{val:g}" required /></td>
                </tr>
                """
            state = (
                f'<span class="ok">Submitted {escape(existing.submitted_at)} ({existing.total_score:g})</span>'
                if existing
                else '<span class="muted">Not evaluated</span>'
            )
            cards += f"""
            <div class="card">
              <h3>{escape(t.name)}: {escape(t.project_name)}</h3>
              <p class="muted">{escape(t.project_description)}</p>
              <p>{state}</p>
              <form method="post" action="/judge/{escape(judge_id)}/teams/{escape(t.id)}/evaluate">
                <input type="hidden" name="email" value="{escape(principal.email or '')}" />
                <table><tbody>{inputs}</tbody></table>
                <textarea name="comments" rows="3" placeholder="Comments">{escape(existing.comments or '') if existing else ''}</textarea>
                <button type="submit">{'Update' if existing else 'Submit'} Evaluation</button>
              </form>
            </div>
            """

        body = f"""
        <div class="card">
          <p>Logged in as <b>{escape(principal.name or '')}</b></p>
          <p>Assigned: <span class="pill">{workload.assigned}</span>
             Completed: <span class="pill">{workload.completed}</span>
             Remaining: <span class="pill">{workload.remaining}</span></p>
          <p><a href="/judge/{quote(judge_id)}/evaluations?email={quote(principal.email or '')}">My Evaluations</a></p>
        </div>
        {cards or '<div class="card muted">No teams have been assigned to you.</div>'}
        """
        return page("Judge Dashboard", body)

    @app.get("/judge/{judge_id}/evaluations", response_class=HTMLResponse)
    def judge_evaluations(request: Request, judge_id: str, email: str):
        principal = require_judge(request, judge_id, email)
        store = get_store(request)
        history = judge_history(judge_id, store.evaluations)

        rows = ""
        for e in history:
            team = store.get_team(e.team_id)
            scores = ", ".join(f"{escape(c.name)} {e.scores.get(c.key, 0):g}" for c in store.criteria)
            rows += f"""
            <tr>
              <td>{escape(team.name if team else e.team_id)}</td>
              <td>{e.total_score:g} / {MAX_TOTAL_SCORE:g}</td>
              <td>{scores}</td>
              <td>{escape(e.comments or '')}</td>
              <td>{escape(e.submitted_at)}</td>
            </tr>
            """

        body = f"""
        <div class="card">
          <p><a href="/judge/{quote(judge_id)}?email={quote(principal.email or '')}">&larr; Back to Dashboard</a></p>
          <p>Submitted evaluations: <span class="pill">{len(history)}</span></p>
          <table>
            <thead><tr><th>Team</th><th>Total</th><th>Scores</th><th>Comments</th><th>Submitted</th></tr></thead>
            <tbody>{rows or '<tr><td colspan="5" class="muted">You have not submitted any evaluations yet.</td></tr>'}</tbody>
          </table>
        </div>
        """
        return page("My Evaluations", body)

    @app.post("/judge/{judge_id}/teams/{team_id}/evaluate")
    async def judge_evaluate(request: Request, judge_id: str, team_id: str, email: str = Form(...)):
        require_judge(request, judge_id, email)
        store = get_store(request)
        form = await request.form()
        back = f"/judge/{quote(judge_id)}?email={quote(email)}"
        try:
            scores = parse_score_form(store.criteria, form)
            submit_evaluation(store, judge_id, team_id, scores, comments=str(form.get("comments") or ""))
        except JudgingError as e:
            return error_page("Evaluation", e, back)
        return RedirectResponse(url=back, status_code=303)

    # -----------------------
    # Routes: JSON API
    # -----------------------
    @app.get("/api/criteria")
    def api_criteria(request: Request):
        return {"criteria": [c.model_dump() for c in get_store(request).criteria], "max_total": MAX_TOTAL_SCORE}

    @app.get("/api/results")
    def api_results(request: Request, order: str = "highest", x_admin_password: str = Header(...)):
        require_admin(request, x_admin_password)
        store = get_store(request)
        ranked = rank_teams(calculate_final_scores(store.teams, store.evaluations), descending=order != "lowest")
        return {
            "results": [
                {
                    **r.model_dump(),
                    "status": evaluation_status(r.team.id, store.judges, store.evaluations).model_dump(),
                }
                for r in ranked
            ],
            "progress": overall_progress(store.teams, store.judges, store.evaluations),
        }

    @app.post("/api/evaluations")
    def api_submit_evaluation(request: Request, payload: EvaluationIn, x_judge_email: str = Header(...)):
        require_judge(request, payload.judge_id, x_judge_email)
        evaluation = submit_evaluation(
            get_store(request), payload.judge_id, payload.team_id, payload.scores, payload.comments
        )
        return evaluation.model_dump()


app = create_app()
