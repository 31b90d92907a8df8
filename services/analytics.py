"""Dashboard statistics over certificate submissions."""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Iterable, Optional, Sequence

from flask import current_app

from extensions import db
from models import CertificateSubmission, Grantee, Role, utcnow
from services.auth_context import AuthContext
from services.errors import Forbidden

UNASSIGNED_PROGRAM = "Unassigned"
TOP_PROGRAMS = 5
INSIGHT_COUNT = 3

FILLER_INSIGHT = {
    "title": "Stay close to your grantees",
    "detail": "Schedule quick check-ins to keep certificates moving forward.",
}


@dataclass
class SubmissionRow:
    user_id: int
    status: str
    created_at: datetime


@dataclass
class ProgramSummary:
    program: str
    grantees: int
    completion: int
    pending: int


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def summarize_certificates(submissions: Iterable[SubmissionRow]) -> dict:
    counts = {"total": 0, "pending": 0, "approved": 0, "rejected": 0}
    for submission in submissions:
        if submission.status in counts:
            counts[submission.status] += 1
        counts["total"] += 1
    return counts


def _shift_month(year: int, month: int, offset: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) - offset
    return index // 12, index % 12 + 1


def summarize_monthly_submissions(
    submissions: Iterable[SubmissionRow],
    now: Optional[datetime] = None,
    months: int = 6,
) -> list[dict]:
    """Count submissions per calendar month for the trailing ``months`` months.

    Buckets run oldest to newest and end at the month of ``now``; months
    without submissions keep a count of zero.
    """
    now = now or utcnow()
    buckets = []
    positions = {}
    for offset in range(months - 1, -1, -1):
        year, month = _shift_month(now.year, now.month, offset)
        positions[(year, month)] = len(buckets)
        buckets.append({
            "month": datetime(year, month, 1).strftime("%b"),
            "submitted": 0,
        })

    for submission in submissions:
        created = submission.created_at
        if created is None:
            continue
        position = positions.get((created.year, created.month))
        if position is not None:
            buckets[position]["submitted"] += 1
    return buckets


def summarize_programs(
    grantees: Sequence[tuple[int, Optional[str]]],
    submissions: Iterable[SubmissionRow],
) -> list[ProgramSummary]:
    if not grantees:
        return []

    user_to_program = {}
    stats = {}
    for user_id, batch in grantees:
        program = batch or UNASSIGNED_PROGRAM
        user_to_program[user_id] = program
        entry = stats.setdefault(program, {"grantees": 0, "pending": 0, "approved": 0, "total": 0})
        entry["grantees"] += 1

    for submission in submissions:
        program = user_to_program.get(submission.user_id)
        if program is None:
            continue
        entry = stats[program]
        entry["total"] += 1
        if submission.status == "pending":
            entry["pending"] += 1
        elif submission.status == "approved":
            entry["approved"] += 1

    summaries = [
        ProgramSummary(
            program=program,
            grantees=entry["grantees"],
            completion=_round_half_up(entry["approved"] / entry["total"] * 100) if entry["total"] else 0,
            pending=entry["pending"],
        )
        for program, entry in stats.items()
    ]
    # sorted() is stable, ties keep first-seen program order
    summaries = sorted(summaries, key=lambda s: s.grantees, reverse=True)
    return summaries[:TOP_PROGRAMS]


def build_insights(
    grantee_count: int,
    certificate_counts: dict,
    monthly_submissions: list[dict],
    program_summaries: list[ProgramSummary],
) -> list[dict]:
    insights = []

    pending = certificate_counts["pending"]
    if pending > 0:
        insights.append({
            "title": f"{_plural(pending, 'certificate')} awaiting review",
            "detail": "Reach out to grantees to complete missing requirements.",
        })

    approved = certificate_counts["approved"]
    if approved > 0:
        insights.append({
            "title": f"{_plural(approved, 'approval')} cleared this cycle",
            "detail": "Make sure payouts are coordinated with finance this week.",
        })

    if len(monthly_submissions) >= 2:
        latest, previous = monthly_submissions[-1], monthly_submissions[-2]
        if latest["submitted"] > previous["submitted"]:
            insights.append({
                "title": "Submission volume trending upward",
                "detail": (
                    f"{latest['submitted']} files submitted in {latest['month']}, "
                    f"{latest['submitted'] - previous['submitted']} more than last month."
                ),
            })
        elif latest["submitted"] < previous["submitted"]:
            insights.append({
                "title": "Submissions slowed down",
                "detail": (
                    f"Only {latest['submitted']} files logged in {latest['month']}. "
                    "Send reminders to advisors."
                ),
            })

    if grantee_count == 0:
        insights.append({
            "title": "No grantees assigned yet",
            "detail": "Once assignments are added, analytics will populate instantly.",
        })
    elif program_summaries:
        leader = program_summaries[0]
        insights.append({
            "title": f"{leader.program} leads in submissions",
            "detail": f"{leader.grantees} grantees with a {leader.completion}% completion rate.",
        })

    while len(insights) < INSIGHT_COUNT:
        insights.append(dict(FILLER_INSIGHT))
    return insights[:INSIGHT_COUNT]


def _scoped_personnel_id(actor: AuthContext, personnel_id: Optional[int]) -> Optional[int]:
    if actor.role is Role.PERSONNEL:
        return actor.id
    if actor.role is Role.ADMIN:
        return personnel_id
    raise Forbidden("Unauthorized")


def build_analytics(
    actor: AuthContext,
    personnel_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict:
    scoped_id = _scoped_personnel_id(actor, personnel_id)

    grantee_query = db.session.query(Grantee.user_id, Grantee.batch)
    if scoped_id:
        grantee_query = grantee_query.filter(Grantee.added_by_id == scoped_id)
    grantees = [(row.user_id, row.batch) for row in grantee_query.all()]

    submissions = []
    user_ids = [user_id for user_id, _ in grantees]
    if user_ids:
        rows = (
            db.session.query(
                CertificateSubmission.user_id,
                CertificateSubmission.status,
                CertificateSubmission.created_at,
            )
            .filter(CertificateSubmission.user_id.in_(user_ids))
            .all()
        )
        submissions = [
            SubmissionRow(user_id=row.user_id, status=row.status.value, created_at=row.created_at)
            for row in rows
        ]

    months = current_app.config.get("ANALYTICS_MONTHS", 6)
    certificate_counts = summarize_certificates(submissions)
    monthly = summarize_monthly_submissions(submissions, now=now, months=months)
    programs = summarize_programs(grantees, submissions)
    insights = build_insights(len(grantees), certificate_counts, monthly, programs)

    return {
        "granteeCount": len(grantees),
        "certificateCounts": certificate_counts,
        "monthlySubmissions": monthly,
        "programSummaries": [asdict(p) for p in programs],
        "insights": insights,
    }
