"""coachmarket CLI — command-line interface for the marketplace service.

Usage:
    python -m coachmarket.cli status
    python -m coachmarket.cli register-user --id u1 --email u1@example.com --name Ada
    python -m coachmarket.cli create-resume --user u1 --title "Backend CV" --id r1
    python -m coachmarket.cli create-task --user u1 --resume r1 --type resume_review_full --price 50
    python -m coachmarket.cli place-bid --coach c1 --task T1 --price 40 --minutes 60
    python -m coachmarket.cli accept-bid --user u1 --bid B1
    python -m coachmarket.cli hold-escrow --task T1 --bid B1 --payment-ref pi_123
    python -m coachmarket.cli dispute-task --user u1 --task T1 --reason "late"
    python -m coachmarket.cli resolve-dispute --admin a1 --task T1 --refund
    python -m coachmarket.cli can-access --user c1 --type resume --id r1
    python -m coachmarket.cli check-invariants

State lives in a data directory (state.json + events.jsonl). The data
and config directories come from --data-dir / --config, else from
COACHMARKET_DATA_DIR / COACHMARKET_CONFIG_DIR (a .env file is honoured),
else from data/ and config/ at the repository root.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from coachmarket.errors import MarketplaceError
from coachmarket.models.identity import Role
from coachmarket.models.marketplace import TaskType, Urgency
from coachmarket.policy import check_invariants
from coachmarket.service import MarketplaceService, ServiceResult


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"
DEFAULT_DATA = Path(__file__).resolve().parents[2] / "data"


def _config_dir(args: argparse.Namespace) -> Path:
    if args.config is not None:
        return args.config
    env = os.getenv("COACHMARKET_CONFIG_DIR")
    return Path(env) if env else DEFAULT_CONFIG


def _data_dir(args: argparse.Namespace) -> Path:
    if args.data_dir is not None:
        return args.data_dir
    env = os.getenv("COACHMARKET_DATA_DIR")
    return Path(env) if env else DEFAULT_DATA


def _utc_datetime(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO-8601 datetime: {value}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _make_service(args: argparse.Namespace) -> MarketplaceService:
    """Create a MarketplaceService with durable persistence."""
    return MarketplaceService.open(_data_dir(args), _config_dir(args))


def _report(result: ServiceResult, message: Optional[str] = None) -> int:
    if not result.success:
        print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
        return 1
    if message is None:
        print(json.dumps(result.data, indent=2, default=str))
        return 0
    print(message)
    if "warning" in result.data:
        print(f"Warning: {result.data['warning']}", file=sys.stderr)
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_register_user(args: argparse.Namespace) -> int:
    result = _make_service(args).register_user(args.id, args.email, args.name, args.role)
    return _report(result, f"Registered user: {result.data.get('user_id')} ({args.role})")


def cmd_create_resume(args: argparse.Namespace) -> int:
    result = _make_service(args).create_resume(args.user, args.title, resume_id=args.id)
    return _report(result, f"Created resume: {result.data.get('resume_id')}")


def cmd_create_coach_profile(args: argparse.Namespace) -> int:
    result = _make_service(args).upsert_coach_profile(
        args.user,
        hourly_rate=args.rate,
        specialties=args.specialty,
        coach_id=args.id,
    )
    return _report(
        result,
        f"Coach profile: {result.data.get('coach_id')} "
        f"(complete: {result.data.get('is_complete')}, "
        f"status: {result.data.get('verification_status')})",
    )


def cmd_review_coach(args: argparse.Namespace) -> int:
    result = _make_service(args).review_coach_profile(
        args.admin, args.coach, approve=not args.reject,
    )
    return _report(
        result,
        f"Coach {args.coach}: {result.data.get('verification_status')}",
    )


def cmd_book_session(args: argparse.Namespace) -> int:
    result = _make_service(args).book_session(
        args.user, args.coach, args.at, args.minutes, session_id=args.id,
    )
    return _report(result, f"Booked session: {result.data.get('session_id')}")


def cmd_create_task(args: argparse.Namespace) -> int:
    result = _make_service(args).create_task(
        args.user, args.resume, args.task_type, args.urgency, args.price,
        task_id=args.id,
    )
    return _report(result, f"Created task: {result.data.get('task_id')}")


def cmd_place_bid(args: argparse.Namespace) -> int:
    result = _make_service(args).create_bid(
        args.coach, args.task, args.price, args.minutes, args.message,
        bid_id=args.id,
    )
    return _report(
        result,
        f"Placed bid: {result.data.get('bid_id')} at {result.data.get('price')}",
    )


def cmd_accept_bid(args: argparse.Namespace) -> int:
    result = _make_service(args).accept_bid(args.user, args.bid)
    return _report(
        result,
        f"Accepted bid {args.bid}: task {result.data.get('task_id')} assigned "
        f"at {result.data.get('final_price')}",
    )


def cmd_start_task(args: argparse.Namespace) -> int:
    result = _make_service(args).start_task(args.coach, args.task)
    return _report(result, f"Task {args.task}: {result.data.get('status')}")


def cmd_complete_task(args: argparse.Namespace) -> int:
    result = _make_service(args).complete_task(args.coach, args.task, args.feedback)
    return _report(result, f"Task {args.task}: {result.data.get('status')}")


def cmd_dispute_task(args: argparse.Namespace) -> int:
    result = _make_service(args).dispute_task(args.user, args.task, args.reason)
    return _report(result)


def cmd_resolve_dispute(args: argparse.Namespace) -> int:
    result = _make_service(args).resolve_dispute(
        args.admin, args.task, release_to_coach=not args.refund, note=args.note,
    )
    return _report(result)


def cmd_hold_escrow(args: argparse.Namespace) -> int:
    result = _make_service(args).hold_payment_in_escrow(
        args.task, args.bid, args.payment_ref, actor_id=args.actor,
    )
    return _report(result)


def cmd_release_escrow(args: argparse.Namespace) -> int:
    return _report(_make_service(args).release_escrow(args.task, actor_id=args.actor))


def cmd_refund_escrow(args: argparse.Namespace) -> int:
    return _report(
        _make_service(args).refund_escrow(args.task, args.reason, actor_id=args.actor)
    )


def cmd_escrow_status(args: argparse.Namespace) -> int:
    return _report(_make_service(args).get_escrow_status(args.task, actor_id=args.actor))


def cmd_assign_role(args: argparse.Namespace) -> int:
    result = _make_service(args).assign_role(args.admin, args.user, args.role)
    return _report(
        result,
        f"User {args.user}: {result.data.get('previous_role')} → "
        f"{result.data.get('new_role')}",
    )


def cmd_request_role_change(args: argparse.Namespace) -> int:
    result = _make_service(args).request_role_change(args.user, args.role, args.reason)
    return _report(result, result.data.get("message"))


def cmd_permissions(args: argparse.Namespace) -> int:
    service = _make_service(args)
    perms = service.get_user_permissions(args.user)
    payload: dict[str, Any] = {
        "user_id": args.user,
        "permissions": sorted(p.value for p in perms),
    }
    print(json.dumps(payload, indent=2))
    return 0


def cmd_can_access(args: argparse.Namespace) -> int:
    """Print the resource access decision; exit 1 when denied."""
    decision = _make_service(args).can_access_resource(
        args.user, args.type, args.id, args.action,
    )
    print(json.dumps({"allowed": decision.allowed, "reason": decision.reason}, indent=2))
    return 0 if decision.allowed else 1


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Check the role table and the policy file."""
    errors = check_invariants(_config_dir(args))
    if errors:
        for e in errors:
            print(f"FAIL: {e}", file=sys.stderr)
        return 1
    print("All invariants hold.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="coachmarket",
        description="Coaching marketplace — RBAC, bidding and escrow CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config directory (default: $COACHMARKET_CONFIG_DIR or config/)",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Path to data directory (default: $COACHMARKET_DATA_DIR or data/)",
    )
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show marketplace status")

    # register-user
    p_user = sub.add_parser("register-user", help="Register a user")
    p_user.add_argument("--id", required=True, help="User ID")
    p_user.add_argument("--email", required=True, help="Email address")
    p_user.add_argument("--name", required=True, help="Display name")
    p_user.add_argument(
        "--role", default=Role.JOB_SEEKER.value,
        choices=[r.value for r in Role],
        help="Initial role (default: job_seeker)",
    )

    # create-resume
    p_resume = sub.add_parser("create-resume", help="Create a resume record")
    p_resume.add_argument("--user", required=True, help="Owner user ID")
    p_resume.add_argument("--title", required=True, help="Resume title")
    p_resume.add_argument("--id", help="Resume ID (default: generated)")

    # create-coach-profile
    p_coach = sub.add_parser("create-coach-profile", help="Create or update a coach profile")
    p_coach.add_argument("--user", required=True, help="Coach user ID")
    p_coach.add_argument("--rate", help="Hourly rate (Decimal)")
    p_coach.add_argument(
        "--specialty", action="append", default=None,
        help="Specialty (repeatable)",
    )
    p_coach.add_argument("--id", help="Coach profile ID (default: generated)")

    # review-coach
    p_review = sub.add_parser("review-coach", help="Approve or reject a coach profile")
    p_review.add_argument("--admin", required=True, help="Acting admin user ID")
    p_review.add_argument("--coach", required=True, help="Coach profile ID")
    p_review.add_argument("--reject", action="store_true", help="Reject instead of approve")

    # book-session
    p_session = sub.add_parser("book-session", help="Book a coaching session")
    p_session.add_argument("--user", required=True, help="Job seeker user ID")
    p_session.add_argument("--coach", required=True, help="Coach profile ID")
    p_session.add_argument(
        "--at", type=_utc_datetime, required=True,
        help="Start time, ISO-8601 (naive times are UTC)",
    )
    p_session.add_argument("--minutes", type=int, required=True, help="Duration in minutes")
    p_session.add_argument("--id", help="Session ID (default: generated)")

    # create-task
    p_task = sub.add_parser("create-task", help="Post a verification task")
    p_task.add_argument("--user", required=True, help="Job seeker user ID")
    p_task.add_argument("--resume", required=True, help="Resume ID")
    p_task.add_argument(
        "--type", dest="task_type", required=True,
        choices=[t.value for t in TaskType],
        help="Task type",
    )
    p_task.add_argument(
        "--urgency", default=Urgency.STANDARD.value,
        choices=[u.value for u in Urgency],
        help="Urgency (default: standard)",
    )
    p_task.add_argument("--price", required=True, help="Suggested price (Decimal)")
    p_task.add_argument("--id", help="Task ID (default: generated)")

    # place-bid
    p_bid = sub.add_parser("place-bid", help="Bid on a task")
    p_bid.add_argument("--coach", required=True, help="Coach user ID")
    p_bid.add_argument("--task", required=True, help="Task ID")
    p_bid.add_argument("--price", required=True, help="Bid price (Decimal)")
    p_bid.add_argument("--minutes", type=int, required=True, help="Estimated time in minutes")
    p_bid.add_argument("--message", help="Message to the seeker")
    p_bid.add_argument("--id", help="Bid ID (default: generated)")

    # accept-bid
    p_accept = sub.add_parser("accept-bid", help="Accept a bid on your task")
    p_accept.add_argument("--user", required=True, help="Task owner user ID")
    p_accept.add_argument("--bid", required=True, help="Bid ID")

    # start-task / complete-task
    p_start = sub.add_parser("start-task", help="Start work on an assigned task")
    p_start.add_argument("--coach", required=True, help="Assigned coach user ID")
    p_start.add_argument("--task", required=True, help="Task ID")

    p_done = sub.add_parser("complete-task", help="Complete an assigned task")
    p_done.add_argument("--coach", required=True, help="Assigned coach user ID")
    p_done.add_argument("--task", required=True, help="Task ID")
    p_done.add_argument("--feedback", help="Feedback for the seeker")

    # disputes
    p_dispute = sub.add_parser("dispute-task", help="Open a dispute on a task")
    p_dispute.add_argument("--user", required=True, help="Task owner or assigned coach user ID")
    p_dispute.add_argument("--task", required=True, help="Task ID")
    p_dispute.add_argument("--reason", help="Dispute reason")

    p_resolve = sub.add_parser("resolve-dispute", help="Admin: settle a disputed task's escrow")
    p_resolve.add_argument("--admin", required=True, help="Acting admin user ID")
    p_resolve.add_argument("--task", required=True, help="Task ID")
    p_resolve.add_argument(
        "--refund", action="store_true",
        help="Refund the seeker instead of releasing to the coach",
    )
    p_resolve.add_argument("--note", help="Resolution note")

    # escrow
    p_hold = sub.add_parser("hold-escrow", help="Record a payment held in escrow")
    p_hold.add_argument("--task", required=True, help="Task ID")
    p_hold.add_argument("--bid", required=True, help="Accepted bid ID")
    p_hold.add_argument("--payment-ref", required=True, help="Gateway payment reference")
    p_hold.add_argument("--actor", help="Acting user ID (enables authorization)")

    p_release = sub.add_parser("release-escrow", help="Release escrow to the coach")
    p_release.add_argument("--task", required=True, help="Task ID")
    p_release.add_argument("--actor", help="Acting user ID (enables authorization)")

    p_refund = sub.add_parser("refund-escrow", help="Refund escrow to the seeker")
    p_refund.add_argument("--task", required=True, help="Task ID")
    p_refund.add_argument("--reason", help="Refund reason")
    p_refund.add_argument("--actor", help="Acting user ID (enables authorization)")

    p_estatus = sub.add_parser("escrow-status", help="Show escrow status for a task")
    p_estatus.add_argument("--task", required=True, help="Task ID")
    p_estatus.add_argument("--actor", help="Acting user ID (enables authorization)")

    # roles
    p_assign = sub.add_parser("assign-role", help="Admin: set a user's role")
    p_assign.add_argument("--admin", required=True, help="Acting admin user ID")
    p_assign.add_argument("--user", required=True, help="Target user ID")
    p_assign.add_argument("--role", required=True, choices=[r.value for r in Role])

    p_change = sub.add_parser("request-role-change", help="Self-service role change")
    p_change.add_argument("--user", required=True, help="User ID")
    p_change.add_argument("--role", required=True, choices=[r.value for r in Role])
    p_change.add_argument("--reason", help="Reason for the request")

    # permissions
    p_perms = sub.add_parser("permissions", help="List a user's permissions")
    p_perms.add_argument("--user", required=True, help="User ID")

    # can-access
    p_access = sub.add_parser("can-access", help="Check access to a specific resource")
    p_access.add_argument("--user", required=True, help="User ID")
    p_access.add_argument("--type", required=True, help="Resource type (e.g. resume)")
    p_access.add_argument("--id", required=True, help="Resource ID")
    p_access.add_argument("--action", default="view", help="Action (default: view)")

    # check-invariants
    sub.add_parser("check-invariants", help="Check role table and policy invariants")

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "register-user": cmd_register_user,
        "create-resume": cmd_create_resume,
        "create-coach-profile": cmd_create_coach_profile,
        "review-coach": cmd_review_coach,
        "book-session": cmd_book_session,
        "create-task": cmd_create_task,
        "place-bid": cmd_place_bid,
        "accept-bid": cmd_accept_bid,
        "start-task": cmd_start_task,
        "complete-task": cmd_complete_task,
        "dispute-task": cmd_dispute_task,
        "resolve-dispute": cmd_resolve_dispute,
        "hold-escrow": cmd_hold_escrow,
        "release-escrow": cmd_release_escrow,
        "refund-escrow": cmd_refund_escrow,
        "escrow-status": cmd_escrow_status,
        "assign-role": cmd_assign_role,
        "request-role-change": cmd_request_role_change,
        "permissions": cmd_permissions,
        "can-access": cmd_can_access,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except MarketplaceError as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
