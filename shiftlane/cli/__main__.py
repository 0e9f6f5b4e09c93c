"""
shiftlane CLI - shift lifecycle and payroll from the command line.

Usage:
    shiftlane hours START END [--break MIN] [--snap]
    shiftlane quote HOURS RATE [--promo CODE]
    shiftlane job-fee [--weekly-cost X] [--promo CODE]
    shiftlane promo generate|list|add ...
    shiftlane shift post --venue V (--file F | --role R --date D --start HH:MM --end HH:MM --rate X)
    shiftlane shift apply|withdraw|offer|accept|decline|cancel SHIFT_ID ...
    shiftlane shift complete (SHIFT_ID | --due)
    shiftlane shift finalize|settle|review|show|history SHIFT_ID ...
    shiftlane shift list [--status S]
"""

import argparse
import logging
import sqlite3
import sys

from shiftlane.cli.commands import cmd_hours, cmd_job_fee, cmd_promo, cmd_quote, cmd_shift
from shiftlane.cli.commands.helpers import build_engine
from shiftlane.errors import ShiftEngineError, VersionConflictError
from shiftlane.payroll.promo import PromoType
from shiftlane.settings import get_settings
from shiftlane.shifts.models import ShiftStatus

# Set up logging
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

COMMANDS = {
    "hours": cmd_hours,
    "quote": cmd_quote,
    "job-fee": cmd_job_fee,
    "promo": cmd_promo,
    "shift": cmd_shift,
}


def _add_shift_parser(subparsers) -> None:
    p_shift = subparsers.add_parser("shift", help="Shift lifecycle operations")
    shift_sub = p_shift.add_subparsers(dest="shift_action", required=True)

    def add(name, help_text, shift_id=True):
        p = shift_sub.add_parser(name, help=help_text)
        if shift_id:
            p.add_argument("shift_id", help="Shift ID")
        p.add_argument("--json", "-j", action="store_true")
        return p

    p_post = add("post", "Post a shift (or a block, or a direct offer)", shift_id=False)
    p_post.add_argument("--venue", required=True, help="Venue ID")
    p_post.add_argument("--file", help="JSON file with one shift draft")
    p_post.add_argument("--block-file", help="JSON file with an array of drafts to post as a block")
    p_post.add_argument("--independent-pay", action="store_true",
                        help="Allow different rates/roles within the block")
    p_post.add_argument("--role")
    p_post.add_argument("--date", help="YYYY-MM-DD")
    p_post.add_argument("--start", help="HH:MM")
    p_post.add_argument("--end", help="HH:MM (at or before start means overnight)")
    p_post.add_argument("--break", dest="break_minutes", type=int, default=0,
                        help="Unpaid break in minutes")
    p_post.add_argument("--rate", type=float, help="Hourly rate")
    p_post.add_argument("--tz", default="UTC", help="IANA timezone for --date/--start/--end")
    p_post.add_argument("--location")
    p_post.add_argument("--promo", help="Promo code")
    p_post.add_argument("--offer-to", help="Create the shift already offered to this worker")

    p_apply = add("apply", "Apply to a posted shift")
    p_apply.add_argument("--worker", required=True)

    p_withdraw = add("withdraw", "Withdraw an application")
    p_withdraw.add_argument("--worker", required=True)

    p_offer = add("offer", "Offer a shift to a worker")
    p_offer.add_argument("--venue", required=True)
    p_offer.add_argument("--worker", required=True)
    p_offer.add_argument("--direct", action="store_true",
                         help="Offer to a worker who has not applied")
    p_offer.add_argument("--cascade", action="store_true",
                         help="Offer every shift in this shift's block")
    p_offer.add_argument("--block", action="store_true",
                         help="Treat SHIFT_ID as a block ID")

    p_accept = add("accept", "Accept an offer")
    p_accept.add_argument("--worker", required=True)

    p_decline = add("decline", "Decline an offer")
    p_decline.add_argument("--worker", required=True)
    p_decline.add_argument("--reason")

    p_cancel = add("cancel", "Cancel a shift (and its block)")
    p_cancel.add_argument("--venue")
    p_cancel.add_argument("--worker")
    p_cancel.add_argument("--reason")
    p_cancel.add_argument("--per-shift", action="store_true",
                          help="Only cancel this shift, not its block")

    p_complete = shift_sub.add_parser("complete", help="Complete ended shifts")
    p_complete.add_argument("shift_id", nargs="?")
    p_complete.add_argument("--due", action="store_true", help="Complete every ended shift")

    p_finalize = add("finalize", "Confirm hours, review the worker and invoice")
    p_finalize.add_argument("--venue", required=True)
    p_finalize.add_argument("--rating", type=int, required=True, help="1-5")
    p_finalize.add_argument("--review")
    p_finalize.add_argument("--start", help="Actual start HH:MM")
    p_finalize.add_argument("--end", help="Actual end HH:MM")
    p_finalize.add_argument("--break", dest="break_minutes", type=int, default=None)
    p_finalize.add_argument("--snap", action="store_true",
                            help="Round actual times to the nearest increment")
    p_finalize.add_argument("--promo")

    p_settle = add("settle", "Record the payout")
    p_settle.add_argument("--no-review", action="store_true",
                          help="Close the shift as paid without asking the worker for a review")

    p_review = add("review", "Worker reviews the venue")
    p_review.add_argument("--worker", required=True)
    p_review.add_argument("--rating", type=int, required=True)
    p_review.add_argument("--comment")

    add("show", "Show a shift")
    add("history", "Show a shift's transitions")

    p_list = add("list", "List shifts", shift_id=False)
    p_list.add_argument("--status", choices=[s.value for s in ShiftStatus])
    p_list.add_argument("--venue")
    p_list.add_argument("--worker")
    p_list.add_argument("--limit", type=int, default=50)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shiftlane",
        description="Shift lifecycle and payroll engine",
    )
    parser.add_argument("--db", help="SQLite database path (default: SHIFTLANE_DB_PATH)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # hours
    p_hours = subparsers.add_parser("hours", help="Billable hours for a shift")
    p_hours.add_argument("start", help="HH:MM")
    p_hours.add_argument("end", help="HH:MM (at or before start means overnight)")
    p_hours.add_argument("--break", dest="break_minutes", type=int, default=0)
    p_hours.add_argument("--snap", action="store_true",
                         help="Round times to the nearest increment first")
    p_hours.add_argument("--json", "-j", action="store_true")

    # quote
    p_quote = subparsers.add_parser("quote", help="Cost of a shift")
    p_quote.add_argument("hours", type=float)
    p_quote.add_argument("rate", type=float)
    p_quote.add_argument("--promo", help="Promo code (checked, not consumed)")
    p_quote.add_argument("--json", "-j", action="store_true")

    # job-fee
    p_job = subparsers.add_parser("job-fee", help="Fee for posting a permanent job")
    p_job.add_argument("--weekly-cost", type=float, default=0.0)
    p_job.add_argument("--promo")
    p_job.add_argument("--json", "-j", action="store_true")

    # promo
    p_promo = subparsers.add_parser("promo", help="Promo code management")
    promo_sub = p_promo.add_subparsers(dest="promo_action", required=True)
    promo_types = [t.value for t in PromoType]
    pr_gen = promo_sub.add_parser("generate", help="Generate fresh codes")
    pr_gen.add_argument("--count", type=int, default=1)
    pr_gen.add_argument("--type", choices=promo_types, required=True)
    pr_gen.add_argument("--description")
    pr_gen.add_argument("--prefix")
    pr_gen.add_argument("--json", "-j", action="store_true")
    pr_list = promo_sub.add_parser("list", help="List codes")
    pr_list.add_argument("--unused", action="store_true")
    pr_list.add_argument("--json", "-j", action="store_true")
    pr_add = promo_sub.add_parser("add", help="Register a specific code")
    pr_add.add_argument("code")
    pr_add.add_argument("--type", choices=promo_types, required=True)
    pr_add.add_argument("--description")

    _add_shift_parser(subparsers)
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    level = logging.DEBUG if args.verbose else getattr(logging, settings.log_level.upper(), logging.WARNING)
    logging.getLogger("shiftlane").setLevel(level)

    try:
        # hours needs no persistence
        db_path = ":memory:" if args.command == "hours" else (args.db or settings.db_path)
        engine = build_engine(db_path, settings.payroll_config())
    except (ValueError, OSError, sqlite3.Error) as e:
        logger.error(f"Failed to open database: {e}")
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        COMMANDS[args.command](args, engine)
    except (ShiftEngineError, VersionConflictError) as e:
        logger.debug("Command failed: %r", e)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except (ValueError, TypeError) as e:
        logger.debug("Input validation error: %r", e)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        engine.close()


if __name__ == "__main__":
    main()
