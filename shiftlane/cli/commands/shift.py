"""Shift lifecycle commands for the shiftlane CLI."""

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict

from shiftlane.cli.commands.helpers import (
    format_quote,
    format_shift,
    parse_clock,
    print_json,
    validate_input,
)
from shiftlane.shifts.models import Actor

if TYPE_CHECKING:
    from shiftlane.cli.commands.helpers import Engine


def _draft_from_args(args) -> Dict[str, Any]:
    """Build a shift draft mapping from a JSON file or from flags."""
    if args.file:
        return json.loads(Path(args.file).read_text(encoding="utf-8"))

    missing = [name for name in ("role", "date", "start", "end", "rate") if not getattr(args, name)]
    if missing:
        raise ValueError(f"Missing required options: {', '.join('--' + m for m in missing)}")

    draft: Dict[str, Any] = {
        "role": validate_input(args.role, "role", 100),
        "date": args.date,
        "start_time": parse_clock(args.start, "start").isoformat("minutes"),
        "end_time": parse_clock(args.end, "end").isoformat("minutes"),
        "timezone": args.tz,
        "hourly_rate": args.rate,
        "break_minutes": args.break_minutes,
    }
    if args.location:
        draft["location"] = validate_input(args.location, "location", 500)
    return draft


def _show_result(args, result, engine: "Engine") -> None:
    if args.json:
        print_json(result.to_dict())
        return
    for shift in result.shifts:
        print(format_shift(shift))
    if result.quote is not None:
        print(format_quote(result.quote, engine.config.currency))


def cmd_shift(args, engine: "Engine"):
    """Handle shift subcommands."""
    action = args.shift_action
    lifecycle = engine.lifecycle

    if action == "post":
        venue = Actor.venue(validate_input(args.venue, "venue"))
        if args.block_file:
            drafts = json.loads(Path(args.block_file).read_text(encoding="utf-8"))
            if not isinstance(drafts, list):
                raise ValueError("--block-file must contain a JSON array of shift drafts")
            result = engine.offers.post_block(
                venue, drafts, independent_pay=args.independent_pay, promo_code=args.promo
            )
        elif args.offer_to:
            result = engine.offers.offer_direct(
                venue, validate_input(args.offer_to, "worker"), _draft_from_args(args), args.promo
            )
        else:
            result = engine.offers.post_shift(venue, _draft_from_args(args), args.promo)
        _show_result(args, result, engine)

    elif action == "apply":
        shift, application = lifecycle.apply(args.shift_id, Actor.worker(args.worker))
        if args.json:
            print_json({"shift": shift.to_dict(), "application": application.to_dict()})
        else:
            print(f"Applied to {shift.id} as {application.worker_id} ({application.status})")

    elif action == "withdraw":
        application = lifecycle.withdraw_application(args.shift_id, Actor.worker(args.worker))
        print(f"Withdrew application {application.id}")

    elif action == "offer":
        venue = Actor.venue(args.venue)
        if args.block:
            result = engine.offers.offer_block(args.shift_id, venue, args.worker)
        else:
            result = engine.offers.offer_single(
                args.shift_id,
                venue,
                args.worker,
                per_shift=not args.cascade,
                direct=args.direct,
            )
        if not result.shifts and not args.json:
            print(f"Worker {args.worker} already holds that offer.")
            return
        _show_result(args, result, engine)

    elif action == "accept":
        shift = lifecycle.accept_offer(args.shift_id, Actor.worker(args.worker))
        print(format_shift(shift))

    elif action == "decline":
        shift = lifecycle.decline_offer(args.shift_id, Actor.worker(args.worker), args.reason)
        print(format_shift(shift))

    elif action == "cancel":
        if bool(args.venue) == bool(args.worker):
            raise ValueError("Specify exactly one of --venue or --worker")
        actor = Actor.venue(args.venue) if args.venue else Actor.worker(args.worker)
        shifts = lifecycle.cancel(args.shift_id, actor, args.reason, per_shift=args.per_shift)
        for shift in shifts:
            print(format_shift(shift))

    elif action == "complete":
        system = Actor.system("cli")
        if args.due:
            shifts = lifecycle.complete_due(system)
            print(f"Completed {len(shifts)} shift(s)")
            for shift in shifts:
                print(format_shift(shift))
        elif args.shift_id:
            print(format_shift(lifecycle.complete(args.shift_id, system)))
        else:
            raise ValueError("Give a shift id or --due")

    elif action == "finalize":
        start = end = None
        if args.start or args.end:
            # Clock times are read on the shift's own day
            shift = lifecycle.get_shift(args.shift_id)
            start = parse_clock(args.start, "start") if args.start else shift.start.time()
            end = parse_clock(args.end, "end") if args.end else shift.end.time()
        shift, invoice = engine.settlement.finalize(
            args.shift_id,
            Actor.venue(args.venue),
            start,
            end,
            args.break_minutes,
            rating=args.rating,
            review_text=args.review or "",
            promo_code=args.promo,
            snap=args.snap,
        )
        if args.json:
            print_json({"shift": shift.to_dict(), "invoice": invoice.to_dict()})
        else:
            print(format_shift(shift))
            print(f"Invoice {invoice.id}: {invoice.to_dict()['total_amount']} {invoice.currency}")

    elif action == "settle":
        shift = engine.settlement.settle_payout(
            args.shift_id, Actor.system("cli"), request_review=not args.no_review
        )
        print(format_shift(shift))

    elif action == "review":
        shift = engine.settlement.submit_worker_review(
            args.shift_id, Actor.worker(args.worker), args.rating, args.comment or ""
        )
        print(format_shift(shift))

    elif action == "show":
        shift = lifecycle.get_shift(args.shift_id)
        if args.json:
            print_json(shift.to_dict())
        else:
            print(format_shift(shift, verbose=True))

    elif action == "history":
        transitions = lifecycle.get_history(args.shift_id)
        if args.json:
            print_json([t.to_dict() for t in transitions])
            return
        for t in transitions:
            when = t.created_at.isoformat() if t.created_at else "?"
            print(f"{when}  {t.edge:<22} {t.from_status or '-'} -> {t.to_status}  ({t.actor_role} {t.actor_id})")

    elif action == "list":
        shifts = engine.store.list_shifts(
            status=args.status, venue_id=args.venue, worker_id=args.worker, limit=args.limit
        )
        if args.json:
            print_json([s.to_dict() for s in shifts])
            return
        if not shifts:
            print("No shifts.")
        for shift in shifts:
            print(format_shift(shift))
