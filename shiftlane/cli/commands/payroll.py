"""Payroll commands: hours, quotes, job-posting fees and promo codes."""

from datetime import date, datetime, timezone
from typing import TYPE_CHECKING

from shiftlane.cli.commands.helpers import format_quote, parse_clock, print_json
from shiftlane.payroll.duration import compute_billable_hours, snap_to_increment
from shiftlane.payroll.promo import PromoCode, PromoType, generate_promo_codes

if TYPE_CHECKING:
    from shiftlane.cli.commands.helpers import Engine


def cmd_hours(args, engine: "Engine"):
    """Billable hours for a start/end clock pair."""
    start = parse_clock(args.start, "start")
    end = parse_clock(args.end, "end")
    increment = engine.config.time_increment_minutes

    if args.snap:
        anchor = date(2000, 1, 1)
        start = snap_to_increment(datetime.combine(anchor, start), increment).time()
        end = snap_to_increment(datetime.combine(anchor, end), increment).time()

    hours = compute_billable_hours(
        start,
        end,
        args.break_minutes,
        increment=increment,
        max_hours=engine.config.max_shift_hours,
    )
    if args.json:
        print_json(
            {
                "start": start.isoformat("minutes"),
                "end": end.isoformat("minutes"),
                "break_minutes": args.break_minutes,
                "overnight": end <= start,
                "hours": hours,
            }
        )
    else:
        suffix = " (overnight)" if end <= start else ""
        print(f"{hours:.2f} hours{suffix}")


def cmd_quote(args, engine: "Engine"):
    """Projected cost for hours at a rate. Promo codes are checked, not consumed."""
    quote = engine.costs.quote(args.hours, args.rate, args.promo, consume_promo=False)
    if args.json:
        print_json(quote.to_dict())
    else:
        print(format_quote(quote, engine.config.currency))


def cmd_job_fee(args, engine: "Engine"):
    """Fee for posting a permanent job."""
    quote = engine.costs.quote_job_posting(args.weekly_cost, args.promo, consume_promo=False)
    if args.json:
        print_json(quote.to_dict())
        return

    shown = quote.display()
    currency = engine.config.currency
    print(f"Listing fee:  {shown['listing_fee']} {currency}")
    print(f"Weekly fee:   {shown['service_fee']} {currency}")
    if quote.promo_code:
        print(f"Discount:     -{shown['discount']} {currency} ({quote.promo_code})")
    print(f"Total:        {shown['total_cost']} {currency}")


def cmd_promo(args, engine: "Engine"):
    """Handle promo subcommands."""
    if args.promo_action == "generate":
        codes = generate_promo_codes(
            engine.store,
            args.count,
            PromoType(args.type),
            description=args.description or "",
            prefix=args.prefix or "",
        )
        if args.json:
            print_json([c.to_dict() for c in codes])
        else:
            for promo in codes:
                print(promo.code)

    elif args.promo_action == "list":
        codes = engine.store.list_codes(unused_only=args.unused)
        if args.json:
            print_json([c.to_dict() for c in codes])
            return
        if not codes:
            print("No promo codes.")
            return
        for promo in codes:
            state = f"used by {promo.used_by}" if promo.used else "unused"
            print(f"{promo.code:<16} {promo.type:<20} {state}")

    elif args.promo_action == "add":
        promo = PromoCode(
            code=args.code,
            type=PromoType(args.type),
            description=args.description or "",
            created_at=datetime.now(timezone.utc),
        )
        engine.store.save_code(promo)
        print(f"Added {promo.code} ({promo.type})")
