# backend/app/cli/__main__.py
from __future__ import annotations

import argparse
import json

from app.cli.seed_demo import seed_demo
from app.db import SessionLocal
from app.schemas import PaymentOut, RentChargeOut
from app.services.charge_generator import generate_charges, generate_charges_for_current_month
from app.services.payment_store import list_attention_needed


def _generate(args: argparse.Namespace) -> dict:
    db = SessionLocal()
    try:
        if args.period:
            rows = generate_charges(db, org_id=args.org_id, period=args.period)
        else:
            rows = generate_charges_for_current_month(db, org_id=args.org_id)
        return {
            "ok": True,
            "created_count": len(rows),
            "charges": [RentChargeOut.model_validate(r).model_dump(mode="json") for r in rows],
        }
    finally:
        db.close()


def _attention(args: argparse.Namespace) -> dict:
    db = SessionLocal()
    try:
        rows = list_attention_needed(db, org_id=args.org_id, limit=args.limit)
        return {"ok": True, "payments": [PaymentOut.model_validate(r).model_dump(mode="json") for r in rows]}
    finally:
        db.close()


def _seed(args: argparse.Namespace) -> dict:
    out = seed_demo(org_slug=args.org_slug, org_name=args.org_name, user_email=args.user_email)
    return {
        "ok": True,
        "org_id": out.org_id,
        "org_slug": out.org_slug,
        "user_email": out.user_email,
        "tenancy_id": out.tenancy_id,
        "unit_code": out.unit_code,
    }


def main(argv: list[str] | None = None) -> None:
    p = argparse.ArgumentParser(prog="python -m app.cli")
    sub = p.add_subparsers(dest="command", required=True)

    g = sub.add_parser("generate-charges", help="create missing rent charges for a period")
    g.add_argument("--org-id", type=int, required=True)
    g.add_argument("--period", default=None, help="YYYY-MM, defaults to the current month")
    g.set_defaults(func=_generate)

    a = sub.add_parser("attention", help="list payments that are unlinked or not fully allocated")
    a.add_argument("--org-id", type=int, required=True)
    a.add_argument("--limit", type=int, default=500)
    a.set_defaults(func=_attention)

    s = sub.add_parser("seed-demo", help="create a demo landlord with one occupied unit")
    s.add_argument("--org-slug", default="demo")
    s.add_argument("--org-name", default="Demo Properties")
    s.add_argument("--user-email", default="landlord@demo.local")
    s.set_defaults(func=_seed)

    args = p.parse_args(argv)
    print(json.dumps(args.func(args), indent=2, default=str))


if __name__ == "__main__":
    main()
