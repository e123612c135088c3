#!/usr/bin/env python3
"""
Script to view registered visitors with their IP, device and location.
Usage: python view_visitors.py [limit]
"""

import sys

from tabulate import tabulate

from chatrelay.db.db import SessionLocal, init_db
from chatrelay.db.dbmodels import Visitor


def visitor_rows(db, limit: int = 50):
    visitors = db.query(Visitor).order_by(Visitor.last_seen_at.desc()).limit(limit).all()
    rows = []
    for v in visitors:
        location = ", ".join(part for part in (v.city, v.country) if part) or "Unknown"
        user_agent = v.user_agent or "unknown"
        rows.append([
            v.visitor_id[:8],
            v.ip or "unknown",
            location,
            user_agent[:40] + ("..." if len(user_agent) > 40 else ""),
            v.created_at.strftime("%Y-%m-%d %H:%M"),
            v.last_seen_at.strftime("%Y-%m-%d %H:%M"),
        ])
    return rows


def view_visitors(limit: int = 50):
    init_db()
    db = SessionLocal()
    try:
        rows = visitor_rows(db, limit)
    finally:
        db.close()

    if not rows:
        print("📭 No visitors recorded")
        return

    print(f"👥 {len(rows)} most recent visitors\n")
    print(tabulate(rows, headers=["Visitor", "IP", "Location", "User agent", "First seen", "Last seen"], tablefmt="grid"))


def main():
    limit = 50
    if len(sys.argv) > 1:
        try:
            limit = int(sys.argv[1])
        except ValueError:
            print("❌ Invalid limit value. Using default limit of 50.")
    view_visitors(limit)


if __name__ == "__main__":
    main()
