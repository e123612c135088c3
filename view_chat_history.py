#!/usr/bin/env python3
"""
Simple script to view stored chat transcripts.
Usage: python view_chat_history.py [sessionId] [limit]
"""

import sys

from chatrelay.db.db import SessionLocal, init_db
from chatrelay.db.store import TranscriptStore


def view_chat_history(session_id=None, limit=50):
    """Print transcripts, newest first."""
    init_db()
    store = TranscriptStore(SessionLocal)
    entries = store.query_transcripts(session_id=session_id, limit=limit)

    if session_id:
        print(f"📋 Chat history for session: {session_id}")
    else:
        print("📋 All chat history:")

    if not entries:
        print("No chat history found.")
        return

    print(f"Found {len(entries)} entries:\n")
    print("=" * 80)

    for i, entry in enumerate(entries, 1):
        print(f"Entry {i}:")
        print(f"  ID: {entry['id']}")
        print(f"  Session: {entry['session_id'] or 'anonymous'}")
        print(f"  Source: {entry['source']}")
        print(f"  Timestamp: {entry['created_at']}")
        print(f"  Prompt: {entry['prompt']}")
        reply = entry["reply"]
        print(f"  Reply: {reply[:200]}{'...' if len(reply) > 200 else ''}")
        print("-" * 80)


def main():
    """Main function to handle command line arguments."""
    session_id = None
    limit = 50

    if len(sys.argv) > 1:
        session_id = sys.argv[1]

    if len(sys.argv) > 2:
        try:
            limit = int(sys.argv[2])
        except ValueError:
            print("❌ Invalid limit value. Using default limit of 50.")

    view_chat_history(session_id, limit)


if __name__ == "__main__":
    main()
