"""Print the reconciled view of one study session.

Reads the session straight from Supabase, reconciles tracked and snapshot
telemetry the same way the admin API does, and prints a summary (or the full
JSON with --json). Any local override in OVERRIDE_CACHE_PATH is applied.
"""

import json
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from supabase import create_client

project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root / "study_session_inspector" / "src"))

from study_session_inspector.errors import InspectorError
from study_session_inspector.override_cache import JsonFileKeyValueStore, OverrideCache
from study_session_inspector.record_store import SupabaseRecordStore
from study_session_inspector.session_inspector import SessionInspector


def build_inspector() -> SessionInspector:
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_KEY")
    if not url or not key:
        raise SystemExit("Missing SUPABASE_URL or SUPABASE_SERVICE_KEY")
    cache_path = os.getenv("OVERRIDE_CACHE_PATH", ".session_overrides.json")
    return SessionInspector(
        SupabaseRecordStore(create_client(url, key)),
        OverrideCache(JsonFileKeyValueStore(cache_path)),
    )


def print_summary(details, completeness) -> None:
    session = details.session
    print("=" * 60)
    print(f"SESSION {session.public_session_id} ({session.id})")
    print("=" * 60)
    print(f"Mode: {session.mode}  Modes used: {', '.join(session.session_modes()) or '-'}")
    print(f"Started: {session.started_at}  Completed: {session.completed_at or '-'}  Status: {session.status}")
    if details.has_local_override:
        print("[WARN] Local override applied; values below are not in the database yet")
    if details.failed_sections:
        print(f"[WARN] Could not load: {', '.join(details.failed_sections)}")

    print("\nCompleteness:")
    for category, item in completeness.categories.items():
        counts = f"{item.answered}/{item.expected}" if item.catalog_backed else f"{item.raw_answered} raw answers"
        print(f"   • {category}: {'OK' if item.present else 'MISSING'} ({counts})")

    print(f"\nSlide time ({details.total_timing_seconds}s total):")
    for group in details.timing_groups:
        segments = f" [{group.segment_count} segments]" if group.segment_count > 1 else ""
        sources = "/".join(sorted({entry.source.value for entry in group.entries}))
        print(f"   • {group.title}: {group.total_seconds}s{segments} ({sources})")

    print(f"\nTutor dialogue: {len(details.dialogue_turns)} turns")
    for turn in details.dialogue_turns[:10]:
        print(f"   [{turn.role}] {turn.content[:80]}")
    if len(details.dialogue_turns) > 10:
        print(f"   ... and {len(details.dialogue_turns) - 10} more")


async def main(session_id: str, as_json: bool = False) -> int:
    inspector = build_inspector()
    try:
        details = await inspector.get_session_details(session_id)
        completeness = await inspector.get_completeness(session_id)
    except InspectorError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    if as_json:
        payload = details.to_dict()
        payload["completeness"] = completeness.to_dict()
        print(json.dumps(payload, indent=2))
    else:
        print_summary(details, completeness)
    return 0


if __name__ == "__main__":
    import asyncio
    import argparse

    load_dotenv(project_root / ".env")
    load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(description="Print the reconciled view of a study session")
    parser.add_argument("session_id", help="Session UUID or participant-facing session code")
    parser.add_argument("--json", action="store_true", help="Print the full details as JSON")

    args = parser.parse_args()
    raise SystemExit(asyncio.run(main(args.session_id, as_json=args.json)))
