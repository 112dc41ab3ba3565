"""
Seed the demo tenant and a handful of analyzed demo calls.

Safe to re-run: existing rows are left untouched.

Usage:
    python scripts/seed_demo_data.py
    python scripts/seed_demo_data.py --tenant-only
"""

import argparse
import asyncio
import sys
from datetime import timedelta
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.core.config import get_settings
from app.db.session import Database, dialect_insert
from app.models.call_event import AnalysisStatus, CallEvent
from app.models.tenant import Tenant
from app.utils.time import utc_now

DEMO_TENANT = {
    "id": "demo-001",
    "name": "Blue Lotus Demo",
    "subdomain": "demo",
    "inbound_assistant_id": "asst_demo_12345",
    "business_type": "general",
    "timezone": "UTC",
}

# (id, caller, hours ago, duration, transcript, score, label, products, issues, opportunity, summary)
DEMO_CALLS = [
    (
        "call-demo-001", "+1234567890", 2, 300,
        "Customer: Hi, I'm interested in your tax preparation services. Agent: Great! We offer individual and "
        "business tax returns. Customer: What are your rates? Agent: Individual returns start at $150. "
        "Customer: Perfect, I'd like to schedule an appointment.",
        0.85, "positive", ["Individual Tax Return", "Tax Preparation"], [], 90,
        "Customer expressed strong interest in tax services and requested appointment. High conversion potential.",
    ),
    (
        "call-demo-002", "+1234567891", 5, 180,
        "Customer: I need help with my dental appointment. Agent: I can help with that. What do you need? "
        "Customer: I want to reschedule my cleaning. Agent: Let me check our availability.",
        0.1, "neutral", ["Dental Cleaning", "Appointment Rescheduling"], ["Schedule Conflict"], 50,
        "Customer needs to reschedule dental cleaning. Standard service request.",
    ),
    (
        "call-demo-003", "+1234567892", 24, 420,
        "Customer: I'm calling about the legal consultation services. Agent: Yes, we offer free initial "
        "consultations. Customer: Great, what areas of law do you cover? Agent: We specialize in business law, "
        "contracts, and estate planning. Customer: I need help with a contract review.",
        0.75, "positive", ["Legal Consultation", "Contract Review"], [], 85,
        "Customer inquired about legal services with specific need for contract review. Good lead.",
    ),
    (
        "call-demo-004", "+1234567893", 48, 240,
        "Customer: Do you have availability for dinner tonight? Agent: Let me check our reservations. "
        "Customer: Table for 4 at 7pm please. Agent: Yes, we have availability. Can I get your name?",
        0.70, "positive", ["Dinner Reservation"], [], 60,
        "Restaurant reservation confirmed for 4 people. Standard booking.",
    ),
    (
        "call-demo-005", "+1234567894", 72, 120,
        "Customer: Quick question about pricing. Agent: Sure, what service are you interested in? "
        "Customer: Just browsing, thanks. Agent: No problem, call back anytime!",
        0.2, "neutral", [], ["Low Engagement"], 20,
        "Brief inquiry with no specific interest. Low conversion potential.",
    ),
]


async def seed_demo_data(tenant_only: bool = False) -> None:
    settings = get_settings()
    database = Database(settings.DATABASE_URL).connect()
    now = utc_now()

    try:
        async with database.session() as db:
            stmt = dialect_insert(db, Tenant).values(**DEMO_TENANT).on_conflict_do_nothing(index_elements=[Tenant.id])
            await db.execute(stmt)
            print(f"[OK] Tenant {DEMO_TENANT['id']} ({DEMO_TENANT['subdomain']})")

            if tenant_only:
                return

            created = 0
            for (call_id, caller, hours_ago, duration, transcript, score, label,
                 products, issues, opportunity, summary) in DEMO_CALLS:
                started = now - timedelta(hours=hours_ago)
                stmt = (
                    dialect_insert(db, CallEvent)
                    .values(
                        id=call_id,
                        tenant_id=DEMO_TENANT["id"],
                        provider="vapi",
                        assistant_id=DEMO_TENANT["inbound_assistant_id"],
                        caller_number=caller,
                        duration_seconds=duration,
                        status="completed",
                        transcript=transcript,
                        summary=transcript[:200],
                        started_at=started,
                        raw_metadata={"type": "inbound", "seeded": True},
                        created_at=started,
                        analysis_status=AnalysisStatus.DONE,
                        sentiment_score=score,
                        sentiment_label=label,
                        products_mentioned=products,
                        issues_identified=issues,
                        opportunity_value=opportunity,
                        analysis_summary=summary,
                        processed_at=now,
                        processing_version="seed",
                    )
                    .on_conflict_do_nothing(index_elements=[CallEvent.id])
                    .returning(CallEvent.id)
                )
                result = await db.execute(stmt)
                if result.scalar_one_or_none():
                    created += 1
            print(f"[OK] Seeded {created} demo calls ({len(DEMO_CALLS) - created} already present)")
    finally:
        await database.dispose()


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed demo tenant and calls")
    parser.add_argument("--tenant-only", action="store_true", help="Only create the demo tenant")
    args = parser.parse_args()
    asyncio.run(seed_demo_data(tenant_only=args.tenant_only))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
