# ai_gen_guard/demo/seed_demo_data.py

import uuid
from datetime import datetime

from ai_gen_guard.core.features import Feature, SubscriptionTier
from ai_gen_guard.core.quota import QuotaGate
from ai_gen_guard.storage.db import DEFAULT_DB_PATH
from ai_gen_guard.storage.models import GenerationAudit
from ai_gen_guard.storage.repository import GenerationRepository, initialize_schema

DEMO_ACCOUNTS = {
    "demo-free": SubscriptionTier.FREE,
    "demo-creator": SubscriptionTier.TIER_1,
    "demo-studio": SubscriptionTier.TIER_2,
}


def seed(db_path: str = DEFAULT_DB_PATH) -> None:
    initialize_schema(db_path)
    quota = QuotaGate(db_path)
    generations = GenerationRepository(db_path)

    for account_id, tier in DEMO_ACCOUNTS.items():
        quota.set_account_tier(account_id, tier)

    # A creator close to the daily image ceiling
    for _ in range(8):
        audit_id = str(uuid.uuid4())
        now = datetime.now()
        generations.start(GenerationAudit(
            id=audit_id,
            account_id="demo-creator",
            feature=Feature.IMAGE_GENERATION.value,
            provider="openai",
            prompt="a red bicycle leaning on a brick wall",
            status="processing",
            created_at=now,
        ))
        generations.complete(audit_id, f"https://example.com/demo/{audit_id}.png", 8, 4200, now)
        quota.track_usage("demo-creator", Feature.IMAGE_GENERATION, 8)


if __name__ == "__main__":
    seed()
    print("Demo accounts and usage inserted")
