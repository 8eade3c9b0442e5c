from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os
import logging
from pathlib import Path

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None
    db = None

    async def connect(self):
        try:
            mongo_url = os.environ['MONGO_URL']
            self.client = AsyncIOMotorClient(mongo_url, tz_aware=True)
            self.db = self.client[os.environ['DB_NAME']]
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {os.environ['DB_NAME']}")

            await self._create_indexes()
            await self._seed_pricing_plans()
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def close(self):
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")

    def get_db(self):
        return self.db

    async def _create_indexes(self):
        """Create MongoDB indexes for lookups, uniqueness and expiry."""
        try:
            # Users
            await self.db.users.create_index("user_id", unique=True)
            try:
                await self.db.users.create_index("email", unique=True)
            except Exception:
                pass  # Index may already exist with different options
            await self.db.users.create_index("subscription_status")
            await self.db.users.create_index("organization_id", sparse=True)

            # Subscriptions
            await self.db.subscriptions.create_index("subscription_id", unique=True)
            await self.db.subscriptions.create_index([("user_id", 1), ("status", 1)])
            await self.db.subscriptions.create_index([("status", 1), ("end_date", 1)])
            await self.db.subscriptions.create_index("order_id", sparse=True)
            # At most one active main (unparented) subscription per user
            try:
                await self.db.subscriptions.create_index(
                    "user_id",
                    name="one_active_main_per_user",
                    unique=True,
                    partialFilterExpression={
                        "status": "active",
                        "parent_subscription_id": {"$type": "null"},
                    },
                )
            except Exception as e:
                logger.warning(f"Single-main subscription index not created: {e}")

            # Pricing plans
            await self.db.pricing_plans.create_index("plan_id", unique=True)
            await self.db.pricing_plans.create_index([("account_type", 1), ("type", 1)])
            await self.db.pricing_plans.create_index([("account_type", 1), ("is_active", 1)])

            # Payments - a UTR can only be claimed once
            await self.db.payments.create_index("payment_id", unique=True)
            try:
                await self.db.payments.create_index("reference_number", unique=True)
            except Exception:
                pass
            await self.db.payments.create_index([("status", 1), ("payment_date", -1)])
            await self.db.payments.create_index("user_id")

            # Organizations
            await self.db.organizations.create_index("org_id", unique=True)
            await self.db.organizations.create_index("admin_id")
            await self.db.organizations.create_index("members.user_id")
            await self.db.organizations.create_index("invite_links.token")

            # Saved patents and folders
            await self.db.custom_patent_lists.create_index("folder_id", unique=True)
            await self.db.custom_patent_lists.create_index([("user_id", 1), ("timestamp", -1)])
            await self.db.custom_patent_lists.create_index([("user_id", 1), ("parent_folder_id", 1)])
            await self.db.saved_patents.create_index([("user_id", 1), ("patent_id", 1)], unique=True)
            await self.db.search_history.create_index([("user_id", 1), ("patent_id", 1)], unique=True)
            await self.db.search_history.create_index([("user_id", 1), ("timestamp", -1)])
            await self.db.patent_read_status.create_index([("user_id", 1), ("patent_id", 1)], unique=True)
            await self.db.patent_read_status.create_index([("user_id", 1), ("read_at", -1)])

            # Short-lived auth records expire on their own
            await self.db.email_otps.create_index("email", unique=True)
            await self.db.email_otps.create_index("expires_at", expireAfterSeconds=0)
            await self.db.pending_signups.create_index("email", unique=True)
            await self.db.pending_signups.create_index("expires_at", expireAfterSeconds=0)

            logger.info("MongoDB indexes created/verified")
        except Exception as e:
            # Indexes may already exist, log but don't fail
            logger.warning(f"Index creation note: {e}")

    async def _seed_pricing_plans(self):
        """Insert the default plan catalog when pricing_plans is empty."""
        from patentsbrowser.models.plans import DEFAULT_PLANS
        count = await self.db.pricing_plans.count_documents({})
        if count:
            return
        await self.db.pricing_plans.insert_many([plan.model_dump() for plan in DEFAULT_PLANS])
        logger.info(f"Seeded {len(DEFAULT_PLANS)} default pricing plans")

# Global database instance
database = Database()

