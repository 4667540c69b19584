from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os
import logging
from pathlib import Path

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)


class Database:
    """MongoDB connection owned by the application lifespan."""

    def __init__(self, mongo_url: str = None, db_name: str = None):
        self.mongo_url = mongo_url or os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
        self.db_name = db_name or os.environ.get('DB_NAME', 'docgen_platform')
        self.client: AsyncIOMotorClient = None
        self.db = None

    async def connect(self):
        try:
            self.client = AsyncIOMotorClient(self.mongo_url)
            self.db = self.client[self.db_name]
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {self.db_name}")

            await self._create_indexes()
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
        """Create MongoDB indexes for lookups and uniqueness."""
        try:
            await self.db.users.create_index("user_id", unique=True)
            # null email/phone is stored explicitly, so only index strings
            await self.db.users.create_index(
                "email", unique=True, partialFilterExpression={"email": {"$type": "string"}}
            )
            await self.db.users.create_index(
                "phone", unique=True, partialFilterExpression={"phone": {"$type": "string"}}
            )
            await self.db.users.create_index([("auth_provider", 1), ("provider_id", 1)])
            await self.db.users.create_index("subscription.stripe_customer_id", sparse=True)
            await self.db.users.create_index("verification_token_hash", sparse=True)
            await self.db.users.create_index("reset_password_token_hash", sparse=True)

            await self.db.documents.create_index("document_id", unique=True)
            await self.db.documents.create_index([("creator", 1), ("created_at", -1)])
            await self.db.documents.create_index("collaborators.user")

            # Phone login codes expire on their own
            await self.db.phone_verifications.create_index("phone", unique=True)
            await self.db.phone_verifications.create_index("expires_at", expireAfterSeconds=0)

            await self.db.stripe_events.create_index("event_id", unique=True)

            logger.info("MongoDB indexes created successfully")
        except Exception as e:
            logger.warning(f"Index creation warning (may already exist): {e}")
