import logging
import os
from datetime import datetime
from typing import Dict, List, Optional, Union

from activity_schema import ActivityRecord, utcnow

try:
    from pymongo import DESCENDING, MongoClient
    from pymongo.collection import Collection
    from pymongo.errors import PyMongoError
except ImportError:  # pragma: no cover - optional dependency
    MongoClient = None
    DESCENDING = None
    Collection = None
    PyMongoError = Exception

logger = logging.getLogger(__name__)


class ActivityArchive:
    """MongoDB store that keeps activity records beyond the in-memory history ring."""

    def __init__(
        self,
        uri: Optional[str] = None,
        db_name: Optional[str] = None,
        collection_name: Optional[str] = None,
        collection: Optional[Collection] = None,
    ) -> None:
        self.uri = uri or os.environ.get("FOCUSLENS_MONGO_URI")
        self.db_name = db_name or os.environ.get("FOCUSLENS_MONGO_DB", "focuslens")
        self.collection_name = collection_name or os.environ.get("FOCUSLENS_COLLECTION", "activity_records")
        self._client: Optional[MongoClient] = None
        self._collection: Optional[Collection] = collection
        self._healthy: Optional[bool] = True if collection is not None else None

    @property
    def enabled(self) -> bool:
        """Return True if MongoDB connectivity is available."""
        if self._collection is not None:
            return True
        if not self.uri or MongoClient is None:
            return False
        return self._ensure_connection() is not None

    def publish_activity(self, record: Union[ActivityRecord, Dict]) -> bool:
        """Insert one activity document. Usable directly as an orchestrator ``on_entry`` observer."""
        collection = self._ensure_connection()
        if collection is None:
            return False

        payload = record.to_payload() if isinstance(record, ActivityRecord) else dict(record)
        payload.setdefault("created_at", utcnow())

        try:
            collection.insert_one(payload)
            logger.debug("Archived %s activity for %s", payload.get("category"), payload.get("context_key"))
            return True
        except PyMongoError as exc:  # pragma: no cover - dependent on network
            logger.warning("Failed to archive activity: %s", exc)
            return False

    def query_activity(
        self,
        since: Optional[datetime] = None,
        limit: int = 40,
        category: Optional[str] = None,
    ) -> List[Dict]:
        """Fetch archived activity, most recent first."""
        collection = self._ensure_connection()
        if collection is None:
            return []

        query: Dict = {}
        if category:
            query["category"] = category
        if since:
            query["timestamp"] = {"$gte": since}

        try:
            cursor = (
                collection.find(query)
                .sort("timestamp", DESCENDING or -1)
                .limit(max(limit, 1))
            )
            return list(cursor)
        except PyMongoError as exc:  # pragma: no cover
            logger.warning("Activity query failed: %s", exc)
            return []

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None
            self._collection = None

    def _ensure_connection(self) -> Optional[Collection]:
        if self._collection is not None:
            return self._collection

        if not self.uri or MongoClient is None:
            if self._healthy is None:
                logger.info("Activity archive disabled: missing pymongo or FOCUSLENS_MONGO_URI.")
                self._healthy = False
            return None

        try:
            self._client = MongoClient(self.uri, serverSelectionTimeoutMS=4000)
            self._client.admin.command("ping")
            self._collection = self._client[self.db_name][self.collection_name]
            self._healthy = True
            logger.info("Activity archive connected to %s/%s", self.db_name, self.collection_name)
        except Exception as exc:  # pragma: no cover
            logger.warning("Unable to connect to activity archive: %s", exc)
            self._client = None
            self._collection = None
            self._healthy = False

        return self._collection
