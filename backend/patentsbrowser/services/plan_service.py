"""Plan catalog lookups - PatentsBrowser"""
from database import database
from patentsbrowser.models.plans import AccountType
from typing import Dict, Any, List, Optional
import logging

logger = logging.getLogger(__name__)


class PlanService:
    def __init__(self):
        self.db = None

    async def _get_db(self):
        if self.db is None:
            self.db = database.get_db()
        return self.db

    async def list_plans(self, account_type: Optional[str] = None) -> List[Dict[str, Any]]:
        """Active plans, cheapest first. Optionally filtered by account type."""
        db = await self._get_db()
        query: Dict[str, Any] = {"is_active": True}
        if account_type:
            query["account_type"] = AccountType(account_type).value
        return await db.pricing_plans.find(query, {"_id": 0}).sort("price", 1).to_list(100)

    async def get_plan(self, plan_id: str, active_only: bool = True) -> Optional[Dict[str, Any]]:
        db = await self._get_db()
        query: Dict[str, Any] = {"plan_id": plan_id}
        if active_only:
            query["is_active"] = True
        return await db.pricing_plans.find_one(query, {"_id": 0})


plan_service = PlanService()
