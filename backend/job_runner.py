"""
Shared job runner for scheduled background jobs.
Used by server (scheduler) and admin (manual run).
Each run_* returns a dict with "message" and "count".
"""
import logging

logger = logging.getLogger(__name__)


async def run_subscription_expiry():
    try:
        from patentsbrowser.services.trial_service import trial_service
        result = await trial_service.check_expirations()
        count = result["expired_trials"] + result["expired_subscriptions"]
        logger.info(
            f"Subscription expiry job completed: {result['expired_trials']} trials, "
            f"{result['expired_subscriptions']} subscriptions expired"
        )
        return {"message": f"Expired {count} trials/subscriptions", "count": count, **result}
    except Exception as e:
        logger.error(f"Subscription expiry job failed: {e}")
        raise
