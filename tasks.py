import asyncio

from aggregates import reconcile_aggregates
from celery_app import celery, settings
from database import connect


@celery.task(bind=True, max_retries=3)
def reconcile(self):
    """Recompute like counters and playlist durations from their source rows"""

    async def run():
        async with connect(settings.database.path) as db:
            return await reconcile_aggregates(db)

    try:
        return asyncio.run(run())
    except Exception as e:
        raise self.retry(exc=e, countdown=10)
