# Re-export Celery tasks so autodiscover finds them
from app.tasks.publish_tasks import reconcile_ad_publish

__all__ = ["reconcile_ad_publish"]
