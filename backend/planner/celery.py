import os

from dotenv import load_dotenv

load_dotenv()
from celery import Celery

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'planner.settings')

app = Celery('planner')

# - namespace='CELERY' means all celery-related configuration keys
#   should have a `CELERY_` prefix.
app.config_from_object('django.conf:settings', namespace='CELERY')

# Enrichment jobs live in tasks.ai_engine.celery_tasks, not tasks.tasks.
app.autodiscover_tasks(['tasks.ai_engine'], related_name='celery_tasks')
