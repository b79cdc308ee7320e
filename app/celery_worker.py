from app.adoptrees import create_app
from app.adoptrees.tasks import init_celery

# Importing app.adoptrees.tasks registers the sweep tasks; they run inside this app's context.
flask_app = create_app()
celery = init_celery(flask_app)
