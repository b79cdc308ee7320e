from app.adoptrees import create_app

app = create_app()
