from app.salescrm import create_app

app = create_app()
