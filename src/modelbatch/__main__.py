from modelbatch.cli import app

app()
