# careportal_cli/main.py


import typer
from careportal_cli.auth.commands import app as auth_app
from careportal_cli.admin.commands import app as admin_app

app = typer.Typer(help="CarePortal command line client")
app.add_typer(auth_app, name="auth")
app.add_typer(admin_app, name="admin")

if __name__ == "__main__":
    app()
