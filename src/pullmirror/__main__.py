"""``python -m pullmirror`` runs the same Typer app as the console script."""

from pullmirror.cli import app

if __name__ == "__main__":
    app(prog_name="pullmirror")
