from stencil_cli.cli import app

app(prog_name="stencil")
