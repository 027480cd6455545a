from sfcontext.cli import cli

cli()
