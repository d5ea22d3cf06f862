from octopai.cli.main import cli

cli()
