"""Allow ``python -m docintel.cli`` execution."""

from docintel.cli.manage import main

main()
