"""Allow ``python -m abra_actions``."""

from abra_actions.cli import main

main()
