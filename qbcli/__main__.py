"""Allow ``python -m qbcli``."""

from qbcli.cli import main


main()
