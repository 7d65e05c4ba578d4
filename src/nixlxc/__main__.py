"""Entry point for ``python -m nixlxc``."""

from nixlxc.cli.main import main


if __name__ == "__main__":
    main()
