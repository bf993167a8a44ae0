"""Allow running as ``python -m chainsync``."""

from chainsync.cli import main

if __name__ == "__main__":
    main()
