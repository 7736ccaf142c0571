"""Allow running as ``python -m stratum_height_monitor``."""

from stratum_height_monitor.cli import main

if __name__ == "__main__":
    main()
