#!/usr/bin/env python3
"""CoralStats API server runner.

Usage:
    python scripts/run_server.py scripts/user_config.py
    python scripts/run_server.py --mock --port 8080
    python scripts/run_server.py scripts/user_config.py --data-dir /srv/coral/data

Note: User config in scripts/user_config.py, expert defaults in
coralstats.schemas.param
"""

from coralstats.cli.serve import main


if __name__ == "__main__":
    main()
