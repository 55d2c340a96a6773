"""
Entry point: a thin wrapper around chmanager.cli so the tool runs from a checkout.

Usage:
  python3 run.py status
  python3 run.py query --sql "SELECT 1 AS a"
  python3 run.py compare --sql1 "SELECT count() FROM t" --sql2 "SELECT count(x) FROM t"

Config:
- Read from config.ini in the current directory by default; set CH_TOOL_CONFIG
  to point at another file.
- Keep passwords out of the file and use CH_PASSWORD_<CONNECTION> instead.
"""

import os
import sys

from chmanager.cli import main as cli_main


def _inject_config(args):
    if "--config" in args:
        return args
    config_path = os.environ.get("CH_TOOL_CONFIG", "config.ini")
    return ["--config", config_path] + args


if __name__ == "__main__":
    sys.exit(cli_main(_inject_config(sys.argv[1:])))
