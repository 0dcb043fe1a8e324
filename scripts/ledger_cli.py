#!/usr/bin/env python3
"""
Run the ledger command line from a source checkout without installing.

    python3 scripts/ledger_cli.py tick

Same commands as the installed ``ledger`` script (ledger_batch.cli).
"""

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ledger_batch.cli import main  # noqa: E402

if __name__ == "__main__":
    sys.exit(main())
