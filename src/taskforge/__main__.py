"""Allow `python -m taskforge` to launch the CLI."""

import sys

from taskforge.main import main

sys.exit(main())
