"""Allow ``python -m securenotes``."""

import sys

from securenotes.cli import main

sys.exit(main())
