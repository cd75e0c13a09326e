"""Allow ``python -m perftoolkit``."""

import sys

from perftoolkit.cli import main

sys.exit(main())
