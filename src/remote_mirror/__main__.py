"""Allow ``python -m remote_mirror``."""

import sys

from .cli import main

sys.exit(main())
