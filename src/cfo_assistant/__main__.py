"""Allow ``python -m cfo_assistant``."""

import sys

from cfo_assistant.cli import main

sys.exit(main())
