"""Allow ``python -m warelay``."""
import sys

from .cli import main

sys.exit(main())
