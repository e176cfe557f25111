"""Allow ``python -m fusioncore``."""

import sys

from .resolution.cli.main import main

sys.exit(main())
