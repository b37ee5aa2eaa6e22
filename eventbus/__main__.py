"""Allow ``python -m eventbus``."""

import sys

from eventbus.cli.main import main

sys.exit(main())
