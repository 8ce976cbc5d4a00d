"""Allow ``python -m notekeeper``."""
import sys

from notekeeper.main import main

sys.exit(main())
