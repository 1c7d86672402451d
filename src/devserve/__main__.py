import sys

from devserve.cli import main

sys.exit(main())
