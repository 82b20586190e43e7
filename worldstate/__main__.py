import sys

from worldstate.cli import main

sys.exit(main())
