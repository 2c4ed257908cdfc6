import sys

from imageforge.cli import main

sys.exit(main())
