import sys

from mintvault.cli import main

sys.exit(main())
