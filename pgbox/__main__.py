import sys

from pgbox.cli import main

sys.exit(main())
