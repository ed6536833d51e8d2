import sys

from vendorkit.cli import main

sys.exit(main())
