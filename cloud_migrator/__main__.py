import sys

from .cloud_migrator import main

sys.exit(main())
