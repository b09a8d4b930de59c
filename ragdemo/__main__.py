import sys

from ragdemo.cli import main

sys.exit(main())
