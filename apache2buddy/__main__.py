import sys

from apache2buddy.cli import main

sys.exit(main())
