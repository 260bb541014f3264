import sys

from logsentry.main import main

sys.exit(main())
