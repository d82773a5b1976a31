import sys

from inboxshot.cli import main

sys.exit(main())
