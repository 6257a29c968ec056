import sys

from vehicle_backup.cli import main

sys.exit(main())
