# core.py
from typing import Optional
from disko_install.utils.logger import RichAppLogger

# A global variable to hold the initialized logger wrapper
# It starts as None and is set by the command line entry points
app_logger: Optional[RichAppLogger] = None
