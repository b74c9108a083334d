"""
autoservice - run one program as a Windows, systemd or launchd service.
"""

from loguru import logger

__version__ = "0.1.0"
__logo__ = "⚙"

# Library code stays quiet until an application opts in.
logger.disable("autoservice")
