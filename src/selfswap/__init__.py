"""
selfswap - In-place self-update of an installed application.

This package waits for the running application to exit, swaps the live
installation into place through a safety backup, recovers the original layout
when the swap is refused, and relaunches the application with an outcome code.
"""

__version__ = "0.1.0"
