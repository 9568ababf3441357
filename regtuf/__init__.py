# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Trust metadata for a private container registry"""

import regtuf.api
import regtuf.repository

__version__ = "0.1.0"
__all__ = [
    regtuf.api.__name__,
    regtuf.repository.__name__,
]
