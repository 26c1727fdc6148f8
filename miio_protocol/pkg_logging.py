#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Logging for miio_protocol package. Every module logs through this one logger, named
after the package, so applications can tune protocol chatter with a single
logging.getLogger('miio_protocol').setLevel(...).
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__.rsplit('.', 1)[0])
