# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Version of package miio_protocol, a client for the miIO LAN control protocol
"""

# The following line is automatically updated with "semantic-release version"
__version__ =  "0.3.0"


__all__ = [ '__version__' ]
