"""
Utility functions for wsdial.
"""

from __future__ import annotations

from .connection import (  # noqa: F401
    Address,
    allowed_gai_family,
    create_connection,
    resolve_addresses,
    set_nodelay,
)
from .ssl_ import (  # noqa: F401
    encode_server_name,
    is_ipaddress,
    server_hostname,
)
from .url import (  # noqa: F401
    Url,
    join_url,
    parse_url,
)
