"""
User roles enumeration.

Roles are asserted by the marketplace auth service in the token's ``role``
claim.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Back-office staff who approve checkpoint requests
        CARRIER: Runs shipments and submits one-time codes
        SHIPPER: Owns loads; rated by carriers after delivery
    """
    ADMIN = "ADMIN"
    CARRIER = "CARRIER"
    SHIPPER = "SHIPPER"
