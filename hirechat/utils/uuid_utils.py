# =============================================================================
# File: hirechat/utils/uuid_utils.py
# Description: Identifier helpers for provisional (client-side) messages
# =============================================================================

import uuid

PROVISIONAL_PREFIX = "temp-"


def generate_provisional_id() -> str:
    """
    Generate a client-local id for an optimistically displayed message.

    The prefix keeps provisional ids distinguishable from server ids in logs.
    """
    return f"{PROVISIONAL_PREFIX}{uuid.uuid4().hex}"


# =============================================================================
# EOF
# =============================================================================
