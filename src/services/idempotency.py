"""Idempotency key generation for exactly-once run dispatch."""


def generate_idempotency_key(tenant_id: str, conversation_id: str, request_id: str) -> str:
    """Generate a deterministic idempotency key for a dispatch request.

    The key identifies one client request within one conversation of one
    tenant. A retried request carrying the same request_id maps to the
    same key, so the dispatcher returns the run it already created
    instead of starting a second one.

    Args:
        tenant_id: Tenant issuing the request.
        conversation_id: Conversation the request belongs to.
        request_id: Client-supplied request identifier.

    Returns:
        Idempotency key string: '{tenant_id}:{conversation_id}:{request_id}'.
    """
    return f"{tenant_id}:{conversation_id}:{request_id}"
