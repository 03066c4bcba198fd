"""Shared constants for router tests."""

from typing import Any

TENANT_ID = "tenant-1"
OTHER_TENANT_ID = "tenant-2"
USER_ID = "user-1"

WORDPRESS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "DOMAIN": {"type": "string", "minLength": 3},
        "WP_ADMIN_EMAIL": {"type": "string", "format": "email"},
        "WP_TITLE": {"type": "string"},
    },
    "required": ["DOMAIN", "WP_ADMIN_EMAIL"],
}
WORDPRESS_DEFAULTS: dict[str, Any] = {"WP_TITLE": "My Site"}

WORDPRESS_TEXT = "install wordpress for domain example.com admin admin@example.com"
