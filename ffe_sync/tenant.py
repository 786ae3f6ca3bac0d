from flask import g, request


DEFAULT_TENANT_ID = "tenant-demo"


def normalize_tenant_id(value: str | None) -> str | None:
    tenant_id = str(value or "").strip()
    return tenant_id or None


def current_tenant_id() -> str | None:
    return normalize_tenant_id(getattr(g, "tenant_id", None))


def scoped_tenant_id(value: str | None = None) -> str:
    return normalize_tenant_id(value) or current_tenant_id() or DEFAULT_TENANT_ID


def current_actor_id() -> str | None:
    """Actor ids arrive pre-validated by the upstream authorization layer."""
    actor = getattr(g, "actor_id", None)
    if actor:
        return actor
    return normalize_tenant_id(request.headers.get("X-Actor-Id"))
