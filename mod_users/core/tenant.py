import re
from dataclasses import dataclass

MODULE_SCHEMA_SUFFIX = "_mod_users"

_TENANT_RE = re.compile(r"^[a-z][a-z0-9_]{0,62}$")


def is_valid_tenant_id(tenant_id: str) -> bool:
    # ends up in a schema name, so no quoting tricks allowed
    return bool(tenant_id) and bool(_TENANT_RE.match(tenant_id))


def schema_name(tenant_id: str) -> str:
    return f"{tenant_id}{MODULE_SCHEMA_SUFFIX}"


def tenant_from_schema(nspname: str) -> str:
    if not nspname.endswith(MODULE_SCHEMA_SUFFIX):
        raise ValueError(f"Not a mod_users schema: {nspname}")
    return nspname[: len(nspname) - len(MODULE_SCHEMA_SUFFIX)]


@dataclass(frozen=True)
class TenantContext:
    tenant_id: str

    @property
    def schema(self) -> str:
        return schema_name(self.tenant_id)
