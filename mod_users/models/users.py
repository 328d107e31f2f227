import uuid
from sqlalchemy import Column, Table
from sqlalchemy.dialects.postgresql import JSONB, UUID
from mod_users.db.base_tenant import TenantBase, view_metadata


TABLE_NAME_USERS = "users"
TABLE_NAME_GROUPS = "groups"
VIEW_NAME_USER_GROUPS_JOIN = "users_groups_view"


# =====================================================
# USERS
# =====================================================

class UserRow(TenantBase):
    __tablename__ = TABLE_NAME_USERS

    id = Column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    jsonb = Column(JSONB, nullable=False)


# =====================================================
# GROUPS
# =====================================================

class GroupRow(TenantBase):
    __tablename__ = TABLE_NAME_GROUPS

    id = Column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    jsonb = Column(JSONB, nullable=False)


# =====================================================
# USERS + GROUPS JOIN VIEW
# =====================================================

users_groups_view = Table(
    VIEW_NAME_USER_GROUPS_JOIN,
    view_metadata,
    Column("id", UUID(as_uuid=True), primary_key=True),
    Column("jsonb", JSONB),
    Column("group_jsonb", JSONB),
)


def relation_for(name: str) -> Table:
    """Table object for a users/groups/view name, or KeyError."""
    relations = {
        TABLE_NAME_USERS: UserRow.__table__,
        TABLE_NAME_GROUPS: GroupRow.__table__,
        VIEW_NAME_USER_GROUPS_JOIN: users_groups_view,
    }
    return relations[name]
