# mod_users/models/__init__.py

from .users import (
    TABLE_NAME_GROUPS,
    TABLE_NAME_USERS,
    VIEW_NAME_USER_GROUPS_JOIN,
    GroupRow,
    UserRow,
    relation_for,
    users_groups_view,
)
