from sqlalchemy import MetaData
from sqlalchemy.orm import declarative_base

# tables created inside every <tenant>_mod_users schema
TenantBase = declarative_base()

# read-only relations (views), kept out of TenantBase.metadata.create_all()
view_metadata = MetaData()
