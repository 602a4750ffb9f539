from .base_model import (
    BaseModelCouchbase,
    BaseCouchbaseEntityData,
    DataT,
    T
)

# config/keyspace pull in the Couchbase SDK; import them from their modules
# (clients.couchbase.config, clients.couchbase.keyspace) where needed.

__all__ = [
    "BaseModelCouchbase",
    "BaseCouchbaseEntityData",
    "DataT",
    "T",
]
