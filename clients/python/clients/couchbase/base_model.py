import uuid
from datetime import datetime, timezone
from typing import ClassVar, Generic, List, Optional, TypeVar

from pydantic import BaseModel


class BaseCouchbaseEntityData(BaseModel):
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by_user_id: Optional[str] = None


DataT = TypeVar("DataT", bound=BaseCouchbaseEntityData)
T = TypeVar("T", bound="BaseModelCouchbase")


class BaseModelCouchbase(BaseModel, Generic[DataT]):
    """Document envelope: key, typed body and the CAS of the last read.

    The pydantic part has no SDK dependency, so entities can be used by the
    in-memory store without the Couchbase client installed. Persistence
    methods import the keyspace lazily.
    """

    id: str
    data: DataT
    cas: Optional[int] = None

    _collection_name: ClassVar[str] = ""

    def to_document(self) -> dict:
        return self.data.model_dump(mode="json")

    @classmethod
    def from_row(cls: type[T], row: dict) -> Optional[T]:
        """Build an entity from a ``SELECT META().id, * FROM ...`` row."""
        data = row.get(cls._collection_name)
        if not data:
            return None
        return cls(id=row["id"], data=data)

    @classmethod
    def get_keyspace(cls):
        from .keyspace import get_keyspace

        if not cls._collection_name:
            raise ValueError(f"_collection_name not set for {cls.__name__}")
        return get_keyspace(cls._collection_name)

    @classmethod
    async def get(cls: type[T], id: str) -> Optional[T]:
        from couchbase.exceptions import DocumentNotFoundException

        try:
            collection = await cls.get_keyspace().get_collection()
            result = await collection.get(id)
            return cls(id=id, data=result.content_as[dict], cas=result.cas)
        except DocumentNotFoundException:
            return None

    @classmethod
    async def create_or_update(cls: type[T], key: str, data: DataT, user_id: Optional[str] = None) -> T:
        """Idempotently create or update a document with a specific key."""
        now = datetime.now(timezone.utc)
        if data.created_at is None:
            data.created_at = now
        data.updated_at = now
        if user_id:
            data.created_by_user_id = user_id

        result = await cls.get_keyspace().upsert(key, data.model_dump(mode="json"))
        return cls(id=key, data=data, cas=result.cas)

    @classmethod
    async def query(cls: type[T], where: str, order_by: str = "created_at DESC", **params) -> List[T]:
        keyspace = cls.get_keyspace()
        statement = (
            f"SELECT META().id, * FROM {keyspace} "
            f"WHERE {where} ORDER BY {order_by}"
        )
        rows = await keyspace.query(statement, **params)
        items = []
        for row in rows:
            item = cls.from_row(row)
            if item:
                items.append(item)
        return items

    @staticmethod
    def new_key() -> str:
        return str(uuid.uuid4())
