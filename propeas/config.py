from dataclasses import dataclass, field
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Process-wide configuration, read from ``PROPEAS_*`` environment variables.

    Only connection details and UI tunables live here; per-collection
    metadata is declared on the models themselves.
    """

    model_config = SettingsConfigDict(env_prefix="PROPEAS_", env_file=".env", extra="ignore")

    aws_region: str = "ap-south-1"
    table_prefix: str = ""

    cognito_client_id: str | None = None
    cognito_user_pool_id: str | None = None

    storage_bucket: str | None = None

    search_debounce_seconds: float = Field(default=0.3, ge=0.0)
    default_page_size: int = Field(default=10, gt=0)
    page_size_options: tuple[int, ...] = (5, 10, 15, 20)

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Returns the cached Settings instance (call ``get_settings.cache_clear()`` in tests)."""
    return Settings()


@dataclass
class IndexDefinition:
    """
    Represents a Global Secondary Index definition.

    Listing indexes are partitioned on the constant ``listing`` attribute
    and sorted on the field a screen orders by; search indexes are sorted
    on a lower-cased ``*_search`` shadow field.
    """

    index_name: str
    pk_name: str
    sk_name: str | None = None
    projection_type: str = "ALL"


@dataclass
class CollectionOptions:
    """
    Internal container for Model metadata.
    Populated by the Metaclass during class creation.
    """

    collection: str
    pk_name: str
    listing_attribute: str | None = None
    listing_value: str | None = None
    index_definitions: dict[str, IndexDefinition] = field(default_factory=dict)
    # shadow field -> source field
    search_sources: dict[str, str] = field(default_factory=dict)

    @property
    def table_name(self) -> str:
        """Physical table name: the configured prefix plus the collection name."""
        return f"{get_settings().table_prefix}{self.collection}"

    def get_index(self, index_name: str) -> IndexDefinition | None:
        """
        Get an index definition by index name.

        Args:
            index_name: Name of the GSI to retrieve

        Returns:
            IndexDefinition if found, None otherwise
        """
        return self.index_definitions.get(index_name)

    def has_index(self, index_name: str) -> bool:
        """Check if a GSI exists on this model."""
        return index_name in self.index_definitions

    def index_sorted_by(self, field_name: str) -> IndexDefinition | None:
        """
        Find the listing index whose sort key is ``field_name``.

        Only indexes partitioned on the listing attribute qualify, since those
        are the ones that hold the whole collection in one ordered partition.
        """
        for index in self.index_definitions.values():
            if index.pk_name == self.listing_attribute and index.sk_name == field_name:
                return index
        return None

    def search_shadow_for(self, field_name: str) -> str | None:
        """Returns the ``*_search`` shadow of ``field_name`` (or the name itself if it is one)."""
        if field_name in self.search_sources:
            return field_name
        for shadow, source in self.search_sources.items():
            if source == field_name:
                return shadow
        return None
