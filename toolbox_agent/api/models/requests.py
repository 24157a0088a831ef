"""Request bodies that are not owned by a component."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class RefreshCredentialsRequest(BaseModel):
    """Body of POST /tools/{name}/credentials/refresh."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    connection_ids: list[str] | None = None
