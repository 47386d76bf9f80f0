from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class TileRequest(BaseModel):
    """Inbound worker message: `{tileX, tileY}`."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    tile_x: int = Field(alias="tileX")
    tile_y: int = Field(alias="tileY")


class TileSuccess(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tile_x: int = Field(alias="tileX")
    tile_y: int = Field(alias="tileY")
    image_url: str = Field(alias="imageUrl")
    success: Literal[True] = True
    image_blob: Optional[bytes] = Field(default=None, alias="imageBlob")

    def to_message(self) -> Dict[str, Any]:
        # imageBlob is left out entirely when the worker does not forward it
        return self.model_dump(by_alias=True, exclude_none=True)


class TileFailure(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # None only when the inbound message itself was unreadable
    tile_x: Optional[int] = Field(alias="tileX")
    tile_y: Optional[int] = Field(alias="tileY")
    success: Literal[False] = False
    error: str

    def to_message(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


TileResult = Union[TileSuccess, TileFailure]
