from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Any, Dict, List, Literal, Optional

Dir = Literal["asc", "desc"]
CountModeName = Literal["none", "exact", "approximate"]


class ColumnFilter(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    # Kind and operator stay plain strings: unknown names are reported by the
    # query engine with a domain error rather than a schema error.
    data_kind: str = Field(alias="dataKind")
    operator: str
    value: Any = None
    value_to: Any = Field(default=None, alias="valueTo")
    values: Optional[List[Any]] = None


class SortSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    column: str
    direction: Dir = "asc"


class PageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_row: int = Field(default=0, ge=0, alias="startRow")
    end_row: int = Field(default=100, ge=0, alias="endRow")
    filters: Dict[str, ColumnFilter] = Field(default_factory=dict)
    sort: List[SortSpec] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_window(self):
        if self.end_row < self.start_row:
            raise ValueError("endRow must be greater than or equal to startRow")
        return self

    @property
    def page_size(self) -> int:
        return self.end_row - self.start_row


class GridRowsRequest(PageRequest):
    count_mode: Optional[CountModeName] = Field(default=None, alias="countMode")


class GridRowsResponse(BaseModel):
    rows: List[Dict[str, Any]]
    total: Optional[int] = None
    total_exact: Optional[bool] = None
    start_row: int
    end_row: int


class GridColumnMeta(BaseModel):
    name: str
    kind: Optional[str] = None


class GridSourceMeta(BaseModel):
    name: str
    key: str
    columns: List[GridColumnMeta]
