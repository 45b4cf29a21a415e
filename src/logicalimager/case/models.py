# src/logicalimager/case/models.py
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class DataSourceType(str, Enum):
    IMAGE = "image"
    LOCAL_FILES = "local_files"


class ArtifactType(str, Enum):
    INTERESTING_FILE_HIT = "interesting_file_hit"


class AttributeType(str, Enum):
    SET_NAME = "set_name"
    CATEGORY = "category"
    COMMENT = "comment"


class DataSource(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    device_id: str
    name: str
    type: DataSourceType
    time_zone: str = ""


class AbstractFile(BaseModel):
    """A file record, either stored in the case repository or built from disk."""

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    data_source_id: Optional[int] = None
    name: str
    parent_path: str = Field("/", description="Normalized as '/a/b/' with leading and trailing slash")
    meta_addr: Optional[int] = None
    size: int = 0
    crtime: int = 0
    mtime: int = 0
    atime: int = 0
    ctime: int = 0
    local_path: Optional[str] = None
    is_dir: bool = False

    @property
    def full_path(self) -> str:
        parent = self.parent_path if self.parent_path.endswith("/") else self.parent_path + "/"
        if not parent.startswith("/"):
            parent = "/" + parent
        return parent + self.name

    @property
    def extension(self) -> str:
        if "." not in self.name:
            return ""
        return self.name.rsplit(".", 1)[1]


class Attribute(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: AttributeType
    source: str
    value: str


class Artifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    type: ArtifactType
    file_id: int
    attributes: Tuple[Attribute, ...] = ()

    def get_attribute(self, attribute_type: AttributeType) -> Optional[str]:
        for attr in self.attributes:
            if attr.type == attribute_type:
                return attr.value
        return None


class Report(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    path: str
    source_module: str
    name: str
    sha256_hash: Optional[str] = Field(None, pattern=r"^[a-fA-F0-9]{64}$")
