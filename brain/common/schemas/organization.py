"""
Organization Snapshot Schema

Read-only views of projects and members owned by an external system. The
core only reads them as context and never writes them back.
"""

import json
import logging
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger("brain.common.schemas.organization")

# Statuses that take a record out of the live snapshot
TERMINAL_PROJECT_STATUSES = frozenset({"completed", "cancelled", "archived"})
TERMINAL_MEMBER_STATUSES = frozenset({"inactive", "left", "retired"})


class ProjectRecord(BaseModel):
    """A project as seen by the assistant"""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = ""
    name: str
    status: str = "planning"
    category: str = ""
    progress_percent: float = Field(default=0, alias="progressPercent")
    assignees: List[str] = Field(default_factory=list)
    deadline: Optional[str] = None  # ISO date as supplied by the owner system
    description: str = ""

    @property
    def is_active(self) -> bool:
        return self.status.lower() not in TERMINAL_PROJECT_STATUSES


class MemberRecord(BaseModel):
    """A member as seen by the assistant"""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = ""
    name: str
    department: str = ""
    position: str = ""
    role: str = ""
    status: str = "active"
    skills: List[str] = Field(default_factory=list)
    workload_status: str = Field(default="", alias="workloadStatus")

    @field_validator("skills", mode="before")
    @classmethod
    def _skill_names(cls, v) -> List[str]:
        # Skills arrive either as names or as {"name": ..., "level": ...}
        names = []
        for skill in v or []:
            if isinstance(skill, dict):
                if skill.get("name"):
                    names.append(str(skill["name"]))
            elif skill:
                names.append(str(skill))
        return names

    @property
    def is_active(self) -> bool:
        return self.status.lower() not in TERMINAL_MEMBER_STATUSES


class OrganizationSnapshot(BaseModel):
    """Live organizational state for one request"""
    projects: List[ProjectRecord] = Field(default_factory=list)
    members: List[MemberRecord] = Field(default_factory=list)

    def member_names(self, member_ids: List[str]) -> List[str]:
        wanted = set(member_ids)
        return [m.name for m in self.members if m.id in wanted]


def _load_records(path: Path, model) -> list:
    if not path.exists():
        return []

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        logger.warning("Failed to load %s: %s", path, e)
        return []

    if not isinstance(data, list):
        logger.warning("%s content is not a list", path)
        return []

    records = []
    for item in data:
        try:
            records.append(model.model_validate(item))
        except ValidationError as e:
            logger.warning("Skipping invalid record in %s: %s", path.name, e.errors()[0].get("msg"))
    return records


def load_snapshot(data_dir: Union[str, Path]) -> OrganizationSnapshot:
    """Read projects.json and members.json from the data directory"""
    data_dir = Path(data_dir).expanduser()
    return OrganizationSnapshot(
        projects=_load_records(data_dir / "projects.json", ProjectRecord),
        members=_load_records(data_dir / "members.json", MemberRecord),
    )
