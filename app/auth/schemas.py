from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class CurrentUser(BaseModel):
    """Lightweight representation of the authenticated user for RBAC checks.
    student_id is set for STUDENT tokens; ward_ids lists the students a PARENT may see.
    """

    id: UUID
    tenant_id: UUID
    role: str
    permissions: Dict[str, Dict[str, bool]] = Field(default_factory=dict)
    student_id: Optional[UUID] = None
    ward_ids: List[UUID] = Field(default_factory=list)
