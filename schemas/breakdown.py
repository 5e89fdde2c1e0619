"""
Breakdown Schemas

Data models for scope breakdown structures, AI options and templates.
"""

from typing import Optional
from pydantic import BaseModel, Field, model_validator

from schemas.project import BreakdownType


class BreakdownNode(BaseModel):
    """A named scope node; children nest at most two levels in practice."""
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    children: list["BreakdownNode"] = Field(default_factory=list)


class BreakdownStructure(BaseModel):
    """Ordered tree of scope nodes. Node ids are unique across the tree."""
    type: BreakdownType = Field(default=BreakdownType.CUSTOM)
    nodes: list[BreakdownNode] = Field(..., min_length=1)

    @model_validator(mode="after")
    def check_unique_ids(self):
        seen: set[str] = set()
        stack = list(self.nodes)
        while stack:
            node = stack.pop()
            if node.id in seen:
                raise ValueError(f"Duplicate node ID: {node.id}")
            seen.add(node.id)
            stack.extend(node.children)
        return self

    def flatten(self) -> list[BreakdownNode]:
        """All nodes, depth first, in declared order."""
        result: list[BreakdownNode] = []

        def walk(nodes):
            for node in nodes:
                result.append(node)
                walk(node.children)

        walk(self.nodes)
        return result


class BreakdownOptionResult(BaseModel):
    """One grouping strategy suggested by the breakdown agent."""
    type: BreakdownType
    structure: BreakdownStructure
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    explanation: str = ""
    is_recommended: bool = False


class BreakdownGenerationResult(BaseModel):
    """Complete result from the breakdown agent."""
    options: list[BreakdownOptionResult] = Field(..., min_length=1)
    analysis_notes: str = ""


class BreakdownSelectRequest(BaseModel):
    """Select a cached option or supply a custom structure."""
    option_id: Optional[str] = None
    custom_structure: Optional[dict] = None
    source: str = Field(default="ai", description="ai, template or custom")
    template_id: Optional[str] = None
    save_as_template: bool = False
    template_name: Optional[str] = None


class TemplateCreateRequest(BaseModel):
    trade_type: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    breakdown_structure: dict = Field(..., description="Structure with a non-empty nodes list")
