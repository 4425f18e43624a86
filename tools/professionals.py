"""
Professional directory tools — lookup and booking for guideline tool actions.

Both tools read their filters from the turn's facts rather than from the
call arguments: ``getProfessional`` filters on the ``professionalType`` and
``location`` slots and writes the chosen ``professionalId`` back into the
facts, which ``bookProfessional`` then reads.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
import yaml
from pydantic import BaseModel, Field

from models.schemas import Facts
from templates.tool_registry import ToolRegistry, ToolSchema

logger = structlog.get_logger()


class Professional(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    surname: str = ""
    session_price: float = 0
    session_duration: int = 60                 # minutes
    location: str = ""
    online: bool = False
    description: str = ""
    rating: float = 0
    reviews: int = 0
    specialties: list[str] = []
    languages: list[str] = []


class ProfessionalDirectory:
    """In-memory directory of bookable professionals."""

    def __init__(self, professionals: list[Professional] = None):
        self._professionals: list[Professional] = list(professionals or [])

    @classmethod
    def from_file(cls, path: str) -> "ProfessionalDirectory":
        """Load ``{professionals: [...]}`` from a YAML file."""
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        directory = cls([Professional(**p) for p in raw.get("professionals", [])])
        logger.info("professional_directory_loaded", path=path, count=len(directory))
        return directory

    def __len__(self) -> int:
        return len(self._professionals)

    def add(self, professional: Professional) -> None:
        self._professionals.append(professional)

    def find(self, specialty: str = "", location: str = "", limit: int = 1) -> list[Professional]:
        matches = []
        for p in self._professionals:
            if specialty and specialty.lower() not in [s.lower() for s in p.specialties]:
                continue
            if location and location.lower() not in p.location.lower():
                continue
            matches.append(p)
            if len(matches) >= limit:
                break
        return matches

    def get(self, professional_id: str) -> Optional[Professional]:
        return next((p for p in self._professionals if p.id == professional_id), None)


def create_default_tool_registry(directory: ProfessionalDirectory) -> ToolRegistry:
    """Registry with getProfessional and bookProfessional bound to a directory."""
    registry = ToolRegistry()

    async def get_professional(args: dict[str, Any], facts: Facts) -> Optional[dict[str, Any]]:
        slots = facts.information_retrieved
        found = directory.find(
            specialty=str(slots.get("professionalType") or ""),
            location=str(slots.get("location") or ""),
        )
        if not found:
            logger.info("professional_not_found", filters=slots)
            return None
        professional = found[0]
        slots["professionalId"] = professional.id
        return professional.model_dump()

    async def book_professional(args: dict[str, Any], facts: Facts) -> dict[str, Any]:
        slots = facts.information_retrieved
        professional_id = args.get("professionalId") or slots.get("professionalId")
        if not professional_id:
            raise ValueError("Professional ID is required for booking")
        booking = {
            "bookingId": f"booking_{uuid.uuid4().hex[:12]}",
            "professionalId": professional_id,
            "message": args.get("message") or slots.get("message") or "No additional message",
            "status": "confirmed",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        logger.info("professional_booked", **booking)
        return booking

    registry.register(ToolSchema(
        name="getProfessional",
        description="Get professionals by their name or specialization.",
        input_schema={
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Professional name or specialization"},
            },
            "required": ["name"],
        },
    ), get_professional)

    registry.register(ToolSchema(
        name="bookProfessional",
        description="Book a session with a specific professional",
        input_schema={
            "type": "object",
            "properties": {
                "professionalId": {"type": "string", "description": "ID of the professional to book"},
                "message": {"type": "string", "description": "Additional message or requirements (optional)"},
            },
            "required": ["professionalId"],
        },
    ), book_professional)

    return registry
