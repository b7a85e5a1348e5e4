from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(slots=True)
class PIR:
    """Priority Intelligence Requirement curated by an analyst."""

    name: str
    category: str
    description: str = ""
    keywords: List[str] = field(default_factory=list)
    confidence_threshold: int = 70
    active: bool = True
    display_order: int = 0
    id: Optional[int] = None


def default_pirs() -> List[PIR]:
    """Built-in requirement set used when none are configured."""
    return [
        PIR(
            name="Ukraine Conflict",
            category="ukraine",
            description="Frontline movements, political developments, strategic shifts",
            keywords=[
                "ukraine", "ukrainian", "bakhmut", "kharkiv", "frontline", "military",
                "zelensky", "kyiv", "donetsk", "luhansk", "russian", "offensive",
            ],
            display_order=1,
        ),
        PIR(
            name="Industrial Sabotage",
            category="sabotage",
            description="Infrastructure attacks, facility threats (focus Eurasia)",
            keywords=[
                "sabotage", "infrastructure", "industrial", "cyber", "attack", "facility",
                "scada", "power grid", "pipeline", "malware", "disruption",
            ],
            display_order=2,
        ),
        PIR(
            name="Insider Threats",
            category="insider",
            description="Employee security, background check issues",
            keywords=[
                "employee", "insider", "security", "clearance", "background", "breach",
                "access", "leak", "personnel", "unauthorized", "credentials", "whistleblower",
            ],
            display_order=3,
        ),
    ]
