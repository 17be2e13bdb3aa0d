"""Mock transport for offline use and tests."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from rockid.providers.models import RawResponse

if TYPE_CHECKING:
    from rockid.providers.models import IdentificationRequest

MOCK_IDENTIFICATION = json.dumps(
    {
        "name": "Quartz",
        "category": "Mineral",
        "confidence": 0.92,
        "physicalProperties": {
            "color": "Colorless to white",
            "hardness": "7",
            "luster": "Vitreous",
            "streak": "White",
            "transparency": "Transparent to translucent",
            "crystalSystem": "Trigonal",
            "cleavage": "None",
            "fracture": "Conchoidal",
            "specificGravity": "2.65",
        },
        "chemicalProperties": {
            "formula": "SiO2",
            "composition": "Silicon dioxide",
            "elements": [
                {"name": "Silicon", "symbol": "Si", "percentage": 46.7},
                {"name": "Oxygen", "symbol": "O", "percentage": 53.3},
            ],
        },
        "formation": {
            "formationType": "Igneous, metamorphic and sedimentary",
            "environment": "Forms in a wide range of geological environments",
            "geologicalAge": "Various",
            "commonLocations": ["Brazil", "Arkansas, USA", "Madagascar"],
            "formationProcess": "Crystallizes from silica-rich fluids",
        },
        "uses": {
            "industrial": ["Glass making", "Electronics"],
            "historical": ["Tools and jewelry"],
            "modern": ["Oscillators in watches"],
            "metaphysical": ["Clarity"],
            "funFacts": ["Quartz is piezoelectric."],
        },
    }
)


class MockTransport:
    """Transport that never touches the network.

    Returns a fixed, well-formed identification so the full pipeline can run
    without credentials.
    """

    name = "mock"

    def __init__(self, text: str = MOCK_IDENTIFICATION, status_code: int = 200) -> None:
        """Initialize with the text and status every call returns."""
        self.text = text
        self.status_code = status_code
        self.calls = 0

    async def send(
        self, request: IdentificationRequest, *, timeout: float  # noqa: ARG002
    ) -> RawResponse:
        """Return the configured response."""
        self.calls += 1
        return RawResponse(status_code=self.status_code, text=self.text, model="mock")

    def content(self, response: RawResponse) -> str:
        """Return the body unchanged."""
        return response.text

    async def aclose(self) -> None:
        """Nothing to release."""
