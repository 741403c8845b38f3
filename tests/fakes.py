"""Test doubles for AI backends and sample contract data."""
import json
import threading

from contract_engine.ai.backends import AIBackend, BackendResponse


def ai_response(data=None, confidence=None, rules=None, notes=None):
    """Render a structured AI answer as the backend would return it."""
    body = {
        "extractedData": data or {},
        "confidence": confidence or {},
        "extractedRules": rules or [],
    }
    if notes is not None:
        body["notes"] = notes
    return json.dumps(body)


class FakeBackend(AIBackend):
    """
    Backend driven by a script of outcomes.

    Each script entry is a string (returned as structured text), a
    BackendResponse, or an exception instance (raised). The last entry
    repeats once the script runs out. A ``responder`` callable
    ``(payload, instructions) -> str`` can be used instead of a script.
    """

    def __init__(self, name="fake", script=None, responder=None, requests_per_minute=600):
        self.name = name
        self.script = list(script or [])
        self.responder = responder
        self.REQUESTS_PER_MINUTE = requests_per_minute
        self.calls = 0
        self.payloads = []
        self.instructions = []
        self.citation_flags = []
        self._lock = threading.Lock()

    def submit(self, payload, instructions, with_citations=False):
        with self._lock:
            self.calls += 1
            index = min(self.calls - 1, len(self.script) - 1)
            self.payloads.append(payload)
            self.instructions.append(instructions)
            self.citation_flags.append(with_citations)

        if self.responder is not None:
            outcome = self.responder(payload, instructions)
        else:
            outcome = self.script[index]

        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, BackendResponse):
            return outcome
        return BackendResponse(
            structured_text=outcome,
            usage={"input_units": 100, "output_units": 20},
        )


LEASE_TEXT = """LEASE SUPPLEMENT NO. 3

This Lease Supplement is effective as of March 1, 2024.
Customer: Acme Data Centers LLC
Lessor: Bloom Energy Corporation

The Equipment has a rated capacity of 2800 kW and uses solid oxide fuel cells.
The term of 15 years begins on the Commencement Date.
The base rate of $0.12 per kWh is subject to an annual escalation of 2.5%.
Interconnection at 12.47 kV.
"""

LEASE_AI_RESPONSE = ai_response(
    data={
        "systemCapacity": "2800 kW",
        "contractTerm": "15 years",
        "baseRate": "$0.12 per kWh",
        "buyer": "Acme Data Centers LLC",
        "voltage": "NOT SPECIFIED",
    },
    confidence={
        "systemCapacity": 0.95,
        "contractTerm": 0.9,
        "baseRate": 0.92,
        "buyer": 0.88,
        "voltage": 0.1,
    },
    rules=[
        {
            "category": "Financial",
            "statement": "Base rate escalates 2.5% annually",
            "sourceFields": ["baseRate", "annualEscalation"],
            "confidence": 0.9,
        },
        {
            "category": "technical",
            "condition": "availability falls below 95%",
            "action": "seller pays performance credits",
        },
    ],
    notes="Lease supplement for a single site",
)
