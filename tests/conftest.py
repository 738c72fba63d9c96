"""Pytest configuration and fixtures."""

from collections.abc import Callable
from pathlib import Path

import pytest

from ehrmap.conversion.engine import TransformationEngine
from ehrmap.core.types import (
    CodeEntry,
    CodeTranslationTable,
    FieldRule,
    MappingDirection,
    MappingSet,
)
from ehrmap.schemas.loader import MappingLoader
from ehrmap.schemas.registry import MappingRegistry

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def definitions_dir() -> Path:
    """Return path to the test mapping definitions directory."""
    return FIXTURES_DIR / "definitions"


@pytest.fixture
def documents_dir() -> Path:
    """Return path to the test source documents."""
    return FIXTURES_DIR / "documents"


@pytest.fixture
def loaded_registry(definitions_dir: Path) -> MappingRegistry:
    """Registry loaded from the fixture definitions."""
    return MappingLoader(definitions_dir).load_all()


@pytest.fixture
def gender_table() -> CodeTranslationTable:
    """Bidirectional gender lookup table."""
    return CodeTranslationTable(
        id="gender-lookup",
        name="Gender",
        source_system="http://hospital.example.org/codes/gender",
        default_target_system="http://hl7.org/fhir/administrative-gender",
        bidirectional=True,
        entries=(
            CodeEntry("M", "male", display="Male"),
            CodeEntry("F", "female", display="Female"),
            CodeEntry("U", "unknown", target_system="http://example.org/other", display="Unknown"),
        ),
    )


@pytest.fixture
def registry(gender_table: CodeTranslationTable) -> MappingRegistry:
    """Empty registry holding only the gender lookup table."""
    registry = MappingRegistry()
    registry.add_lookup_table(gender_table)
    return registry


@pytest.fixture
def engine(registry: MappingRegistry) -> TransformationEngine:
    return TransformationEngine(registry)


@pytest.fixture
def patient_mapping() -> MappingSet:
    """The two-rule identifier mapping used across engine tests."""
    return MappingSet(
        id="patient-identifiers",
        name="Patient identifiers",
        version="1.0",
        direction=MappingDirection.FORWARD,
        source_type="PatientDTO",
        field_rules=(
            FieldRule(
                id="patient-id",
                source_path="patientId",
                target_path="identifier[0].value",
                required=True,
            ),
            FieldRule(
                id="ssn",
                source_path="ssn",
                target_path="identifier[1].value",
                transform_expr="fn.digitsOnly(value)",
                condition="fn.isNotEmpty(ssn)",
            ),
        ),
    )


@pytest.fixture
def sample_patient() -> dict:
    """Sample source patient document."""
    return {
        "patientId": "P1",
        "ssn": "123-45-6789",
        "firstName": "John",
        "lastName": "Doe",
        "gender": "M",
        "birthDate": "1985-03-15",
        "addresses": [
            {"line": "123 Main St", "city": "Boston"},
            {"line": "456 Oak Ave", "city": "Cambridge"},
        ],
    }


@pytest.fixture
def make_mapping() -> Callable[..., MappingSet]:
    """Factory building a single-purpose mapping set around the given rules."""

    def _make(
        *rules: FieldRule,
        direction: MappingDirection = MappingDirection.FORWARD,
        target_type: str | None = None,
    ) -> MappingSet:
        return MappingSet(
            id="test-mapping",
            name="Test mapping",
            version="1.0",
            direction=direction,
            source_type="Source",
            target_type=target_type,
            field_rules=tuple(rules),
        )

    return _make
