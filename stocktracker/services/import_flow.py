"""
Import wizard state machine.

The upload -> map -> preview -> import -> complete sequence is a closed
set of step types plus pure transition functions. Transitions return a
new state and never mutate the old one; an event that does not apply to
the current step raises InvalidTransitionError.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Union

from stocktracker.exceptions import InvalidInputError
from stocktracker.services import field_mapping as fm
from stocktracker.services.csv_parser import CsvRowData, ParsedCsv
from stocktracker.services.import_engine import ImportPreview, ImportResult


class InvalidTransitionError(InvalidInputError):
    pass


@dataclass(frozen=True)
class UploadStep:
    error: Optional[str] = None


@dataclass(frozen=True)
class MappingStep:
    file_name: str
    headers: List[str]
    rows: List[CsvRowData]
    suggestion: fm.MappingSuggestion
    mapping: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass(frozen=True)
class PreviewStep:
    mapping_step: MappingStep
    preview: ImportPreview


@dataclass(frozen=True)
class ImportingStep:
    preview_step: PreviewStep


@dataclass(frozen=True)
class CompleteStep:
    result: ImportResult


ImportState = Union[UploadStep, MappingStep, PreviewStep, ImportingStep, CompleteStep]


def _expect(state: ImportState, *allowed: type) -> None:
    if not isinstance(state, allowed):
        names = ", ".join(t.__name__ for t in allowed)
        raise InvalidTransitionError(f"Cannot do that from {type(state).__name__}; expected {names}")


def start() -> UploadStep:
    return UploadStep()


def file_parsed(state: ImportState, file_name: str, parsed: ParsedCsv,
                suggestion: fm.MappingSuggestion) -> MappingStep:
    """Upload accepted; high-confidence suggestions are applied up front."""
    _expect(state, UploadStep)
    return MappingStep(
        file_name=file_name,
        headers=list(parsed.headers),
        rows=list(parsed.rows),
        suggestion=suggestion,
        mapping=suggestion.accepted(),
    )


def upload_failed(state: ImportState, message: str) -> UploadStep:
    _expect(state, UploadStep)
    return UploadStep(error=message)


def mapping_changed(state: ImportState, column: str, canonical: Optional[str]) -> MappingStep:
    """Map ``column`` to ``canonical`` (None or skip clears it); a field moves off any other column."""
    _expect(state, MappingStep)
    if column not in state.headers:
        raise InvalidTransitionError(f"Unknown column '{column}'")
    if canonical is not None and canonical not in fm.CANONICAL_FIELDS:
        raise InvalidTransitionError(f"Unknown field '{canonical}'")

    mapping = dict(state.mapping)
    if canonical is None or canonical == fm.SKIP:
        mapping.pop(column, None)
    else:
        for other, assigned in list(mapping.items()):
            if assigned == canonical:
                del mapping[other]
        mapping[column] = canonical
    return replace(state, mapping=mapping, error=None)


def missing_required(state: MappingStep) -> List[str]:
    mapped = set(state.mapping.values())
    return [canonical for canonical in fm.REQUIRED_FIELDS if canonical not in mapped]


def preview_ready(state: ImportState, preview: ImportPreview) -> PreviewStep:
    _expect(state, MappingStep)
    missing = missing_required(state)
    if missing:
        raise InvalidTransitionError(f"Missing required field mapping: {', '.join(missing)}")
    return PreviewStep(mapping_step=state, preview=preview)


def import_started(state: ImportState) -> ImportingStep:
    _expect(state, PreviewStep)
    if state.preview.valid_count == 0:
        raise InvalidTransitionError("No valid rows to import")
    return ImportingStep(preview_step=state)


def import_finished(state: ImportState, result: ImportResult) -> CompleteStep:
    _expect(state, ImportingStep)
    return CompleteStep(result=result)


def back(state: ImportState) -> ImportState:
    _expect(state, PreviewStep, MappingStep)
    if isinstance(state, PreviewStep):
        return state.mapping_step
    return UploadStep()


def reset(state: ImportState) -> UploadStep:
    return UploadStep()
