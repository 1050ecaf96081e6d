"""DataFrame journal of processed acquisition requests."""

from data_store.schemas import SCHEMA, outcome_to_row
from data_store.store import OutcomeStore

__all__ = ["SCHEMA", "outcome_to_row", "OutcomeStore"]
