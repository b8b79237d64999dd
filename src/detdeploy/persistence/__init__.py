"""Durable records — deployment artifacts and the run journal."""

from detdeploy.persistence.artifact_store import ArtifactStore
from detdeploy.persistence.run_journal import JournalEntry, JournalKind, RunJournal

__all__ = ["ArtifactStore", "JournalEntry", "JournalKind", "RunJournal"]
