"""Library for browsing, editing and cleaning the decks and notes of an Anki collection."""

__version__ = "0.1.0"