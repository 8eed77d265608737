"""Append-only discussion transcript."""

from collections.abc import Iterator

from consult.models import TranscriptEntry


class Transcript:
    """Ordered log of discussion, vote and system entries.

    Entries are only ever appended. The single exception is a transient
    "is typing" placeholder, which is removed once the real entry exists.
    Doctor entries grow in place while their content is revealed.
    """

    def __init__(self, entries: list[TranscriptEntry] | None = None) -> None:
        self._entries: list[TranscriptEntry] = list(entries or [])

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[TranscriptEntry]:
        return iter(list(self._entries))

    def __getitem__(self, index: int) -> TranscriptEntry:
        return self._entries[index]

    @property
    def entries(self) -> list[TranscriptEntry]:
        return list(self._entries)

    def append(self, entry: TranscriptEntry) -> TranscriptEntry:
        self._entries.append(entry)
        return entry

    def remove_transient(self, entry: TranscriptEntry) -> None:
        """Drop a transient placeholder. Removing anything else is an error."""
        if not entry.transient:
            raise ValueError("Only transient entries can be removed from the transcript")
        # Identity match: a patient supplement may have been appended after the placeholder.
        for idx, existing in enumerate(self._entries):
            if existing is entry:
                del self._entries[idx]
                return

    def reveal(self, entry: TranscriptEntry, text: str) -> None:
        """Append text to an entry that is still being streamed."""
        entry.content += text

    def visible(self) -> list[TranscriptEntry]:
        """Entries without transient placeholders."""
        return [e for e in self._entries if not e.transient]
