"""Builds weighted connections between notes from text overlap."""
import logging
from typing import List, Sequence

from notegraph.exceptions import ErrorCode, NoteConnectionError
from notegraph.models.schema import Connection, ConnectionType, Note
from notegraph.services.text_analysis import jaccard, overlap_similarity, token_set

logger = logging.getLogger(__name__)


class ConnectionBuilder:
    """Computes automatic and manual connections.

    Only pairs whose overlap similarity is strictly above ``threshold``
    become automatic connections. Manual connections get at least
    ``manual_strength_floor``.
    """

    def __init__(self, threshold: float = 0.1, manual_strength_floor: float = 0.5):
        self.threshold = threshold
        self.manual_strength_floor = manual_strength_floor

    def connections_for_note(self, note: Note, others: Sequence[Note]) -> List[Connection]:
        """Automatic connections from ``note`` to every related note in ``others``."""
        tokens = token_set(note.content)
        connections = []
        for other in others:
            if other.id == note.id:
                continue
            strength = jaccard(tokens, token_set(other.content))
            if strength > self.threshold:
                connections.append(
                    Connection(
                        source_id=note.id,
                        target_id=other.id,
                        strength=strength,
                        connection_type=ConnectionType.AUTOMATIC,
                    )
                )
        logger.debug(
            "Note %s: %d automatic connections among %d notes",
            note.id, len(connections), len(others),
        )
        return connections

    def connections_for_all(self, notes: Sequence[Note]) -> List[Connection]:
        """Automatic connections for every unordered pair of ``notes``.

        Quadratic in the number of notes. Token sets are computed once per
        note.
        """
        token_sets = [token_set(note.content) for note in notes]
        connections = []
        for i in range(len(notes)):
            for j in range(i + 1, len(notes)):
                if notes[i].id == notes[j].id:
                    continue
                strength = jaccard(token_sets[i], token_sets[j])
                if strength > self.threshold:
                    connections.append(
                        Connection(
                            source_id=notes[i].id,
                            target_id=notes[j].id,
                            strength=strength,
                            connection_type=ConnectionType.AUTOMATIC,
                        )
                    )
        logger.info(
            "Computed %d automatic connections over %d notes",
            len(connections), len(notes),
        )
        return connections

    def manual_connection(
        self,
        source: Note,
        target: Note,
        connection_type: ConnectionType = ConnectionType.MANUAL,
    ) -> Connection:
        """Connection asserted by a user between two existing notes.

        An automatic connection requested this way is held to the same
        threshold as the ones the builder derives itself.

        Raises:
            NoteConnectionError: If both ends are the same note, or an
                automatic connection is not above the threshold.
        """
        if source.id == target.id:
            raise NoteConnectionError(
                "A note cannot be connected to itself",
                source_id=source.id,
                target_id=target.id,
                connection_type=connection_type.value,
                code=ErrorCode.CONNECTION_SELF_REFERENCE,
            )
        similarity = overlap_similarity(source.content, target.content)
        if connection_type == ConnectionType.MANUAL:
            strength = max(similarity, self.manual_strength_floor)
        elif similarity > self.threshold:
            strength = similarity
        else:
            raise NoteConnectionError(
                f"Similarity {similarity:.3f} is not above the automatic "
                f"connection threshold {self.threshold}",
                source_id=source.id,
                target_id=target.id,
                connection_type=connection_type.value,
                code=ErrorCode.CONNECTION_INVALID,
            )
        return Connection(
            source_id=source.id,
            target_id=target.id,
            strength=strength,
            connection_type=connection_type,
        )
