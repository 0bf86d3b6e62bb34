"""Domain exceptions for scoring, ranking, and profile persistence."""


class RecommenderError(Exception):
    """Base class for every error raised by the recommender core."""


class InvalidCandidateData(RecommenderError):
    """A candidate lacks the attributes a score component needs.

    The ranker excludes the candidate and reports it; the batch continues.
    """

    def __init__(self, candidate_id: str | None, message: str) -> None:
        self.candidate_id = candidate_id
        self.message = message
        super().__init__(f"Invalid candidate {candidate_id or '<unknown>'}: {message}")


class ProfileNotFound(RecommenderError):
    """No stored profile exists for the user."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"No preference profile stored for user '{user_id}'")


class ConcurrentUpdateConflict(RecommenderError):
    """An optimistic profile write lost a race against another writer."""

    def __init__(self, user_id: str, expected_version: int) -> None:
        self.user_id = user_id
        self.expected_version = expected_version
        super().__init__(
            f"Profile for user '{user_id}' changed since version {expected_version}"
        )


class PersistenceError(RecommenderError):
    """The profile store failed to read or write."""
