# Custom exceptions to be used throughout the project.

class SchedulingError(Exception):
    """
    Base class for every error the availability engine raises.
    """
    # By default Exception class takes a tuple of arguments
    def __init__(self, *args):
        super().__init__(*args)


class InputError(SchedulingError):
    """
    To be raised when a query can't be computed as given. Not retried.
    May be raised under the following circumstances:
        1. Meeting duration is zero or negative
        2. Slot granularity is zero or negative
        3. A caller that expects an answer passed no required participants
        4. A request argument could not be parsed
    """


class CollaboratorFailure(SchedulingError):
    """
    To be raised when the busy interval provider or the business hours resolver fails for a participant.
    The whole query is aborted, there are no partial results. The original exception is chained.
    """
    def __init__(self, participant_id, cause):
        self.participant_id = participant_id
        self.cause = cause
        super().__init__(f"Availability lookup failed for participant {participant_id}: {cause}")


class QueryCancelled(SchedulingError):
    """
    Raised when the caller cancels a query while collaborator fetches are in flight.
    """
