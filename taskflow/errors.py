"""Shared exception markers."""


class FatalError(Exception):
    """An error that must end the current conversation turn.

    Raised for failures that will recur if retried (bad credentials, exhausted
    quota, an unreachable store). The orchestrator stops at the first one and
    reports it to the caller instead of feeding it back to the model.
    """
