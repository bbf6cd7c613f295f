"""
Engine error taxonomy. main.py maps each class to an HTTP status.
"""


class EngineError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotAuthenticated(EngineError):
    status_code = 401

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class NotFound(EngineError):
    status_code = 404


class QuestNotFound(NotFound):
    def __init__(self, quest_id: str):
        super().__init__(f"Quest not found: {quest_id}")
        self.quest_id = quest_id


class ProfileNotFound(NotFound):
    def __init__(self, user_id: str):
        super().__init__("Profile not found")
        self.user_id = user_id


class StatsNotFound(NotFound):
    def __init__(self, user_id: str):
        super().__init__("Player stats not found")
        self.user_id = user_id


class NoTemplatesAvailable(EngineError):
    status_code = 409

    def __init__(self, message: str = "No quest templates available"):
        super().__init__(message)


class QuestGenerationInProgress(EngineError):
    status_code = 409

    def __init__(self, quest_date: str):
        super().__init__(f"Quests for {quest_date} are still being generated, try again")
        self.quest_date = quest_date


class AlreadyCompleted(EngineError):
    """Not a failure: carries the result recorded when the quest was completed."""
    status_code = 200

    def __init__(self, quest_id: str, result=None):
        super().__init__(f"Quest already completed: {quest_id}")
        self.quest_id = quest_id
        self.result = result


class StorageFailure(EngineError):
    status_code = 503
