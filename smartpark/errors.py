"""Доменные ошибки оркестрации зарядки и расчета"""


class SmartParkError(Exception):
    kind = "SmartParkError"

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind


class InvalidState(SmartParkError):
    kind = "InvalidState"


class SessionNotOpen(InvalidState):
    kind = "SessionNotOpen"


class JobNotQueued(InvalidState):
    kind = "JobNotQueued"


class RequestNotPending(InvalidState):
    kind = "RequestNotPending"


class JobNotRunning(InvalidState):
    kind = "JobNotRunning"


class JobNotAbortable(InvalidState):
    kind = "JobNotAbortable"


class NotFound(SmartParkError):
    kind = "NotFound"


class ResourceBusy(SmartParkError):
    kind = "ResourceBusy"


BotBusy = ResourceBusy


class DuplicateActiveRequest(SmartParkError):
    kind = "DuplicateActiveRequest"


class InvalidMeasurement(SmartParkError):
    kind = "InvalidMeasurement"


class NoActiveTariff(SmartParkError):
    kind = "NoActiveTariff"

    def __init__(self, message: str = "Нет действующего тарифа: configure a tariff"):
        super().__init__(message)


class Unauthorized(SmartParkError):
    kind = "Unauthorized"


class SpotUnavailable(SmartParkError):
    kind = "SpotUnavailable"


class InfrastructureError(SmartParkError):
    """Сбой хранилища (соединение, ограничения БД)"""

    kind = "InfrastructureError"
