"""Exceptions raised by the booking and account modules.

Each carries the HTTP status the API answers with; the message is shown to
the user as-is.
"""


class RentalError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RentalError):
    status_code = 400


class ConflictError(RentalError):
    status_code = 400


class NotFoundError(RentalError):
    status_code = 404


class DeliveryError(RentalError):
    status_code = 500
