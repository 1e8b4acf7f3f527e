from fastapi import HTTPException


class MarketplaceError(Exception):
    """Base for domain errors raised below the route layer."""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_http(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.message)


class TransitionForbidden(MarketplaceError):
    status_code = 403


class OrderTransitionError(MarketplaceError):
    status_code = 400


class ConcurrentUpdateError(MarketplaceError):
    status_code = 409


class PaymentGatewayError(MarketplaceError):
    status_code = 502


class CommissionExistsError(MarketplaceError):
    status_code = 400
