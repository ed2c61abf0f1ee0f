"""API middleware package."""

from kanora.api.middleware.request_id import RequestIDMiddleware

__all__ = ["RequestIDMiddleware"]
