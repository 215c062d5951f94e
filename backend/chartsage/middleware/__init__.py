# Middleware - request logging
from chartsage.middleware.request_logger import RequestLoggerMiddleware

__all__ = ["RequestLoggerMiddleware"]
