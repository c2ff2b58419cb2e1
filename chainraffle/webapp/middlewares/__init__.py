from chainraffle.webapp.middlewares.rate_limiter import RateLimiter, RateLimiterMiddleware

__all__ = ["RateLimiter", "RateLimiterMiddleware"]
