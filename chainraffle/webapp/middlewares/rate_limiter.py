import time
import logging
from collections import defaultdict
from typing import Callable, Dict, List, Optional, Tuple

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware


class RateLimiter:
    """
    Ограничение частоты запросов по алгоритму "скользящее окно".
    """

    def __init__(self, window_size: int = 60, max_requests: int = 30):
        """
        Args:
            window_size (int): Размер временного окна в секундах
            max_requests (int): Максимальное количество запросов в окне
        """
        self.window_size = window_size
        self.max_requests = max_requests
        self.clients: Dict[str, List[float]] = defaultdict(list)

    def is_allowed(self, client_id: str, now: Optional[float] = None) -> Tuple[bool, Dict]:
        """
        Проверяет, разрешено ли клиенту выполнить запрос, и учитывает запрос в окне.

        Returns:
            Tuple[bool, Dict]: (разрешено, информация о лимите)
        """
        now = time.monotonic() if now is None else now
        window = [ts for ts in self.clients[client_id] if now - ts < self.window_size]
        self.clients[client_id] = window

        if len(window) >= self.max_requests:
            retry_after = max(0.0, window[0] + self.window_size - now)
            return False, {"limit": self.max_requests, "remaining": 0, "retry_after": round(retry_after, 2)}

        window.append(now)
        return True, {"limit": self.max_requests, "remaining": self.max_requests - len(window), "retry_after": 0}

    def cleanup(self, max_idle_time: int = 3600, now: Optional[float] = None) -> int:
        """Удаляет неактивных клиентов, возвращает их количество"""
        now = time.monotonic() if now is None else now
        inactive = [
            client_id for client_id, timestamps in self.clients.items()
            if not timestamps or now - timestamps[-1] > max_idle_time
        ]
        for client_id in inactive:
            del self.clients[client_id]
        return len(inactive)


class RateLimiterMiddleware(BaseHTTPMiddleware):
    """
    Middleware ограничения частоты запросов.
    Лимиты задаются для точного пути, для суффикса пути (например /enter у любого розыгрыша)
    или используется лимит по умолчанию.
    """

    def __init__(
        self,
        app,
        default_window_size: int = 60,
        default_max_requests: int = 30,
        exclude_paths: List[str] = None,
        path_limits: Dict[str, Tuple[int, int]] = None,
        suffix_limits: Dict[str, Tuple[int, int]] = None,
    ):
        """
        Args:
            app: FastAPI приложение
            default_window_size (int): Размер временного окна по умолчанию в секундах
            default_max_requests (int): Максимальное количество запросов по умолчанию
            exclude_paths (List[str], optional): Префиксы путей без ограничений
            path_limits (Dict[str, Tuple[int, int]], optional): {путь: (окно_в_секундах, макс_запросов)}
            suffix_limits (Dict[str, Tuple[int, int]], optional): {суффикс пути: (окно_в_секундах, макс_запросов)}
        """
        super().__init__(app)

        self.exclude_paths = exclude_paths or ["/docs", "/redoc", "/openapi.json"]
        self.default_limiter = RateLimiter(default_window_size, default_max_requests)
        self.path_limiters = {
            path: RateLimiter(window, max_req) for path, (window, max_req) in (path_limits or {}).items()
        }
        self.suffix_limiters = {
            suffix: RateLimiter(window, max_req) for suffix, (window, max_req) in (suffix_limits or {}).items()
        }
        self._requests_seen = 0

    async def dispatch(self, request: Request, call_next: Callable):
        path = request.url.path
        if request.method == "OPTIONS" or any(path.startswith(p) for p in self.exclude_paths):
            return await call_next(request)

        client_id = self._get_client_id(request)
        limiter = self._get_limiter_for_path(path)
        allowed, limit_info = limiter.is_allowed(client_id)

        self._requests_seen += 1
        if self._requests_seen % 1000 == 0:
            limiter.cleanup()

        if not allowed:
            logging.warning(f"Превышен лимит запросов для {client_id} на {path}")
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"error": {
                    "kind": "rate_limited",
                    "message": f"Too many requests. Retry in {limit_info['retry_after']} seconds.",
                    "retryAfter": limit_info["retry_after"],
                }},
                headers={
                    "Retry-After": str(int(limit_info["retry_after"]) + 1),
                    "X-RateLimit-Limit": str(limit_info["limit"]),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit_info["limit"])
        response.headers["X-RateLimit-Remaining"] = str(limit_info["remaining"])
        return response

    def _get_client_id(self, request: Request) -> str:
        # За прокси реальный IP приходит в X-Forwarded-For
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return f"ip:{forwarded_for.split(',')[0].strip()}"
        return f"ip:{request.client.host if request.client else 'unknown'}"

    def _get_limiter_for_path(self, path: str) -> RateLimiter:
        if path in self.path_limiters:
            return self.path_limiters[path]
        for suffix, limiter in self.suffix_limiters.items():
            if path.endswith(suffix):
                return limiter
        return self.default_limiter
