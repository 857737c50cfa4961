# loan_engine/services/rate_limiter.py

import asyncio
import logging
import time
from collections import deque

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Sliding-window limiter that keeps a bureau within its request quota.
    """
    def __init__(self, max_requests: int = 100, window_seconds: float = 60):
        """
        Args:
            max_requests: Maximum requests allowed in the time window
            window_seconds: Time window in seconds
        """
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.request_times = deque()
        self._lock = asyncio.Lock()
    
    def _clean_old_requests(self):
        """Remove requests outside the current time window"""
        cutoff_time = time.monotonic() - self.window_seconds
        
        while self.request_times and self.request_times[0] < cutoff_time:
            self.request_times.popleft()
    
    async def wait_if_needed(self):
        """
        Suspend if the quota would be exceeded.
        Returns immediately if under limit.
        """
        async with self._lock:
            self._clean_old_requests()
            
            if len(self.request_times) >= self.max_requests:
                oldest_request = self.request_times[0]
                wait_time = (oldest_request + self.window_seconds) - time.monotonic()
                
                if wait_time > 0:
                    logger.info("Rate limit reached, waiting %.1fs before next bureau request", wait_time)
                    await asyncio.sleep(wait_time)
                    self._clean_old_requests()
            
            self.request_times.append(time.monotonic())
    
    def get_current_usage(self) -> dict:
        """Get current rate limit statistics"""
        self._clean_old_requests()
        return {
            "requests_in_window": len(self.request_times),
            "max_requests": self.max_requests,
            "window_seconds": self.window_seconds,
            "utilization": f"{(len(self.request_times) / self.max_requests) * 100:.1f}%"
        }
