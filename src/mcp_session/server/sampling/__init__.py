from .client import SamplingClient
from .response_handler import SamplingResponseHandler
from .response_waiter import ResponseWaiter

__all__ = ["ResponseWaiter", "SamplingClient", "SamplingResponseHandler"]
