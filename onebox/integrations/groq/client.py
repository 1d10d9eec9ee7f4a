from groq import Groq
from typing import Any, Dict, List, Optional
from datetime import datetime
from pathlib import Path
import asyncio
import json
import logging

from onebox.exceptions import ConfigurationError, LLMRequestError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "llama-3.3-70b-versatile"
MAX_RECORDED_EVENTS = 1000


class EnhancedGroqClient:
    """Enhanced Groq client with retry logic, error handling, and performance monitoring."""

    def __init__(self,
                 api_key: str,
                 model: str = DEFAULT_MODEL,
                 metrics_file: Optional[str] = None,
                 backoff_base: float = 2.0,
                 client: Optional[Any] = None):
        """Initialize the client.

        Args:
            api_key: Groq API key
            model: Default model for completions
            metrics_file: Optional JSON file the request metrics are persisted to
            backoff_base: Base of the exponential wait between attempts
            client: Pre-built SDK client, mainly for tests
        """
        if not api_key and client is None:
            raise ConfigurationError("GROQ_API_KEY must be provided")

        self.model = model
        self.backoff_base = backoff_base
        self.client = client or Groq(api_key=api_key)
        self.metrics_file = metrics_file
        self._write_lock = asyncio.Lock()
        if metrics_file:
            Path(metrics_file).parent.mkdir(parents=True, exist_ok=True)
        self.load_metrics()

    def load_metrics(self):
        """Load or initialize performance metrics."""
        self.metrics = {
            'requests': [],
            'errors': [],
            'performance': {
                'avg_response_time': 0,
                'total_requests': 0,
                'success_rate': 100
            }
        }
        if not self.metrics_file:
            return
        try:
            with open(self.metrics_file, 'r') as f:
                self.metrics = json.load(f)
        except (FileNotFoundError, json.JSONDecodeError):
            self.save_metrics()

    def save_metrics(self):
        """Save current metrics to file."""
        if not self.metrics_file:
            return
        try:
            with open(self.metrics_file, 'w') as f:
                json.dump(self.metrics, f, indent=2)
        except OSError as e:
            logger.warning(f"Failed to persist Groq metrics: {e}")

    def _write_metrics(self, payload: str):
        with open(self.metrics_file, 'w') as f:
            f.write(payload)

    async def persist_metrics(self):
        """Write metrics from a worker thread; the snapshot is taken on the event loop."""
        if not self.metrics_file:
            return
        async with self._write_lock:
            payload = json.dumps(self.metrics, indent=2)
            try:
                await asyncio.to_thread(self._write_metrics, payload)
            except OSError as e:
                logger.warning(f"Failed to persist Groq metrics: {e}")

    async def process_with_retry(self,
                                 messages: List[Dict],
                                 max_retries: int = 3,
                                 **kwargs) -> Any:
        """Process a chat completion with retry logic and error handling.

        Args:
            messages: List of message dictionaries for the conversation
            max_retries: Maximum number of attempts
            **kwargs: Additional parameters for the API call

        Returns:
            SDK completion response

        Raises:
            LLMRequestError: When every attempt failed
        """
        start_time = datetime.now()
        retries = 0

        params = {
            'model': kwargs.pop('model', self.model),
            'messages': messages,
            'temperature': kwargs.pop('temperature', 0.7),
            'max_completion_tokens': kwargs.pop('max_completion_tokens', 1024),
            **kwargs
        }

        while True:
            try:
                response = await asyncio.to_thread(self.client.chat.completions.create, **params)
            except Exception as e:
                retries += 1
                self.record_error(str(e))
                await self.persist_metrics()

                if retries >= max_retries:
                    logger.error(f"Failed after {max_retries} attempts: {e}")
                    raise LLMRequestError(f"Failed after {max_retries} attempts: {e}") from e

                # Exponential backoff
                wait_time = self.backoff_base ** retries
                logger.warning(f"Attempt {retries} failed. Waiting {wait_time} seconds before retry...")
                await asyncio.sleep(wait_time)
                continue

            self.record_success(start_time)
            await self.persist_metrics()
            return response

    async def complete(self, messages: List[Dict], max_retries: int = 3, **kwargs) -> str:
        """Run a completion and return the text of the first choice."""
        response = await self.process_with_retry(messages, max_retries=max_retries, **kwargs)
        return (response.choices[0].message.content or "").strip()

    def record_success(self, start_time: datetime):
        """Record successful request metrics."""
        duration = (datetime.now() - start_time).total_seconds()
        self.metrics['requests'].append({
            'timestamp': datetime.now().isoformat(),
            'duration': duration,
            'status': 'success'
        })
        self.metrics['requests'] = self.metrics['requests'][-MAX_RECORDED_EVENTS:]

        performance = self.metrics['performance']
        total_reqs = performance['total_requests'] + 1
        performance.update({
            'avg_response_time': (
                (performance['avg_response_time'] * (total_reqs - 1) + duration) / total_reqs
            ),
            'total_requests': total_reqs,
            'success_rate': (
                max(total_reqs - len(self.metrics['errors']), 0) / total_reqs * 100
            )
        })


    def record_error(self, error_message: str):
        """Record error metrics."""
        self.metrics['errors'].append({
            'timestamp': datetime.now().isoformat(),
            'error': error_message
        })
        self.metrics['errors'] = self.metrics['errors'][-MAX_RECORDED_EVENTS:]

    def get_performance_metrics(self) -> Dict:
        """Get current performance metrics."""
        return dict(self.metrics['performance'])
