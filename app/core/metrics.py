import time
import uuid
import logging
from functools import wraps
from typing import Optional

from core.prometheus_metrics import prometheus_collector

logger = logging.getLogger(__name__)


def track_performance(
    service_name: Optional[str] = None,
    include_metadata: bool = False
):
    """
    Decorator to automatically track method performance

    Usage:
    @track_performance(service_name="AllocationEngine")
    async def my_method(self, param1, param2):
        # method implementation
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            correlation_id = str(uuid.uuid4())

            actual_service_name = service_name or (args[0].__class__.__name__ if args else "Unknown")
            method_name = func.__name__

            operator_id = kwargs.get('operator_id')

            start_time = time.perf_counter()
            success = False
            metadata = {}

            try:
                result = await func(*args, **kwargs)
                success = True

                # Results are pydantic models; pick the outcome if there is one
                if include_metadata:
                    outcome = getattr(result, 'outcome', None)
                    if outcome is not None:
                        metadata['outcome'] = str(getattr(outcome, 'value', outcome))

                return result

            except Exception as e:
                logger.warning(
                    f"Error in {actual_service_name}.{method_name}: {e}",
                    extra={
                        'correlation_id': correlation_id,
                        'error_type': e.__class__.__name__,
                    }
                )
                raise

            finally:
                duration_ms = (time.perf_counter() - start_time) * 1000

                prometheus_collector.record_service_call(
                    service_name=actual_service_name,
                    method_name=method_name,
                    duration_seconds=duration_ms / 1000,
                    success=success,
                )

                logger.info(
                    f"Method executed: {actual_service_name}.{method_name}",
                    extra={
                        'correlation_id': correlation_id,
                        'service_name': actual_service_name,
                        'method_name': method_name,
                        'duration_ms': round(duration_ms, 2),
                        'success': success,
                        'operator_id': operator_id,
                        **metadata,
                    }
                )

        return wrapper
    return decorator
