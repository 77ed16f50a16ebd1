import structlog
import logging
import sys
from typing import Dict, Any, List, Optional
from datetime import datetime, timezone
import os


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "jupytutor"
) -> None:
    """Setup structured logging configuration"""
    
    # Dev logging forces debug output regardless of the requested level
    if os.getenv("JUPYTUTOR_DEV_LOG", "").lower() in ("1", "true", "yes"):
        log_level = "DEBUG"
    
    # Configure Python logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )
    
    # Processors for structlog
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_service_context,
    ]
    
    # Add appropriate renderer based on format
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())
    
    # Configure structlog
    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    
    # Set service name in context
    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
    )


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add notebook context to all log entries"""
    
    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    
    # Notebook path is bound per session
    notebook_path = structlog.contextvars.get_contextvars().get("notebook_path")
    if notebook_path:
        event_dict["notebook_path"] = notebook_path
    
    return event_dict


class TutorLogger:
    """Specialized logger for rule resolution and context retrieval events"""
    
    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)
        
    def log_rule_resolution(
        self,
        cell_index: int,
        matched_rules: int,
        cell_override: List[str],
        chat_enabled: bool
    ):
        """Log the outcome of resolving one cell's config"""
        
        self.logger.debug(
            "rule_resolution",
            cell_index=cell_index,
            matched_rules=matched_rules,
            cell_override=cell_override,
            chat_enabled=chat_enabled
        )
        
    def log_link_expansion(
        self,
        source_count: int,
        expanded_count: int,
        failed_links: Optional[List[str]] = None
    ):
        """Log a link expansion pass"""
        
        self.logger.info(
            "link_expansion",
            source_count=source_count,
            expanded_count=expanded_count,
            failed_links=failed_links or []
        )
        
    def log_retrieval_transition(
        self,
        from_status: str,
        to_status: str,
        link_count: int,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log context retriever state transitions"""
        
        self.logger.info(
            "retrieval_transition",
            from_status=from_status,
            to_status=to_status,
            link_count=link_count,
            details=details or {}
        )


# Global logger instance
tutor_logger = TutorLogger("jupytutor")


class MetricsCollector:
    """Collect and export metrics"""
    
    def __init__(self):
        self.metrics: Dict[str, Any] = {}
        
    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        """Record operation latency"""
        
        key = f"latency.{operation}"
        if key not in self.metrics:
            self.metrics[key] = {
                "count": 0,
                "sum": 0,
                "min": float('inf'),
                "max": 0
            }
            
        self.metrics[key]["count"] += 1
        self.metrics[key]["sum"] += duration_ms
        self.metrics[key]["min"] = min(self.metrics[key]["min"], duration_ms)
        self.metrics[key]["max"] = max(self.metrics[key]["max"], duration_ms)
        
        tutor_logger.logger.debug(
            "metric",
            metric_type="latency",
            operation=operation,
            duration_ms=duration_ms,
            tags=tags or {}
        )
        
    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        """Increment a counter metric"""
        
        if name not in self.metrics:
            self.metrics[name] = 0
        self.metrics[name] += value
        
        tutor_logger.logger.debug(
            "metric",
            metric_type="counter",
            name=name,
            value=value,
            tags=tags or {}
        )
        
    def get_metrics_summary(self) -> Dict[str, Any]:
        """Get summary of all metrics"""
        
        summary = {}
        for key, value in self.metrics.items():
            if isinstance(value, dict) and "count" in value:
                # Latency metric
                summary[key] = {
                    "count": value["count"],
                    "avg": value["sum"] / value["count"] if value["count"] > 0 else 0,
                    "min": value["min"] if value["min"] != float('inf') else 0,
                    "max": value["max"]
                }
            else:
                summary[key] = value
                
        return summary

    def reset(self):
        """Drop all collected metrics"""
        
        self.metrics.clear()


# Global metrics collector
metrics = MetricsCollector()
