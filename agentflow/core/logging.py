import logging
import sys
import json
from datetime import datetime
from typing import Any, Dict

from agentflow.config import settings

class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        
        # Add extra fields if they exist
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)
            
        return json.dumps(log_data, default=str)

def setup_logger(name: str = "agentflow") -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
        
    return logger

def get_logger(area: str) -> logging.Logger:
    """Child logger of the service logger, e.g. ``agentflow.scheduler``."""
    return logger.getChild(area)

def log_fields(**fields: Any) -> Dict[str, Any]:
    """Build the ``extra`` kwarg the JSON formatter understands."""
    return {"extra_fields": fields}

logger = setup_logger()
