"""Nginx status and process information models."""

from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime


class NginxProcessStatus(str, Enum):
    """Nginx process state."""
    RUNNING = "running"
    STOPPED = "stopped"
    UNKNOWN = "unknown"


class ConfigTestStatus(str, Enum):
    """Result of `nginx -t`."""
    SUCCESS = "success"
    FAILED = "failed"
    NOT_TESTED = "not_tested"


class NginxProcessInfo(BaseModel):
    """Master/worker process details."""
    pid: Optional[int] = Field(default=None, description="master PID")
    worker_pids: List[int] = Field(default_factory=list, description="worker PIDs")
    memory_info: Dict[str, float] = Field(default_factory=dict, description="rss/vms of the master")
    start_time: Optional[datetime] = Field(default=None, description="master start time")
    uptime_seconds: int = Field(default=0, description="seconds since start")


class NginxStatus(BaseModel):
    """Overall state of the web server and the sites it serves."""

    model_config = ConfigDict(use_enum_values=True)

    status: NginxProcessStatus = Field(default=NginxProcessStatus.UNKNOWN)
    config_path: Optional[str] = Field(default=None, description="nginx.conf")
    config_test_status: ConfigTestStatus = Field(default=ConfigTestStatus.NOT_TESTED)
    config_test_message: Optional[str] = Field(default=None)
    process_info: Optional[NginxProcessInfo] = Field(default=None)

    php_version: Optional[str] = Field(default=None, description="active PHP version")
    total_sites: int = Field(default=0, description="generated site files")
    secured_sites: int = Field(default=0, description="sites with a certificate")
    sites_by_kind: Dict[str, int] = Field(default_factory=dict, description="site count per kind")

    last_check_time: datetime = Field(default_factory=datetime.now)

    def is_running(self) -> bool:
        return self.status == NginxProcessStatus.RUNNING

    def get_uptime_display(self) -> str:
        """Uptime as `1d 2h`, `3h 4m`, `5m` or `6s`."""
        if not self.process_info or self.process_info.uptime_seconds == 0:
            return "-"

        seconds = self.process_info.uptime_seconds

        if seconds < 60:
            return f"{seconds}s"
        elif seconds < 3600:
            return f"{seconds // 60}m"
        elif seconds < 86400:
            return f"{seconds // 3600}h {(seconds % 3600) // 60}m"
        else:
            days = seconds // 86400
            hours = (seconds % 86400) // 3600
            return f"{days}d {hours}h"
