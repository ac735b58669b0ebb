from .config import MonitorConfig, configure_logging, load_config

__all__ = ["MonitorConfig", "configure_logging", "load_config"]
