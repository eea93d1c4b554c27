from .performance import DegradationAlert, PerformanceMonitor, PerformanceRecord

__all__ = ["DegradationAlert", "PerformanceMonitor", "PerformanceRecord"]
