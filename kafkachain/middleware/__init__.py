"""Middleware for the inspection API"""
from kafkachain.middleware.monitoring import MonitoringMiddleware

__all__ = ["MonitoringMiddleware"]
