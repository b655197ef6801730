# site_cloner/capture/__init__.py
"""Single-page capture: settle detection, in-page scripts and the capture agent."""
from site_cloner.capture.agent import PageCaptureAgent
from site_cloner.capture.settle import NetworkActivityMonitor, SettleDetector

__all__ = ["NetworkActivityMonitor", "PageCaptureAgent", "SettleDetector"]
