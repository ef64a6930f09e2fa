"""
Integration modules for WellnessGuard.

This package connects the monitoring service to the outside world:
- MQTT connector for companion device sensors, commands and prompts
- Webhook connector for care circle alert delivery
"""
