"""
Policy Status — Infrastructure Package

Ambient support shared by the propagator package:
  - infra.logging: JSON log formatter, configure_logging, get_logger
  - infra.config: layered YAML config and ReconcilerSettings
"""
