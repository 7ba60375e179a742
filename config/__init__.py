"""
Configuration package
"""

from .base import Config, DevelopmentConfig, ProductionConfig, TestingConfig

__all__ = ["Config", "DevelopmentConfig", "TestingConfig", "ProductionConfig"]
