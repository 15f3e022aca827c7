from .settings import Config, DevelopmentConfig, ProductionConfig, TestingConfig, config, settings

__all__ = ['Config', 'DevelopmentConfig', 'ProductionConfig', 'TestingConfig', 'config', 'settings']
