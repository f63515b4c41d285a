__version__ = "3.0.0"
API_VERSION = "3.0.4"
