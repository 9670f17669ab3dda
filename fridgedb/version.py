APP_NAME = "fridge-db"
__version__ = "0.1.0"
