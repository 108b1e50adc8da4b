# Schemas package for FastAPI validation and responses
